"""
IAP bootloader handshake.

Protocol (after a reset pulse on DTR/RTS):
    1. Device sends BEL (0x07) until the host answers
    2. Host sends ACK (0x06)
    3. Device sends its 6-byte identifier (e.g. b"STM32F")
    4. Host sends ACK (0x06) on match, NAK (0x15) on mismatch
    5. Device erases flash, then sends 'C' (0x43) to start XMODEM

A mismatch restarts the whole sequence from the reset pulse until the
retry budget is spent.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .serial_link import LinkTimeout

logger = logging.getLogger(__name__)

BEL = 0x07
ACK = 0x06
NAK = 0x15
READY = 0x43  # 'C', the XMODEM-CRC start request

DEVICE_ID_LEN = 6


class HandshakeState(Enum):
    """Handshake state machine states."""
    IDLE = "idle"
    AWAITING_BEL = "awaiting_bel"
    VALIDATING_ID = "validating_id"
    AWAITING_READY = "awaiting_ready"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATES = (HandshakeState.COMPLETE, HandshakeState.FAILED)


class FailureReason(Enum):
    """Why a session ended in FAILED."""
    ID_MISMATCH = "id_mismatch"
    ID_TIMEOUT = "id_timeout"
    BEL_TIMEOUT = "bel_timeout"
    READY_TIMEOUT = "ready_timeout"


@dataclass
class HandshakeSession:
    """
    Mutable state of one handshake attempt sequence.

    Attributes:
        retries_remaining: Reset/identify cycles still allowed
        state: Current state
        validated: Device reported the expected identifier
        cycles: Reset/identify cycles started
        resets: Reset pulses sent (re-pulses included)
        reported_ids: Every identifier the device reported, in order
        failure: Reason for FAILED, None otherwise
        transitions: Ordered (from, to) state history
    """
    retries_remaining: int
    state: HandshakeState = HandshakeState.IDLE
    validated: bool = False
    cycles: int = 0
    resets: int = 0
    reported_ids: List[bytes] = field(default_factory=list)
    failure: Optional[FailureReason] = None
    transitions: List[Tuple[HandshakeState, HandshakeState]] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def last_reported_id(self) -> Optional[bytes]:
        return self.reported_ids[-1] if self.reported_ids else None

    def count_entries(self, state: HandshakeState) -> int:
        """Number of times ``state`` was entered."""
        return sum(1 for _, to in self.transitions if to == state)


class BoundedWait:
    """
    Poll interval plus an optional overall limit.

    ``limit=None`` waits forever; every individual read is still bounded by
    ``poll_interval`` so the caller never blocks without checking in.
    """

    def __init__(
        self,
        poll_interval: float = 0.05,
        limit: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {poll_interval}")
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0 or None, got {limit}")
        self.poll_interval = poll_interval
        self.limit = limit
        self.clock = clock
        self._started = clock()

    def start(self) -> "BoundedWait":
        """Restart the timer."""
        self._started = self.clock()
        return self

    @property
    def elapsed(self) -> float:
        return self.clock() - self._started

    @property
    def expired(self) -> bool:
        return self.limit is not None and self.elapsed >= self.limit

    def poll_timeout(self) -> float:
        """Timeout for the next read, never past the overall limit."""
        if self.limit is None:
            return self.poll_interval
        remaining = self.limit - self.elapsed
        return max(min(self.poll_interval, remaining), 0.001)


def format_device_id(raw: bytes) -> str:
    """Printable form of a device identifier for logs and errors."""
    text = raw.decode("ascii", errors="replace")
    if text.isprintable() and len(text) == len(raw):
        return text
    return raw.hex().upper()


class HandshakeController:
    """
    Drives reset -> identity check -> ready wait on an open link.

    The link must provide ``pulse_reset()``, ``write(data)``,
    ``read_byte(timeout)`` and ``read_exact(n, timeout)``; reads raise
    LinkTimeout when nothing arrives. Any other exception from the link
    (SerialLinkError) is fatal and propagates out of ``run()``.

    Example:
        controller = HandshakeController(link, b"STM32F", retries=3)
        session = controller.run()
        if session.state is HandshakeState.COMPLETE:
            transfer.send(link, firmware)
    """

    def __init__(
        self,
        link,
        expected_id: bytes,
        *,
        retries: int = 3,
        poll_interval: float = 0.05,
        bel_timeout: Optional[float] = None,
        id_timeout: Optional[float] = 2.0,
        ready_timeout: Optional[float] = None,
        repulse_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            link: Open link to the device
            expected_id: Exact 6-byte identifier of the target MCU family
            retries: Reset/identify cycles allowed before giving up (>= 1)
            poll_interval: Timeout of each individual read (seconds)
            bel_timeout: Give up waiting for BEL after this long (None = never)
            id_timeout: Fail an identify cycle if the 6 bytes take longer
            ready_timeout: Give up waiting for 'C' after this long (None = never)
            repulse_interval: Re-pulse reset when no BEL arrived for this long
            clock: Monotonic clock, injectable for tests
        """
        if len(expected_id) != DEVICE_ID_LEN:
            raise ValueError(
                f"Device id must be {DEVICE_ID_LEN} bytes, got {len(expected_id)}"
            )
        if retries < 1:
            raise ValueError(f"retries must be >= 1, got {retries}")
        if repulse_interval is not None and repulse_interval <= 0:
            raise ValueError(f"repulse_interval must be > 0, got {repulse_interval}")

        self.link = link
        self.expected_id = bytes(expected_id)
        self.retries = retries
        self.poll_interval = poll_interval
        self.bel_timeout = bel_timeout
        self.id_timeout = id_timeout
        self.ready_timeout = ready_timeout
        self.repulse_interval = repulse_interval
        self.clock = clock
        self.session: Optional[HandshakeSession] = None

    def run(self) -> HandshakeSession:
        """
        Run the handshake until COMPLETE or FAILED.

        Returns:
            The terminal session

        Raises:
            SerialLinkError: On any link I/O failure
        """
        session = HandshakeSession(retries_remaining=self.retries)
        self.session = session
        logger.info(
            f"Starting handshake for {format_device_id(self.expected_id)} "
            f"(retry budget {self.retries})"
        )

        handlers = {
            HandshakeState.IDLE: self._reset,
            HandshakeState.AWAITING_BEL: self._await_bel,
            HandshakeState.VALIDATING_ID: self._validate_id,
            HandshakeState.AWAITING_READY: self._await_ready,
        }
        while not session.done:
            handlers[session.state](session)

        if session.state is HandshakeState.COMPLETE:
            logger.info("Handshake complete, device ready for transfer")
        else:
            logger.error(f"Handshake failed: {session.failure.value}")
        return session

    def _enter(self, session: HandshakeSession, state: HandshakeState) -> None:
        logger.info(f"State: {session.state.name} -> {state.name}")
        session.transitions.append((session.state, state))
        session.state = state

    def _send(self, byte: int, label: str) -> None:
        logger.info(f"> {label} (0x{byte:02X})")
        self.link.write(bytes([byte]))

    def _pulse(self, session: HandshakeSession) -> None:
        self.link.pulse_reset()
        session.resets += 1

    def _reset(self, session: HandshakeSession) -> None:
        session.cycles += 1
        logger.info(f"Resetting target MCU (cycle {session.cycles}/{self.retries})")
        self._pulse(session)
        self._enter(session, HandshakeState.AWAITING_BEL)

    def _await_bel(self, session: HandshakeSession) -> None:
        logger.info("Waiting for BEL from MCU")
        wait = BoundedWait(self.poll_interval, self.bel_timeout, self.clock)
        since_pulse = BoundedWait(self.poll_interval, self.repulse_interval, self.clock)

        while True:
            if wait.expired:
                logger.warning(f"No BEL after {wait.elapsed:.1f}s")
                session.failure = FailureReason.BEL_TIMEOUT
                self._enter(session, HandshakeState.FAILED)
                return
            if self.repulse_interval is not None and since_pulse.expired:
                logger.info("No BEL yet, pulsing reset again")
                self._pulse(session)
                since_pulse.start()
            try:
                byte = self.link.read_byte(timeout=wait.poll_timeout())
            except LinkTimeout:
                continue
            if byte == BEL:
                logger.info("< BEL (0x07)")
                self._send(ACK, "ACK")
                self._enter(session, HandshakeState.VALIDATING_ID)
                return
            logger.debug(f"Ignoring 0x{byte:02X} while waiting for BEL")

    def _validate_id(self, session: HandshakeSession) -> None:
        logger.info("Waiting for MCU type")
        wait = BoundedWait(self.poll_interval, self.id_timeout, self.clock)
        received = bytearray()

        while len(received) < DEVICE_ID_LEN:
            if wait.expired:
                logger.warning(
                    f"MCU type incomplete after {wait.elapsed:.1f}s "
                    f"({len(received)}/{DEVICE_ID_LEN} bytes: {bytes(received).hex().upper()})"
                )
                self._fail_cycle(session, FailureReason.ID_TIMEOUT)
                return
            try:
                received.extend(
                    self.link.read_exact(DEVICE_ID_LEN - len(received), timeout=wait.poll_timeout())
                )
            except LinkTimeout as e:
                received.extend(e.partial)

        device_id = bytes(received)
        session.reported_ids.append(device_id)
        logger.info(f"< {format_device_id(device_id)}")

        if device_id != self.expected_id:
            logger.warning(
                f"Incorrect MCU target! {format_device_id(device_id)} != "
                f"{format_device_id(self.expected_id)}"
            )
            self._send(NAK, "NAK")
            self._fail_cycle(session, FailureReason.ID_MISMATCH)
            return

        logger.info(f"Correct MCU target {format_device_id(device_id)}")
        self._send(ACK, "ACK")
        session.validated = True
        self._enter(session, HandshakeState.AWAITING_READY)

    def _fail_cycle(self, session: HandshakeSession, reason: FailureReason) -> None:
        session.retries_remaining = max(session.retries_remaining - 1, 0)
        if session.retries_remaining > 0:
            logger.info(f"Retrying, {session.retries_remaining} cycle(s) left")
            self._enter(session, HandshakeState.IDLE)
        else:
            session.failure = reason
            self._enter(session, HandshakeState.FAILED)

    def _await_ready(self, session: HandshakeSession) -> None:
        if self.ready_timeout is None:
            logger.info("Waiting for MCU (no time limit)...")
        else:
            logger.info(f"Waiting for MCU (up to {self.ready_timeout:g}s)...")
        wait = BoundedWait(self.poll_interval, self.ready_timeout, self.clock)

        while True:
            if wait.expired:
                logger.warning(f"No transfer request after {wait.elapsed:.1f}s")
                session.failure = FailureReason.READY_TIMEOUT
                self._enter(session, HandshakeState.FAILED)
                return
            try:
                byte = self.link.read_byte(timeout=wait.poll_timeout())
            except LinkTimeout:
                continue
            if byte == READY:
                logger.info("< C (0x43), device ready")
                self._enter(session, HandshakeState.COMPLETE)
                return
            logger.debug(f"Ignoring 0x{byte:02X} while waiting for 'C'")
