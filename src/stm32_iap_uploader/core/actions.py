"""
Core workflow actions for the IAP uploader.

FirmwareUploader sequences firmware loading, link acquisition, the
bootloader handshake and the bulk transfer, and turns the outcome into an
OperationResult. The CLI only renders results and exits with their code.
"""

import logging
import time
from contextlib import contextmanager
from typing import Callable, Optional

from stm32_iap_uploader.firmware import FirmwareError, FirmwareImage, analyze_vector_table
from stm32_iap_uploader.protocol.handshake import (
    FailureReason,
    HandshakeController,
    HandshakeSession,
    HandshakeState,
    format_device_id,
)
from stm32_iap_uploader.protocol.serial_link import SerialLink, SerialLinkError
from stm32_iap_uploader.protocol.xmodem_transfer import (
    BulkTransfer,
    ProgressCallback,
    TransferError,
    XmodemTransfer,
)

from .config import UploaderConfig
from .results import OperationResult, Stage

logger = logging.getLogger(__name__)

LinkFactory = Callable[..., SerialLink]


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "stm32_iap_uploader"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def _session_metadata(session: HandshakeSession) -> dict:
    return {
        "handshake_state": session.state.value,
        "cycles": session.cycles,
        "resets": session.resets,
        "retries_remaining": session.retries_remaining,
        "reported_ids": [format_device_id(raw) for raw in session.reported_ids],
        "failure_reason": session.failure.value if session.failure else "",
    }


def _handshake_failure(session: HandshakeSession, expected: bytes, retries: int):
    """Map a FAILED session to (stage, message)."""
    expected_text = format_device_id(expected)
    reason = session.failure
    if reason is FailureReason.ID_MISMATCH:
        got = format_device_id(session.last_reported_id)
        return Stage.IDENTITY, (
            f"Incorrect MCU target: device reported {got}, expected {expected_text} "
            f"({session.cycles} of {retries} attempt(s) used)"
        )
    if reason is FailureReason.ID_TIMEOUT:
        return Stage.IDENTITY, (
            f"MCU type not received in time after {session.cycles} attempt(s), "
            f"expected {expected_text}"
        )
    if reason is FailureReason.BEL_TIMEOUT:
        return Stage.TIMEOUT, "Timeout waiting for BEL from MCU after reset"
    return Stage.TIMEOUT, "Timeout waiting for the MCU to request the transfer ('C')"


class FirmwareUploader:
    """
    Orchestrates one upload run.

    Example:
        uploader = FirmwareUploader(UploaderConfig(baudrate=115200))
        result = uploader.upload("/dev/ttyUSB0", "app.bin", b"STM32F")
        sys.exit(result.exit_code)
    """

    def __init__(
        self,
        config: Optional[UploaderConfig] = None,
        *,
        link_factory: LinkFactory = SerialLink,
        transfer: Optional[BulkTransfer] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            config: Uploader configuration (defaults if None)
            link_factory: Called as link_factory(port, baudrate, timeout,
                reset_line=..., reset_hold=...); must return an unopened link
            transfer: Bulk transfer to use (XmodemTransfer from config if None)
            clock: Monotonic clock for handshake deadlines
        """
        self.config = config or UploaderConfig()
        self.link_factory = link_factory
        self.transfer = transfer
        self.clock = clock

    def _make_link(self, port: str):
        return self.link_factory(
            port,
            self.config.baudrate,
            self.config.poll_interval,
            reset_line=self.config.reset_line,
            reset_hold=self.config.reset_hold,
        )

    def _make_transfer(self, progress_cb: Optional[ProgressCallback]) -> BulkTransfer:
        if self.transfer is not None:
            return self.transfer
        return XmodemTransfer(
            mode=self.config.xmodem_mode,
            max_errors=self.config.max_transfer_errors,
            timeout=self.config.transfer_timeout,
            callback=progress_cb,
        )

    def make_controller(self, link, device_id: bytes) -> HandshakeController:
        cfg = self.config
        return HandshakeController(
            link,
            device_id,
            retries=cfg.retries,
            poll_interval=cfg.poll_interval,
            bel_timeout=cfg.bel_timeout,
            id_timeout=cfg.id_timeout,
            ready_timeout=cfg.ready_timeout,
            repulse_interval=cfg.repulse_interval,
            clock=self.clock,
        )

    def _note_unbounded(self, result: OperationResult) -> None:
        for name in self.config.unbounded_waits:
            result.add_warning(f"{name.replace('_timeout', '').upper()} wait is unbounded (no time limit)")

    def _handshake(self, link, device_id: bytes, result: OperationResult) -> bool:
        controller = self.make_controller(link, device_id)
        session = controller.run()
        result.metadata.update(_session_metadata(session))
        if session.state is HandshakeState.COMPLETE:
            return True
        stage, message = _handshake_failure(session, device_id, self.config.retries)
        result.add_error(message, stage)
        return False

    def upload(
        self,
        port: str,
        firmware_path: str,
        device_id: bytes,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> OperationResult:
        """
        Reset, validate and flash the device on ``port``.

        Returns:
            OperationResult; ``exit_code`` is 0 only if the transfer succeeded
        """
        result = OperationResult(
            ok=True,
            operation="upload",
            model=format_device_id(device_id),
            port=port,
        )

        with _capture_logs() as logs:
            try:
                image = FirmwareImage.from_path(firmware_path, max_size=self.config.max_image_size)
            except FirmwareError as e:
                logger.error(str(e))
                result.add_error(str(e), Stage.INPUT)
                result.logs = list(logs)
                return result

            result.hashes["sha256"] = image.sha256
            result.metadata["image_size"] = image.size
            result.metadata["image_path"] = str(image.path)
            result.metadata["config"] = self.config.to_dict()
            self._note_unbounded(result)
            logger.info(f"Uploading {image.path} ({image.size:,} bytes)")
            logger.info(f"Targeting {result.model} @ {port}")

            try:
                logger.info("Opening port")
                with self._make_link(port) as link, image.open() as source:
                    if not self._handshake(link, device_id, result):
                        logger.error(result.errors[-1])
                    else:
                        transfer = self._make_transfer(progress_cb)
                        try:
                            result.bytes_len = transfer.send(link, source)
                        except TransferError as e:
                            logger.error(f"Error flashing firmware! - {e}")
                            result.add_error(str(e), Stage.TRANSFER)
            except SerialLinkError as e:
                logger.error(f"Serial link failure: {e}")
                result.add_error(str(e), Stage.TRANSPORT)
            except FirmwareError as e:
                result.add_error(str(e), Stage.INPUT)

            if result.ok:
                result.metadata["result_message"] = (
                    f"Flashed {result.bytes_len:,} bytes to {result.model} on {port}"
                )
            result.logs = list(logs)
        return result

    def probe(self, port: str, device_id: bytes) -> OperationResult:
        """
        Run the handshake without transferring anything.

        The device ends up waiting for XMODEM; it has to be reset afterwards.
        """
        result = OperationResult(
            ok=True,
            operation="probe",
            model=format_device_id(device_id),
            port=port,
        )

        with _capture_logs() as logs:
            self._note_unbounded(result)
            try:
                with self._make_link(port) as link:
                    if self._handshake(link, device_id, result):
                        result.add_warning("Handshake only (dry run): device was not flashed")
            except SerialLinkError as e:
                logger.error(f"Serial link failure: {e}")
                result.add_error(str(e), Stage.TRANSPORT)
            result.logs = list(logs)
        return result

    def monitor(
        self,
        port: str,
        duration: float,
        *,
        reset: bool = False,
        on_chunk: Optional[Callable[[bytes], None]] = None,
    ) -> OperationResult:
        """
        Capture raw device output for ``duration`` seconds.

        Useful to see what the bootloader prints after a reset (BEL bytes,
        the id frame, 'C' requests) when the handshake does not complete.
        Input pending from before the port was opened is drained first and
        is not part of the capture.
        """
        result = OperationResult(ok=True, operation="monitor", port=port)
        captured = bytearray()

        with _capture_logs() as logs:
            try:
                with self._make_link(port) as link:
                    stale = link.drain()
                    result.metadata["drained"] = len(stale)
                    if reset:
                        logger.info("Resetting target MCU")
                        link.pulse_reset()
                    start = self.clock()
                    while self.clock() - start < duration:
                        chunk = link.read(64, self.config.poll_interval)
                        if not chunk:
                            continue
                        captured.extend(chunk)
                        if on_chunk:
                            on_chunk(chunk)
            except SerialLinkError as e:
                logger.error(f"Serial link failure: {e}")
                result.add_error(str(e), Stage.TRANSPORT)

            result.bytes_len = len(captured)
            result.metadata["captured"] = bytes(captured)
            result.logs = list(logs)
        return result


def check_image(firmware_path: str, start_address: int) -> OperationResult:
    """
    Load an image and run the vector table heuristic.

    A failed heuristic is a warning, not an error: raw images for other
    cores or with a relocated table are still valid uploads.
    """
    try:
        image = FirmwareImage.from_path(firmware_path)
    except FirmwareError as e:
        return OperationResult.failure(operation="inspect", error=str(e), stage=Stage.INPUT)

    info = analyze_vector_table(
        image.read_header(),
        start_address=start_address,
        image_len=image.size,
    )
    result = OperationResult.success(
        operation="inspect",
        hashes={"sha256": image.sha256},
    )
    result.metadata.update(info)
    result.metadata["image_size"] = image.size
    result.metadata["image_path"] = str(image.path)
    if info["plausible"] != "yes":
        result.add_warning(f"Vector table check: {info['reason']}")
    return result
