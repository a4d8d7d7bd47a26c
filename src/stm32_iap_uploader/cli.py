"""
STM32 IAP Uploader CLI

Command-line interface for flashing firmware through a UART IAP bootloader.
"""

import sys
import logging
import math
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from stm32_iap_uploader import __version__
from stm32_iap_uploader.firmware import FLASH_BASE
from stm32_iap_uploader.protocol.serial_link import list_ports
from stm32_iap_uploader.protocol.xmodem_transfer import XMODEM_MODES
from stm32_iap_uploader.core.config import (
    UploaderConfig,
    DEFAULT_BAUDRATE,
    DEFAULT_RETRIES,
    DEFAULT_MAX_TRANSFER_ERRORS,
)
from stm32_iap_uploader.core.parsing import (
    parse_device_id as _parse_device_id_core,
    parse_duration as _parse_duration_core,
    parse_address as _parse_address_core,
    parse_reset_line as _parse_reset_line_core,
)
from stm32_iap_uploader.core.results import OperationResult
from stm32_iap_uploader.core.actions import FirmwareUploader, check_image
from stm32_iap_uploader.core.messages import (
    WarningItem,
    MessageLevel,
    result_to_warnings,
)

# Setup Rich console
console = Console()

# Setup logging (same console as the progress display)
log_handler = RichHandler(console=console, rich_tracebacks=True, show_path=False)
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[log_handler],
)
logger = logging.getLogger("stm32_iap_uploader")

app = typer.Typer(help="STM32 IAP Uploader - flash firmware over a UART bootloader")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def print_structured_warning(warning: WarningItem, verbose: bool = False) -> None:
    """Print a structured warning with optional remediation."""
    if warning.level == MessageLevel.ERROR:
        style = "red"
        icon = "❌"
    elif warning.level == MessageLevel.WARN:
        style = "yellow"
        icon = "⚠️"
    else:
        style = "blue"
        icon = "ℹ️"

    console.print(f"{icon} [{warning.code.value}] {warning.title}", style=style, markup=False)
    if verbose and warning.detail:
        console.print(f"   {warning.detail}", style="dim")
    if warning.remediation and (verbose or warning.level == MessageLevel.ERROR):
        console.print(f"   → {warning.remediation}", style="cyan")


def print_warnings_from_result(result: OperationResult, verbose: bool = False) -> None:
    """Print all warnings from an OperationResult using structured format."""
    for warning in result_to_warnings(result):
        print_structured_warning(warning, verbose=verbose)


def parse_device_id(value: str) -> bytes:
    """CLI wrapper around core.parsing.parse_device_id."""
    try:
        return _parse_device_id_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_address(value: str) -> int:
    """CLI wrapper around core.parsing.parse_address."""
    try:
        return _parse_address_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def build_config(
    baudrate: int,
    retries: int,
    bel_timeout: Optional[str],
    id_timeout: str,
    ready_timeout: Optional[str],
    repulse: Optional[str],
    reset_line: str,
    one_k: bool = False,
    max_errors: int = DEFAULT_MAX_TRANSFER_ERRORS,
) -> UploaderConfig:
    """Build an UploaderConfig from CLI option values."""
    try:
        return UploaderConfig(
            baudrate=baudrate,
            retries=retries,
            bel_timeout=_parse_duration_core(bel_timeout),
            id_timeout=_parse_duration_core(id_timeout),
            ready_timeout=_parse_duration_core(ready_timeout),
            repulse_interval=_parse_duration_core(repulse),
            reset_line=_parse_reset_line_core(reset_line),
            xmodem_mode="xmodem1k" if one_k else "xmodem",
            max_transfer_errors=max_errors,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))


def report_result(result: OperationResult, verbose: bool) -> None:
    """Print warnings/errors and exit with the result's code."""
    print_warnings_from_result(result, verbose=verbose)
    if result.ok:
        print_success(result.metadata.get("result_message", f"{result.operation} complete"))
    else:
        stage = result.stage.value if result.stage else "unknown"
        print_error(f"{result.operation} failed at stage '{stage}'")
    sys.exit(result.exit_code)


_state = {"verbose": False}


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Trace every byte exchanged"),
) -> None:
    """Global options."""
    _state["verbose"] = verbose
    if verbose:
        logger.setLevel(logging.DEBUG)


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"stm32-iap {__version__}")


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = list_ports()
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Device", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        table.add_row(port["device"], port["name"], port["description"])

    console.print(table)


@app.command()
def upload(
    port: str = typer.Option(..., "--port", "-p", help="Serial port"),
    binary: str = typer.Option(..., "--binary", "-b", help="Path to raw firmware binary"),
    mcu_type: str = typer.Option(..., "--mcu-type", "-m", help="Expected 6-character MCU id (e.g. STM32F)"),
    baudrate: int = typer.Option(DEFAULT_BAUDRATE, "--baudrate", "-r", help="Baud rate"),
    retries: int = typer.Option(DEFAULT_RETRIES, "--retries", help="Reset/identify attempts"),
    bel_timeout: str = typer.Option("10", "--bel-timeout", help="Seconds to wait for BEL ('none' = forever)"),
    id_timeout: str = typer.Option("2", "--id-timeout", help="Seconds to wait for the MCU id per attempt"),
    ready_timeout: str = typer.Option("60", "--ready-timeout", help="Seconds to wait for 'C' ('none' = forever)"),
    repulse: Optional[str] = typer.Option(None, "--repulse", help="Re-pulse reset after this many seconds without BEL"),
    reset_line: str = typer.Option("dtr", "--reset-line", help="Line wired to MCU reset: dtr or rts"),
    one_k: bool = typer.Option(False, "--one-k", help="Use 1024-byte XMODEM blocks"),
    max_errors: int = typer.Option(DEFAULT_MAX_TRANSFER_ERRORS, "--max-errors", help="Consecutive XMODEM errors tolerated"),
) -> None:
    """
    Reset the MCU, validate its type and flash the binary over XMODEM.

    Steps:
    1. Pulse reset (DTR/RTS)
    2. Wait for BEL, answer ACK
    3. Check the 6-byte MCU id (ACK or NAK + retry)
    4. Wait for 'C' while the bootloader erases flash
    5. Send the image with XMODEM
    """
    verbose = _state["verbose"]
    device_id = parse_device_id(mcu_type)
    config = build_config(
        baudrate, retries, bel_timeout, id_timeout, ready_timeout,
        repulse, reset_line, one_k, max_errors,
    )

    print_header("Upload Firmware")
    console.print(f"Uploading {binary}")
    console.print(f"Targeting {mcu_type} @ {port} ({baudrate} bps)")

    image_path = Path(binary)
    size = image_path.stat().st_size if image_path.is_file() else 0
    total_packets = max(math.ceil(size / XMODEM_MODES[config.xmodem_mode]), 1)

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        TextColumn("{task.fields[errors]} errors"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Flashing", total=total_packets, errors=0)

        def on_packet(total: int, success: int, errors: int) -> None:
            progress.update(task, completed=success, errors=errors)

        result = FirmwareUploader(config).upload(port, binary, device_id, progress_cb=on_packet)

    table = Table(title="Upload Results")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Device", result.model)
    table.add_row("Port", port)
    table.add_row("Attempts", str(result.metadata.get("cycles", 0)))
    if result.metadata.get("reported_ids"):
        table.add_row("Reported IDs", ", ".join(result.metadata["reported_ids"]))
    table.add_row("Image Size", f"{result.metadata.get('image_size', 0):,} bytes")
    table.add_row("Bytes Sent", f"{result.bytes_len:,}")
    if "sha256" in result.hashes:
        table.add_row("SHA256", result.hashes["sha256"][:16] + "...")
    console.print(table)

    report_result(result, verbose)


@app.command()
def probe(
    port: str = typer.Option(..., "--port", "-p", help="Serial port"),
    mcu_type: str = typer.Option(..., "--mcu-type", "-m", help="Expected 6-character MCU id (e.g. STM32F)"),
    baudrate: int = typer.Option(DEFAULT_BAUDRATE, "--baudrate", "-r", help="Baud rate"),
    retries: int = typer.Option(DEFAULT_RETRIES, "--retries", help="Reset/identify attempts"),
    bel_timeout: str = typer.Option("10", "--bel-timeout", help="Seconds to wait for BEL ('none' = forever)"),
    id_timeout: str = typer.Option("2", "--id-timeout", help="Seconds to wait for the MCU id per attempt"),
    ready_timeout: str = typer.Option("60", "--ready-timeout", help="Seconds to wait for 'C' ('none' = forever)"),
    repulse: Optional[str] = typer.Option(None, "--repulse", help="Re-pulse reset after this many seconds without BEL"),
    reset_line: str = typer.Option("dtr", "--reset-line", help="Line wired to MCU reset: dtr or rts"),
) -> None:
    """Run the handshake only (no flashing) to check wiring and MCU type."""
    verbose = _state["verbose"]
    device_id = parse_device_id(mcu_type)
    config = build_config(
        baudrate, retries, bel_timeout, id_timeout, ready_timeout, repulse, reset_line,
    )

    print_header("Probe Bootloader")
    console.print(f"Targeting {mcu_type} @ {port} ({baudrate} bps)")

    result = FirmwareUploader(config).probe(port, device_id)

    table = Table(title="Handshake")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("State", str(result.metadata.get("handshake_state", "-")))
    table.add_row("Attempts", str(result.metadata.get("cycles", 0)))
    table.add_row("Reset Pulses", str(result.metadata.get("resets", 0)))
    table.add_row("Reported IDs", ", ".join(result.metadata.get("reported_ids", [])) or "-")
    console.print(table)

    if result.ok:
        result.metadata["result_message"] = f"{result.model} bootloader is ready"
    report_result(result, verbose)


@app.command()
def inspect(
    binary: str = typer.Argument(..., help="Path to raw firmware binary"),
    start_address: str = typer.Option(
        f"0x{FLASH_BASE:08X}", "--start-address", "-a",
        help="Flash address the bootloader places the image at",
    ),
) -> None:
    """Show size, hash and vector table sanity of a firmware image."""
    verbose = _state["verbose"]
    address = parse_address(start_address)
    print_header("Inspect Firmware")

    result = check_image(binary, address)
    if result.ok:
        table = Table(title=Path(binary).name)
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Size", f"{result.metadata['image_size']:,} bytes")
        table.add_row("SHA256", result.hashes["sha256"])
        table.add_row("Start Address", result.metadata["start_address"])
        for key, label in (("sp", "Initial SP"), ("reset", "Reset Vector")):
            if key in result.metadata:
                table.add_row(label, result.metadata[key])
        table.add_row("Plausible", result.metadata["plausible"])
        console.print(table)
        result.metadata["result_message"] = "Inspection complete"
    report_result(result, verbose)


@app.command()
def monitor(
    port: str = typer.Option(..., "--port", "-p", help="Serial port"),
    baudrate: int = typer.Option(DEFAULT_BAUDRATE, "--baudrate", "-r", help="Baud rate"),
    duration: float = typer.Option(10.0, "--duration", "-d", help="Seconds to capture"),
    reset: bool = typer.Option(False, "--reset", help="Pulse reset before capturing"),
    reset_line: str = typer.Option("dtr", "--reset-line", help="Line wired to MCU reset: dtr or rts"),
    hex_display: bool = typer.Option(False, "--hex", help="Show bytes as hex"),
) -> None:
    """Print raw bytes from the device (e.g. the bootloader's BEL/id/'C' output)."""
    verbose = _state["verbose"]
    try:
        config = UploaderConfig(baudrate=baudrate, reset_line=_parse_reset_line_core(reset_line))
    except ValueError as e:
        raise typer.BadParameter(str(e))

    print_header("Raw Serial Monitor")
    console.print(f"Port: {port}")
    console.print(f"Baud: {baudrate}")
    console.print(f"Duration: {duration}s")

    def show(chunk: bytes) -> None:
        if hex_display:
            console.print(" ".join(f"{b:02X}" for b in chunk), markup=False, highlight=False)
        else:
            # ASCII-ish display; show non-printables as <XX>
            console.print(
                "".join(chr(b) if 32 <= b < 127 else f"<{b:02X}>" for b in chunk),
                markup=False,
                highlight=False,
            )

    result = FirmwareUploader(config).monitor(port, duration, reset=reset, on_chunk=show)
    result.metadata["result_message"] = f"Captured {result.bytes_len} bytes total"
    report_result(result, verbose)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
