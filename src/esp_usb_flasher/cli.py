"""
ESP USB Flasher CLI

Command-line interface for writing firmware to ESP32-family chips through
their ROM bootloader.
"""

import sys
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from esp_usb_flasher.errors import FlasherError, InvalidAddress
from esp_usb_flasher.protocol import SerialTransport, list_serial_ports
from esp_usb_flasher.models import list_addresses, FlashAddress

# Import from core module for unified logic
from esp_usb_flasher.core.config import FlashConfig, SYNC_BAUDRATE
from esp_usb_flasher.core.parsing import (
    parse_target as _parse_target_core,
    parse_baudrate as _parse_baudrate_core,
)
from esp_usb_flasher.core.results import FlashResult
from esp_usb_flasher.core.session import FlashEvent, FlashPhase, FlashSession
from esp_usb_flasher.core.actions import (
    load_firmware,
    inspect_firmware,
    start_flash,
    probe_device,
)
from esp_usb_flasher.core.messages import (
    WarningItem,
    WarningCode,
    MessageLevel,
    WARNING_REMEDIATIONS,
    result_to_warnings,
)

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("esp_usb_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="⚡ ESP USB Flasher - Write firmware through the ESP ROM bootloader")


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

    console.print(f"{icon} [{warning.code.value}] {warning.title}", style=style)
    if verbose and warning.detail:
        console.print(f"   {warning.detail}", style="dim")
    if warning.remediation and (verbose or warning.level == MessageLevel.ERROR):
        console.print(f"   → {warning.remediation}", style="cyan")


def print_warnings_from_result(result: FlashResult, verbose: bool = False) -> None:
    """Print all warnings and errors from a FlashResult using structured format."""
    for warning in result_to_warnings(result):
        print_structured_warning(warning, verbose=verbose)


def parse_target(address: Optional[str], offset: Optional[str] = None) -> FlashAddress:
    """
    Resolve --address/--offset to a catalog entry or a Custom target.

    Raises:
        typer.BadParameter: Unknown region or bad offset
    """
    try:
        return _parse_target_core(address, offset)
    except InvalidAddress as e:
        raise typer.BadParameter(str(e))


def parse_baudrate(value: Optional[str]) -> Optional[int]:
    """CLI wrapper around core.parsing.parse_baudrate."""
    try:
        return _parse_baudrate_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def set_verbose(verbose: bool) -> None:
    if verbose:
        logger.setLevel(logging.DEBUG)


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = list_serial_ports()
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Device", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        table.add_row(port.device, port.name, port.description)

    console.print(table)


@app.command()
def addresses() -> None:
    """List named flash regions and their offsets."""
    print_header("Flash Address Catalog")

    table = Table(title="Flash Regions")
    table.add_column("Region", style="cyan")
    table.add_column("Offset", style="magenta")
    table.add_column("Description", style="green")

    for entry in list_addresses():
        offset = "(from --offset)" if entry.is_custom else f"0x{entry.offset:05X}"
        table.add_row(entry.name, offset, entry.description)

    console.print(table)


@app.command()
def inspect(
    firmware: str = typer.Argument(..., help="Path to firmware .bin file"),
    block_size: int = typer.Option(1024, "--block-size", help="FLASH_DATA block size"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Show chip identity, size and block plan of a firmware image."""
    try:
        data = load_firmware(firmware)
        info = inspect_firmware(data, block_size)
    except (FileNotFoundError, FlasherError, ValueError) as e:
        print_error(str(e))
        sys.exit(1)

    if output_json:
        console.print_json(json.dumps(info))
        return

    print_header(f"Firmware: {Path(firmware).name}")
    table = Table(title="Image Information")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Size", f"{info['size_bytes']:,} bytes")
    table.add_row("Magic byte", info["magic"])
    table.add_row("Chip", info["chip_description"])
    table.add_row("Blocks", f"{info['blocks']} × {info['block_size']} bytes")
    table.add_row("Padding", f"{info['padding']} bytes (0xFF)")
    table.add_row("SHA-256", info["sha256"])
    console.print(table)

    if not info["chip_known"]:
        print_warning("Unknown magic byte; the image may not be a raw ESP .bin")


@app.command()
def detect(
    port: str = typer.Option(..., "--port", "-p", help="Serial port (e.g., /dev/ttyUSB0)"),
    baud: str = typer.Option(str(SYNC_BAUDRATE), "--baud", "-b", help="Sync baud rate"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show wire traffic"),
) -> None:
    """Check whether an ESP ROM bootloader answers on a port."""
    set_verbose(verbose)
    config = FlashConfig(sync_baudrate=parse_baudrate(baud) or SYNC_BAUDRATE)

    print_header(f"Probing {port}")
    result = probe_device(port, config, transport_factory=SerialTransport)

    if not result.ok:
        print_warnings_from_result(result, verbose=True)
        sys.exit(1)

    if result.metadata.get("responded"):
        print_success(f"Bootloader responded on {port}")
        if verbose:
            console.print(f"  Reply: {result.metadata['reply_hex']}", style="dim")
    else:
        print_warning(f"No response on {port}")
        console.print(f"   → {WARNING_REMEDIATIONS[WarningCode.W_SYNC_TIMEOUT]}", style="cyan")
        sys.exit(1)


@app.command()
def flash(
    port: str = typer.Option(..., "--port", "-p", help="Serial port (e.g., /dev/ttyUSB0)"),
    firmware: str = typer.Option(..., "--firmware", "-f", help="Firmware .bin file"),
    address: Optional[str] = typer.Option(
        None,
        "--address",
        "-a",
        help="Flash region (Bootloader, Partition Table, NVS, OTA Data, PHY Init, Application, Custom); default Application",
    ),
    offset: Optional[str] = typer.Option(
        None, "--offset", "-o", help="Hex offset for the Custom region (e.g., 0x20000)"
    ),
    baud: str = typer.Option(str(SYNC_BAUDRATE), "--baud", "-b", help="Sync baud rate"),
    write_baud: Optional[str] = typer.Option(
        None, "--write-baud", help="Switch to this baud rate before writing (e.g., 460800)"
    ),
    strict_sync: bool = typer.Option(False, "--strict-sync", help="Abort if the bootloader never answers SYNC"),
    strict_chip: bool = typer.Option(False, "--strict-chip", help="Reject images with an unknown magic byte"),
    verify: bool = typer.Option(False, "--verify/--no-verify", help="Check every command response"),
    no_reboot: bool = typer.Option(False, "--no-reboot", help="Stay in the bootloader after flashing"),
    deadline: Optional[float] = typer.Option(None, "--deadline", help="Give up after this many seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show wire traffic and remediation hints"),
) -> None:
    """Write a firmware image to flash."""
    set_verbose(verbose)

    # No region: Application, or Custom when only --offset is given
    if address is None and offset is None:
        address = "Application"
    target = parse_target(address, offset)
    if offset is not None and not target.is_custom:
        print_warning(f"--offset ignored; {target.name} is fixed at 0x{target.offset:X}")

    try:
        config = FlashConfig(
            sync_baudrate=parse_baudrate(baud) or SYNC_BAUDRATE,
            write_baudrate=parse_baudrate(write_baud),
            strict_sync=strict_sync,
            strict_chip=strict_chip,
            verify_responses=verify,
            reboot=not no_reboot,
            deadline=deadline,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))

    try:
        data = load_firmware(firmware)
    except (FileNotFoundError, FlasherError) as e:
        print_error(str(e))
        sys.exit(1)

    print_header(f"Flashing {Path(firmware).name} → {target}")
    console.print(f"Port: {port}  Size: {len(data):,} bytes")

    result = run_flash(port, data, target, config)

    if result is None:
        print_error("Flash ended without a result")
        sys.exit(1)

    print_warnings_from_result(result, verbose=verbose)
    if not result.ok:
        console.print(result.to_summary(), style="dim")
        sys.exit(1)

    print_success(f"Wrote {result.size_bytes:,} bytes to 0x{result.offset:08X} ({result.blocks} blocks)")
    console.print(f"  SHA-256: {result.hashes.get('sha256', '-')}", style="dim")


def run_flash(
    port: str,
    data: bytes,
    target: FlashAddress,
    config: FlashConfig,
) -> Optional[FlashResult]:
    """
    Drive start_flash() with a progress bar.

    Ctrl+C cancels the session; the stream still ends with a FAILED event
    and a result.
    """
    sessions = []
    result: Optional[FlashResult] = None
    stream = start_flash(
        port, data, target, config,
        transport_factory=SerialTransport,
        session_cb=sessions.append,
    )

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    ) as progress:
        task = progress.add_task("Starting...", total=100)
        while True:
            try:
                item = next(stream)
                if isinstance(item, FlashResult):
                    result = item
                else:
                    show_event(progress, task, item)
            except StopIteration:
                break
            except KeyboardInterrupt:
                if not sessions:
                    raise
                session: FlashSession = sessions[0]
                session.cancel()

    return result


def show_event(progress: Progress, task, event: FlashEvent) -> None:
    if event.phase is FlashPhase.FAILED:
        progress.update(task, description="Failed")
        return
    progress.update(task, description=event.message, completed=event.progress * 100)
    if event.level == MessageLevel.WARN:
        progress.console.print(f"⚠️  {event.message}", style="yellow")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
