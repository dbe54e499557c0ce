"""
Display manager for Rich-based REPL output and live updates.

Handles all console output including the device table, connection status,
and a toggle-able live view that follows scan results as they arrive.
"""

import logging
from typing import List, Optional, Sequence

from rich.console import Console, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .core import SORT_NAME, SORT_RSSI
from .errors import FailureReason
from .labels import LabelStore
from .model import ConnectionState, ControllerSnapshot, DiscoveredPeripheral

logger = logging.getLogger(__name__)

_STATE_STYLES = {
    ConnectionState.DISCONNECTED: "yellow",
    ConnectionState.CONNECTING: "dark_orange",
    ConnectionState.CONNECTED: "green",
}


class DisplayManager:
    """Manages console output with Rich library."""

    def __init__(self, console: Optional[Console] = None, labels: Optional[LabelStore] = None):
        """Initialize display manager.

        Args:
            console: Rich Console instance (creates one if None)
            labels: Label store used to annotate device rows
        """
        self.console = console or Console()
        self.labels = labels
        self.live_enabled = False
        self._live: Optional[Live] = None
        self._live_snapshot = ControllerSnapshot()
        self.sort_key = SORT_RSSI
        self.name_filter = ""

    def print_banner(self, simulated: bool = False) -> None:
        """Print startup banner."""
        mode = "\n[yellow]Demo mode: simulated radio[/yellow]" if simulated else ""
        panel = Panel(
            "[bold cyan]HingeCtl - Smart Hinge Actuator Control[/bold cyan]\n"
            "[dim]Type 'help' for commands, 'quit' to exit[/dim]" + mode,
            expand=False,
        )
        self.console.print(panel)

    def print_status(self, snapshot: ControllerSnapshot) -> None:
        """Display one-time connection status table."""
        self.console.print(self.format_status_table(snapshot))

    def print_devices(self, peripherals: Sequence[DiscoveredPeripheral]) -> None:
        """Display the discovered peripheral table.

        Args:
            peripherals: Registry entries, arranged before printing
        """
        if not peripherals:
            self.print_info("No peripherals discovered. Use 'scan' first.")
            return
        rows = self.arrange(peripherals)
        if not rows:
            self.print_info(f"No peripherals match '{self.name_filter}'")
            return
        self.console.print(self.format_device_table(rows))

    def print_result(self, cmd: str, sent: bool) -> None:
        """Display whether a command was handed to the radio."""
        if sent:
            self.console.print(f"[green]✓[/green] {cmd} sent", highlight=False)
        else:
            self.console.print(
                f"[red]✗[/red] {cmd} dropped (not connected)", highlight=False
            )

    def print_error(self, message: str) -> None:
        """Print red error message.

        Args:
            message: Error message text
        """
        self.console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_info(self, message: str) -> None:
        """Print blue info message.

        Args:
            message: Info message text
        """
        self.console.print(f"[cyan]Info:[/cyan] {message}", highlight=False)

    def print_help(self, commands: list) -> None:
        """Display command reference.

        Args:
            commands: List of Command objects
        """
        table = Table(title="Available Commands", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Aliases", style="magenta")
        table.add_column("Description", style="white")
        table.add_column("Usage", style="yellow")

        for cmd in commands:
            aliases = ", ".join(cmd.aliases) if cmd.aliases else "-"
            table.add_row(cmd.name, aliases, cmd.description, cmd.usage)

        self.console.print(table)
        self.console.print(
            "[dim]Keyboard shortcuts: Ctrl+C to interrupt, Ctrl+D to exit[/dim]"
        )

    # ========== Live view ==========

    def start_live(self, snapshot: ControllerSnapshot) -> None:
        """Start live display refresh mode."""
        if self.live_enabled:
            return

        self.live_enabled = True
        self._live_snapshot = snapshot
        self._live = Live(
            self._create_live_renderable(), console=self.console, refresh_per_second=4
        )
        self._live.start()
        self.console.print("[dim]Live view enabled ['watch' to disable][/dim]")

    def stop_live(self) -> None:
        """Stop live display refresh mode."""
        if not self.live_enabled:
            return

        self.live_enabled = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def update_live(self, snapshot: ControllerSnapshot) -> None:
        """Update live display with a new snapshot."""
        if not self.live_enabled or self._live is None:
            return

        self._live_snapshot = snapshot
        try:
            self._live.update(self._create_live_renderable())
        except Exception as e:
            logger.error(f"Live update error: {e}")

    def toggle_live(self, snapshot: ControllerSnapshot) -> bool:
        """Toggle live display on/off.

        Returns:
            New live display state (True = on, False = off)
        """
        if self.live_enabled:
            self.stop_live()
        else:
            self.start_live(snapshot)
        return self.live_enabled

    def _create_live_renderable(self) -> RenderableType:
        snapshot = self._live_snapshot
        table = self.format_device_table(self.arrange(snapshot.peripherals))
        table.title = f"{self.format_state(snapshot)} | scanning: {'yes' if snapshot.scanning else 'no'}"
        return table

    def arrange(self, peripherals: Sequence[DiscoveredPeripheral]) -> List[DiscoveredPeripheral]:
        """Filter and order peripherals the way the device table lists them.

        Keeps only names containing ``name_filter`` (case-insensitive), then
        sorts by signal strength, strongest first with unknown RSSI last, or
        by name. Ties keep registry order.

        Returns:
            New list; list numbers shown to the user index into it
        """
        query = self.name_filter.strip().lower()
        rows = [p for p in peripherals if query in p.name.lower()]
        if self.sort_key == SORT_NAME:
            rows.sort(key=lambda p: p.name.lower())
        else:
            rows.sort(key=lambda p: (p.rssi is None, -(p.rssi or 0)))
        return rows

    # ========== Formatting ==========

    def format_device_table(self, peripherals: Sequence[DiscoveredPeripheral]) -> Table:
        """Create Rich Table of discovered peripherals.

        Returns:
            Rich Table with index, name, label, signal and identifier columns
        """
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("#", style="dim", justify="right")
        table.add_column("Name", style="cyan")
        table.add_column("Label", style="magenta")
        table.add_column("RSSI", style="yellow", justify="right")
        table.add_column("Identifier", style="white")

        for index, peripheral in enumerate(peripherals, start=1):
            table.add_row(
                str(index),
                peripheral.name,
                self.format_label(peripheral.identifier),
                self.format_rssi(peripheral.rssi),
                peripheral.identifier,
            )
        return table

    def format_status_table(self, snapshot: ControllerSnapshot) -> Table:
        """Create Rich Table for the connection status.

        Returns:
            Rich Table object
        """
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="yellow")

        table.add_row("Bluetooth", "available" if snapshot.radio_available else "unavailable")
        table.add_row("Connection", self.format_state(snapshot))
        table.add_row("Device", snapshot.connected_peripheral_name or "-")
        if snapshot.connected_identifier:
            table.add_row("Label", self.format_label(snapshot.connected_identifier))
        table.add_row("Scanning", "yes" if snapshot.scanning else "no")
        table.add_row("Discovered", str(len(snapshot.peripherals)))
        table.add_row("Last failure", self.format_failure(snapshot.last_failure))
        return table

    def format_label(self, identifier: str) -> str:
        if self.labels is None:
            return "-"
        entry = self.labels.get(identifier)
        if entry is None:
            return "-"
        return f"{entry.label} • {entry.door}"

    @staticmethod
    def format_state(snapshot: ControllerSnapshot) -> str:
        """Format connection state the way the status light reads.

        Returns:
            Rich markup string
        """
        state = snapshot.connection_state
        if state is ConnectionState.DISCONNECTED and not snapshot.radio_available:
            return "[red]Bluetooth unavailable[/red]"
        style = _STATE_STYLES[state]
        text = {
            ConnectionState.DISCONNECTED: "Disconnected",
            ConnectionState.CONNECTING: "Connecting…",
            ConnectionState.CONNECTED: "Connected",
        }[state]
        return f"[{style}]{text}[/{style}]"

    @staticmethod
    def format_rssi(rssi: Optional[int]) -> str:
        return "-" if rssi is None else f"{rssi} dBm"

    @staticmethod
    def format_failure(reason: Optional[FailureReason]) -> str:
        return "-" if reason is None else reason.value
