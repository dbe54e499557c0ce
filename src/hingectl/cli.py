"""
Main REPL application for smart hinge actuator control.

Interactive command loop with async support, auto-completion,
and a live view of discovered peripherals.
"""

import argparse
import asyncio
import logging
import shlex
import sys
from typing import List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory

from .commands import COMMANDS, CommandCompleter, get_command
from .config import Settings
from .controller import ActuatorController
from .core import ANGLE_MAX, ANGLE_MIN, KIND_ACTUATOR_HINGE, SORT_KEYS, SORT_RSSI
from .display import DisplayManager
from .encoder import to_percent
from .errors import ConfigError, HingeCtlError, LabelStoreError
from .labels import LabelStore
from .model import ConnectionState, ControllerSnapshot, DiscoveredPeripheral

logger = logging.getLogger(__name__)


def angle_to_normalized(degrees: float) -> float:
    """Map the 1..90 degree hinge range onto a 0..1 position."""
    return (degrees - ANGLE_MIN) / (ANGLE_MAX - ANGLE_MIN)


def resolve_device(token: str, peripherals: List[DiscoveredPeripheral]) -> Optional[str]:
    """Resolve a list number, identifier or name to an identifier.

    Args:
        token: 1-based list number, identifier or exact name
        peripherals: Current registry entries

    Returns:
        Identifier if resolved, None if a list number is out of range
    """
    if token.isdigit():
        index = int(token) - 1
        if 0 <= index < len(peripherals):
            return peripherals[index].identifier
        return None

    lowered = token.lower()
    for peripheral in peripherals:
        if peripheral.identifier.lower() == lowered:
            return peripheral.identifier
    for peripheral in peripherals:
        if peripheral.name.lower() == lowered:
            return peripheral.identifier
    # Not discovered this session; the stack may still know it
    return token


class HingeCtlREPL:
    """Interactive REPL for smart hinge actuator control."""

    def __init__(self, settings: Optional[Settings] = None, force: bool = False) -> None:
        """Initialize REPL with controller, label store and display manager.

        Args:
            settings: Runtime settings
            force: Allow actuator commands on unlabelled peripherals
        """
        self.settings = settings or Settings()
        self.controller = ActuatorController(settings=self.settings)
        self.labels = LabelStore(self.settings.label_file)
        self.display = DisplayManager(labels=self.labels)
        self.force = force
        self.running = False
        self._last_snapshot = self.controller.snapshot()

        self.controller.subscribe(self._on_snapshot)

        # Create prompt session with auto-completion
        self.session: PromptSession = PromptSession(
            completer=CommandCompleter(self._device_identifiers),
            history=InMemoryHistory(),
            enable_history_search=True,
        )

        # Background update task
        self._update_task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        """Run the main REPL loop."""
        self.running = True
        self.display.print_banner(simulated=self.settings.simulate)

        try:
            self.labels.load()
        except LabelStoreError as e:
            self.display.print_error(str(e))

        await self.controller.start()
        if not self.controller.radio_available:
            self.display.print_error(
                "Bluetooth unavailable. Enable it, or restart with --simulate."
            )

        # Start update processing loop
        self._update_task = asyncio.create_task(self._update_loop())

        try:
            while self.running:
                try:
                    prompt_text = self._get_prompt()
                    text = await self.session.prompt_async(prompt_text)

                    if text.strip():
                        await self._handle_input(text.strip())

                except KeyboardInterrupt:
                    # Just show new prompt on Ctrl+C
                    self.display.console.print()
                    continue

        except EOFError:
            # End of input (Ctrl+D)
            await self.cmd_quit([])
        finally:
            self.running = False
            if self._update_task:
                self._update_task.cancel()
                try:
                    await self._update_task
                except asyncio.CancelledError:
                    pass
            await self.controller.close()

    def _get_prompt(self) -> FormattedText:
        """Get dynamic prompt based on connection state.

        Returns:
            FormattedText for prompt_toolkit
        """
        state = self.controller.connection_state
        if state is ConnectionState.CONNECTED:
            name = self.controller.connected_peripheral_name or "Device"
            return FormattedText([("class:prompt", f"[{name}] > ")])
        if state is ConnectionState.CONNECTING:
            return FormattedText([("class:prompt", "[connecting] > ")])
        if not self.controller.radio_available:
            return FormattedText([("class:prompt", "[no bluetooth] > ")])
        return FormattedText([("class:prompt", "[disconnected] > ")])

    def _listed_peripherals(self) -> List[DiscoveredPeripheral]:
        return self.display.arrange(self.controller.registry.peripherals)

    def _device_identifiers(self) -> List[str]:
        return [p.identifier for p in self.controller.registry.peripherals]

    async def _handle_input(self, text: str) -> None:
        """Parse and dispatch command.

        Args:
            text: Raw user input text
        """
        try:
            parts = shlex.split(text)
        except ValueError as e:
            self.display.print_error(f"Could not parse input: {e}")
            return
        if not parts:
            return

        cmd_name = parts[0].lower()
        args = parts[1:]

        cmd = get_command(cmd_name)
        if not cmd:
            self.display.print_error(
                f"Unknown command: {cmd_name}. Type 'help' for available commands."
            )
            return

        if cmd.needs_actuator and not self._check_actuator():
            return

        handler_name = cmd.handler
        if not hasattr(self, handler_name):
            self.display.print_error(f"Handler not found: {handler_name}")
            return

        handler = getattr(self, handler_name)

        try:
            await handler(args)
        except Exception as e:
            self.display.print_error(f"Command failed: {e}")
            logger.exception("Command exception")

    def _check_actuator(self) -> bool:
        """Actuator controls are only offered for a labelled door hinge."""
        if not self.controller.is_connected:
            self.display.print_error("Not connected. Use 'connect' first.")
            return False
        if self.force:
            return True
        identifier = self.controller.connected_identifier
        entry = self.labels.get(identifier) if identifier else None
        if entry is None or not entry.is_actuator_hinge:
            self.display.print_error(
                f"Device is not labelled as '{KIND_ACTUATOR_HINGE}'. "
                "Use 'label' first, or start with --force."
            )
            return False
        return True

    async def _update_loop(self) -> None:
        """Background task feeding the live view."""
        try:
            async for snapshot in self.controller.get_updates():
                if self.display.live_enabled:
                    self.display.update_live(snapshot)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Update loop error: {e}")

    def _on_snapshot(self, snapshot: ControllerSnapshot) -> None:
        """Report state changes the user did not ask for."""
        previous, self._last_snapshot = self._last_snapshot, snapshot
        if previous.radio_available and not snapshot.radio_available:
            if self.display.live_enabled:
                self.display.stop_live()
            self.display.print_error("Bluetooth became unavailable")
        elif (
            previous.connection_state is ConnectionState.CONNECTED
            and snapshot.connection_state is ConnectionState.DISCONNECTED
            and self.running
        ):
            self.display.print_info("Device disconnected")

    # ========== Command Handlers ==========

    async def cmd_scan(self, args: list) -> None:
        """Start scanning for peripherals."""
        if self.controller.connection_state is not ConnectionState.DISCONNECTED:
            self.display.print_error("Disconnect before scanning.")
            return
        await self.controller.refresh_radio()
        if not self.controller.begin_scan():
            self.display.print_error("Bluetooth unavailable, scan ignored.")
            return
        self.display.print_info("Scanning... use 'devices' or 'watch' to see results.")

    async def cmd_stop_scan(self, args: list) -> None:
        """Stop scanning."""
        if not self.controller.scanning:
            self.display.print_info("Not scanning")
            return
        self.controller.stop_scan()
        self.display.print_info(
            f"Scan stopped, {len(self.controller.registry)} peripheral(s) found"
        )

    async def cmd_devices(self, args: list) -> None:
        """List discovered peripherals, optionally sorted and filtered.

        The order chosen here also applies to the live view and to list
        numbers given to 'connect' and 'label'.
        """
        sort_key = SORT_RSSI
        if args and args[0].lower() in SORT_KEYS:
            sort_key = args[0].lower()
            args = args[1:]
        self.display.sort_key = sort_key
        self.display.name_filter = " ".join(args)
        self.display.print_devices(self.controller.snapshot().peripherals)

    async def cmd_watch(self, args: list) -> None:
        """Toggle the live device view."""
        enabled = self.display.toggle_live(self.controller.snapshot())
        if not enabled:
            self.display.print_info("Live view disabled")

    async def cmd_connect(self, args: list) -> None:
        """Connect to a peripheral."""
        if not args:
            self.display.print_error("Usage: connect <n|id>")
            return
        if self.controller.connection_state is not ConnectionState.DISCONNECTED:
            self.display.print_info("Already connected. Use 'disconnect' first.")
            return

        identifier = resolve_device(args[0], self._listed_peripherals())
        if identifier is None:
            self.display.print_error(f"No device number {args[0]}. Use 'devices'.")
            return

        if not await self.controller.refresh_radio():
            self.display.print_error("Bluetooth unavailable. Enable it and try again.")
            return

        if self.display.live_enabled:
            self.display.stop_live()

        if not self.controller.connect(identifier):
            self.display.print_error("Connection could not be started.")
            return

        self.display.print_info("Connecting...")
        if not await self.controller.wait_for_connection(self.settings.connect_timeout):
            reason = self.controller.last_failure
            detail = f" ({reason.value})" if reason else ""
            self.display.print_error(f"Connection failed{detail}. Please try again.")
            return

        self.display.print_info(f"Connected to {self.controller.connected_peripheral_name}")
        entry = self.labels.get(identifier)
        if entry is None:
            self.display.print_info(
                "This device has no label. Use 'label' to identify it and "
                "enable actuator controls."
            )

    async def cmd_disconnect(self, args: list) -> None:
        """Disconnect from device."""
        if self.controller.connection_state is ConnectionState.DISCONNECTED:
            self.display.print_info("Not connected")
            return
        self.controller.disconnect()
        self.display.print_info("Disconnected")

    async def cmd_extend(self, args: list) -> None:
        """Extend the actuator."""
        self.display.print_result("extend", self.controller.extend())

    async def cmd_retract(self, args: list) -> None:
        """Retract the actuator."""
        self.display.print_result("retract", self.controller.retract())

    async def cmd_stop(self, args: list) -> None:
        """Stop actuator motion."""
        self.display.print_result("stop", self.controller.stop())

    async def cmd_position(self, args: list) -> None:
        """Move to a normalized position."""
        value = self._parse_float(args, "position <0.0-1.0>")
        if value is None:
            return
        sent = self.controller.set_position(value)
        self.display.print_result(f"position {to_percent(value)}%", sent)

    async def cmd_angle(self, args: list) -> None:
        """Open the hinge to an angle in degrees."""
        value = self._parse_float(args, "angle <1-90>")
        if value is None:
            return
        normalized = angle_to_normalized(value)
        sent = self.controller.set_position(normalized)
        self.display.print_result(f"angle {value:.0f}° ({to_percent(normalized)}%)", sent)

    async def cmd_speed(self, args: list) -> None:
        """Set normalized motor speed."""
        value = self._parse_float(args, "speed <0.0-1.0>")
        if value is None:
            return
        sent = self.controller.set_speed(value)
        self.display.print_result(f"speed {to_percent(value)}%", sent)

    async def cmd_label(self, args: list) -> None:
        """Label a peripheral and its door."""
        if len(args) < 3:
            self.display.print_error('Usage: label <n|id> "<label>" "<door>" [kind]')
            return
        identifier = resolve_device(args[0], self._listed_peripherals())
        if identifier is None:
            self.display.print_error(f"No device number {args[0]}. Use 'devices'.")
            return
        kind = args[3] if len(args) > 3 else KIND_ACTUATOR_HINGE
        try:
            entry = self.labels.set(identifier, args[1], args[2], kind)
        except ValueError as e:
            self.display.print_error(str(e))
            return
        self.display.print_info(f"Labelled {identifier}: {entry.label} • {entry.door} ({entry.kind})")

    async def cmd_status(self, args: list) -> None:
        """Show connection status."""
        self.display.print_status(self.controller.snapshot())

    async def cmd_help(self, args: list) -> None:
        """Show all available commands."""
        self.display.print_help(COMMANDS)

    async def cmd_quit(self, args: list) -> None:
        """Exit the REPL."""
        if self.display.live_enabled:
            self.display.stop_live()

        if self.controller.connection_state is not ConnectionState.DISCONNECTED:
            self.display.print_info("Disconnecting...")
            self.controller.disconnect()

        self.display.console.print("[cyan]Goodbye![/cyan]")
        self.running = False

    def _parse_float(self, args: list, usage: str) -> Optional[float]:
        if not args:
            self.display.print_error(f"Usage: {usage}")
            return None
        try:
            return float(args[0])
        except ValueError:
            self.display.print_error(f"Invalid number: {args[0]}")
            return None


async def run_cli_command(
    command: str,
    settings: Settings,
    device: Optional[str] = None,
    value: Optional[float] = None,
    force: bool = False,
) -> None:
    """Run a single CLI command and exit."""
    controller = ActuatorController(settings=settings)
    labels = LabelStore(settings.label_file)
    display = DisplayManager(labels=labels)

    try:
        labels.load()
        await controller.start()
        if not controller.radio_available:
            display.print_error("Bluetooth unavailable")
            sys.exit(1)

        if command == "scan":
            controller.begin_scan()
            display.print_info(f"Scanning for {settings.scan_duration:.0f}s...")
            await asyncio.sleep(settings.scan_duration)
            controller.stop_scan()
            display.print_devices(controller.snapshot().peripherals)
            return

        if not device:
            display.print_error(f"--{command} requires --device")
            sys.exit(1)

        entry = labels.get(device)
        if not force and (entry is None or not entry.is_actuator_hinge):
            display.print_error(
                f"{device} is not labelled as '{KIND_ACTUATOR_HINGE}'. "
                "Label it in the REPL or pass --force."
            )
            sys.exit(1)

        display.print_info("Connecting to device...")
        controller.connect(device)
        if not await controller.wait_for_connection(settings.connect_timeout):
            display.print_error("Failed to connect to device")
            sys.exit(1)

        if command == "extend":
            sent = controller.extend()
        elif command == "retract":
            sent = controller.retract()
        elif command == "stop":
            sent = controller.stop()
        elif command == "position":
            sent = controller.set_position(value if value is not None else 0.0)
        elif command == "speed":
            sent = controller.set_speed(value if value is not None else 0.0)
        else:
            display.print_error(f"Unknown command: {command}")
            sys.exit(1)

        display.print_result(command, sent)
        if not sent:
            sys.exit(1)

    finally:
        # Ensure we disconnect and release the radio
        try:
            await controller.close()
        except Exception as e:
            logger.debug(f"Close failed: {e}")


def build_settings(args: argparse.Namespace) -> Settings:
    """Apply command line flags on top of environment settings.

    Raises:
        ConfigError: If the environment or flags hold invalid values
    """
    settings = Settings.from_env()
    if args.simulate:
        settings.simulate = True
    if args.char_uuid:
        settings.preferred_characteristics = tuple(u.lower() for u in args.char_uuid)
    if args.service_uuid:
        settings.service_filter = tuple(u.lower() for u in args.service_uuid)
    if args.connect_timeout is not None:
        if args.connect_timeout <= 0:
            raise ConfigError("--connect-timeout must be positive")
        settings.connect_timeout = args.connect_timeout
    if args.scan_duration is not None:
        if args.scan_duration <= 0:
            raise ConfigError("--scan-duration must be positive")
        settings.scan_duration = args.scan_duration
    return settings


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the REPL application."""
    parser = argparse.ArgumentParser(
        description="Smart Hinge Actuator Control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hingectl                                 # Start interactive REPL
  hingectl --simulate                      # REPL against simulated hinges
  hingectl --scan                          # Scan and list peripherals
  hingectl --device AA:BB:CC:DD:EE:FF --extend
  hingectl --device AA:BB:CC:DD:EE:FF --position 0.5
        """,
    )

    parser.add_argument("--scan", action="store_true", help="Scan and list peripherals")
    parser.add_argument("--extend", action="store_true", help="Extend the actuator")
    parser.add_argument("--retract", action="store_true", help="Retract the actuator")
    parser.add_argument("--stop", action="store_true", help="Stop actuator motion")
    parser.add_argument("--position", type=float, metavar="0-1", help="Move to position")
    parser.add_argument("--speed", type=float, metavar="0-1", help="Set motor speed")
    parser.add_argument("--device", help="Peripheral identifier for one-shot commands")

    parser.add_argument(
        "--simulate", action="store_true", help="Use the simulated radio (demo mode)"
    )
    parser.add_argument(
        "--char-uuid",
        action="append",
        metavar="UUID",
        help="Preferred write characteristic UUID (repeatable)",
    )
    parser.add_argument(
        "--service-uuid",
        action="append",
        metavar="UUID",
        help="Only scan for peripherals advertising this service (repeatable)",
    )
    parser.add_argument("--connect-timeout", type=float, help="Connection timeout (s)")
    parser.add_argument("--scan-duration", type=float, help="Duration of --scan (s)")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Allow actuator commands on peripherals not labelled as door hinges",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    try:
        settings = build_settings(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    # Check which command was requested
    commands = []
    value: Optional[float] = None
    if args.scan:
        commands.append("scan")
    if args.extend:
        commands.append("extend")
    if args.retract:
        commands.append("retract")
    if args.stop:
        commands.append("stop")
    if args.position is not None:
        commands.append("position")
        value = args.position
    if args.speed is not None:
        commands.append("speed")
        value = args.speed

    # If no CLI commands, start REPL
    if not commands:
        try:
            repl = HingeCtlREPL(settings, force=args.force)
            asyncio.run(repl.run())
        except KeyboardInterrupt:
            print("\nInterrupted")
            sys.exit(0)
        except HingeCtlError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        if len(commands) > 1:
            print("Error: Only one command can be specified at a time", file=sys.stderr)
            sys.exit(1)

        try:
            asyncio.run(
                run_cli_command(
                    commands[0], settings, device=args.device, value=value, force=args.force
                )
            )
        except KeyboardInterrupt:
            print("\nInterrupted")
            sys.exit(1)
        except HingeCtlError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
