"""
Command definitions and auto-completion for REPL.

Defines all available commands with metadata and provides a completer
for prompt_toolkit auto-completion.
"""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .core import DEVICE_KINDS, SORT_KEYS


@dataclass
class Command:
    """Command definition with metadata."""

    name: str
    aliases: List[str]
    description: str
    usage: str
    handler: str
    needs_actuator: bool = False


# Define all available commands
COMMANDS = [
    Command(
        name="scan",
        aliases=["sc"],
        description="Start scanning for peripherals",
        usage="scan",
        handler="cmd_scan",
    ),
    Command(
        name="stop-scan",
        aliases=["ss"],
        description="Stop scanning (results stay listed)",
        usage="stop-scan",
        handler="cmd_stop_scan",
    ),
    Command(
        name="devices",
        aliases=["d", "ls"],
        description="List discovered peripherals (strongest signal first, or by name)",
        usage="devices [rssi|name] [filter]",
        handler="cmd_devices",
    ),
    Command(
        name="watch",
        aliases=["w"],
        description="Toggle live device view",
        usage="watch",
        handler="cmd_watch",
    ),
    Command(
        name="connect",
        aliases=["c"],
        description="Connect to a peripheral by list number or identifier",
        usage="connect <n|id>",
        handler="cmd_connect",
    ),
    Command(
        name="disconnect",
        aliases=["dc"],
        description="Disconnect or cancel a pending connection",
        usage="disconnect",
        handler="cmd_disconnect",
    ),
    Command(
        name="extend",
        aliases=["e"],
        description="Extend the actuator",
        usage="extend",
        handler="cmd_extend",
        needs_actuator=True,
    ),
    Command(
        name="retract",
        aliases=["r"],
        description="Retract the actuator",
        usage="retract",
        handler="cmd_retract",
        needs_actuator=True,
    ),
    Command(
        name="stop",
        aliases=["x"],
        description="Stop actuator motion",
        usage="stop",
        handler="cmd_stop",
        needs_actuator=True,
    ),
    Command(
        name="position",
        aliases=["p"],
        description="Move to a normalized position",
        usage="position <0.0-1.0>",
        handler="cmd_position",
        needs_actuator=True,
    ),
    Command(
        name="angle",
        aliases=["a"],
        description="Open the hinge to an angle in degrees",
        usage="angle <1-90>",
        handler="cmd_angle",
        needs_actuator=True,
    ),
    Command(
        name="speed",
        aliases=["sp"],
        description="Set normalized motor speed",
        usage="speed <0.0-1.0>",
        handler="cmd_speed",
        needs_actuator=True,
    ),
    Command(
        name="label",
        aliases=["lb"],
        description="Label a peripheral and its door",
        usage="label <n|id> <label> <door> [kind]",
        handler="cmd_label",
    ),
    Command(
        name="status",
        aliases=["st"],
        description="Show connection status",
        usage="status",
        handler="cmd_status",
    ),
    Command(
        name="help",
        aliases=["h", "?"],
        description="Show all available commands",
        usage="help",
        handler="cmd_help",
    ),
    Command(
        name="quit",
        aliases=["q", "exit"],
        description="Exit the REPL",
        usage="quit",
        handler="cmd_quit",
    ),
]

_NORMALIZED_SUGGESTIONS = ["0.0", "0.25", "0.5", "0.75", "1.0"]
_ANGLE_SUGGESTIONS = ["1", "15", "30", "45", "60", "75", "90"]


def get_command(name: str) -> Command | None:
    """Get command by name or alias.

    Args:
        name: Command name or alias

    Returns:
        Command object if found, None otherwise
    """
    for cmd in COMMANDS:
        if cmd.name == name or name in cmd.aliases:
            return cmd
    return None


class CommandCompleter(Completer):
    """Auto-completion for commands and arguments."""

    def __init__(self, device_provider: Optional[Callable[[], List[str]]] = None) -> None:
        """Initialize completer.

        Args:
            device_provider: Returns identifiers of discovered peripherals,
                used to complete ``connect`` and ``label`` arguments
        """
        self._command_names = set()
        self._command_aliases = set()
        self._device_provider = device_provider

        for cmd in COMMANDS:
            self._command_names.add(cmd.name)
            self._command_aliases.update(cmd.aliases)

    def _argument_candidates(self, cmd: Command, position: int) -> List[str]:
        if cmd.name in ("position", "speed") and position == 1:
            return _NORMALIZED_SUGGESTIONS
        if cmd.name == "angle" and position == 1:
            return _ANGLE_SUGGESTIONS
        if cmd.name in ("connect", "label") and position == 1:
            return self._device_provider() if self._device_provider else []
        if cmd.name == "label" and position == 4:
            return list(DEVICE_KINDS)
        if cmd.name == "devices" and position == 1:
            return list(SORT_KEYS)
        return []

    def get_completions(self, document: Document, complete_event) -> Any:  # type: ignore[no-untyped-def]
        """Get completion suggestions for current input.

        Args:
            document: Current input document
            complete_event: Completion event

        Yields:
            Completion objects for matching commands/arguments
        """
        text = document.text_before_cursor.lstrip()
        parts = text.split()

        # If no text yet, suggest nothing (avoid spam)
        if not text:
            return

        # First part: complete command name
        if len(parts) <= 1 and not text.endswith(" "):
            partial_cmd = parts[0].lower() if parts else ""
            all_names = self._command_names | self._command_aliases

            for name in sorted(all_names):
                if name.startswith(partial_cmd):
                    completion = name[len(partial_cmd) :]
                    yield Completion(
                        completion,
                        start_position=0,
                        display=f"({name})",
                    )
            return

        cmd = get_command(parts[0].lower())
        if cmd is None:
            return

        # Argument position being typed (1-based)
        position = len(parts) if text.endswith(" ") else len(parts) - 1
        partial = "" if text.endswith(" ") else parts[-1]

        for candidate in self._argument_candidates(cmd, position):
            if candidate.startswith(partial):
                yield Completion(
                    candidate[len(partial) :],
                    start_position=0,
                    display=candidate,
                )
