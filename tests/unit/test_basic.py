"""Console components: display, commands, CLI helpers and REPL dispatch."""

import pytest
from prompt_toolkit.document import Document
from rich.console import Console

from hingectl import cli
from hingectl.cli import HingeCtlREPL, angle_to_normalized, resolve_device, run_cli_command
from hingectl.commands import COMMANDS, CommandCompleter, get_command
from hingectl.config import Settings
from hingectl.display import DisplayManager
from hingectl.errors import FailureReason
from hingectl.labels import LabelStore
from hingectl.model import ConnectionState, ControllerSnapshot, DiscoveredPeripheral

HINGE_A = "SIM-00:00:00:00:00:01"
HINGE_B = "SIM-00:00:00:00:00:02"

PERIPHERALS = [
    DiscoveredPeripheral("AA:BB:CC:DD:EE:01", "Front Hinge", -55),
    DiscoveredPeripheral("AA:BB:CC:DD:EE:02", "Unknown", None),
]


def recording_display(labels=None) -> DisplayManager:
    return DisplayManager(console=Console(record=True, width=120), labels=labels)


# ========== Display ==========


def test_display_output():
    """Smoke test every print helper."""
    display = recording_display()
    display.print_banner(simulated=True)
    display.print_devices(PERIPHERALS)
    display.print_status(ControllerSnapshot(radio_available=True))
    display.print_result("extend", True)
    display.print_result("retract", False)
    display.print_info("This is an info message")
    display.print_error("This is an error message")
    display.print_help(COMMANDS)

    text = display.console.export_text()
    assert "Demo mode" in text
    assert "Front Hinge" in text
    assert "-55 dBm" in text
    assert "extend sent" in text
    assert "retract dropped" in text
    for cmd in COMMANDS:
        assert cmd.name in text


def test_display_shows_labels(tmp_path):
    labels = LabelStore(tmp_path / "labels.json")
    labels.set("AA:BB:CC:DD:EE:01", "Front Door Actuator", "Front Door")
    display = recording_display(labels)
    display.print_devices(PERIPHERALS)
    assert "Front Door Actuator • Front Door" in display.console.export_text()


def test_empty_device_list():
    display = recording_display()
    display.print_devices([])
    assert "No peripherals discovered" in display.console.export_text()


MIXED = [
    DiscoveredPeripheral("01", "bravo", -80),
    DiscoveredPeripheral("02", "Alpha", None),
    DiscoveredPeripheral("03", "charlie", -40),
    DiscoveredPeripheral("04", "alpha two", -60),
]


def arranged(display):
    return [p.identifier for p in display.arrange(MIXED)]


def test_devices_sorted_by_signal_by_default():
    assert arranged(recording_display()) == ["03", "04", "01", "02"]


def test_devices_sorted_by_name():
    display = recording_display()
    display.sort_key = "name"
    assert arranged(display) == ["02", "04", "01", "03"]


def test_devices_filtered_by_name():
    display = recording_display()
    display.name_filter = "ALPHA"
    assert arranged(display) == ["04", "02"]
    display.sort_key = "name"
    assert arranged(display) == ["02", "04"]
    # Arranging never reorders the source list
    assert [p.identifier for p in MIXED] == ["01", "02", "03", "04"]


def test_filter_without_matches():
    display = recording_display()
    display.name_filter = "garage"
    display.print_devices(MIXED)
    assert "No peripherals match 'garage'" in display.console.export_text()


@pytest.mark.parametrize(
    "snapshot, expected",
    [
        (ControllerSnapshot(radio_available=False), "Bluetooth unavailable"),
        (ControllerSnapshot(radio_available=True), "Disconnected"),
        (
            ControllerSnapshot(radio_available=True, connection_state=ConnectionState.CONNECTING),
            "Connecting…",
        ),
        (
            ControllerSnapshot(radio_available=True, connection_state=ConnectionState.CONNECTED),
            "Connected",
        ),
    ],
)
def test_format_state(snapshot, expected):
    assert expected in DisplayManager.format_state(snapshot)


def test_format_helpers():
    assert DisplayManager.format_rssi(None) == "-"
    assert DisplayManager.format_rssi(-70) == "-70 dBm"
    assert DisplayManager.format_failure(None) == "-"
    assert DisplayManager.format_failure(FailureReason.CONNECT_FAILED) == "connection failed"


# ========== Commands ==========


@pytest.mark.parametrize(
    "token, name",
    [("connect", "connect"), ("c", "connect"), ("sp", "speed"), ("?", "help"), ("exit", "quit")],
)
def test_command_lookup(token, name):
    assert get_command(token).name == name


def test_unknown_command():
    assert get_command("fly") is None


def test_actuator_commands_are_flagged():
    flagged = {cmd.name for cmd in COMMANDS if cmd.needs_actuator}
    assert flagged == {"extend", "retract", "stop", "position", "angle", "speed"}


def completions(completer, text):
    return [c.display_text for c in completer.get_completions(Document(text), None)]


def test_completer_commands():
    completer = CommandCompleter()
    assert completions(completer, "dis") == ["(disconnect)"]
    assert completions(completer, "") == []


def test_completer_arguments():
    completer = CommandCompleter(lambda: [p.identifier for p in PERIPHERALS])
    assert completions(completer, "connect ") == [p.identifier for p in PERIPHERALS]
    assert completions(completer, "position 0.") == ["0.0", "0.25", "0.5", "0.75"]
    assert "90" in completions(completer, "angle ")
    assert completions(completer, 'label 1 Front Door ') == ["actuator-door-hinge", "other"]
    assert completions(completer, "devices ") == ["rssi", "name"]


# ========== CLI helpers ==========


def test_angle_mapping():
    assert angle_to_normalized(1) == 0.0
    assert angle_to_normalized(90) == 1.0
    assert angle_to_normalized(45.5) == pytest.approx(0.5)


def test_resolve_device():
    assert resolve_device("1", PERIPHERALS) == "AA:BB:CC:DD:EE:01"
    assert resolve_device("3", PERIPHERALS) is None
    assert resolve_device("aa:bb:cc:dd:ee:02", PERIPHERALS) == "AA:BB:CC:DD:EE:02"
    assert resolve_device("front hinge", PERIPHERALS) == "AA:BB:CC:DD:EE:01"
    assert resolve_device("11:22:33:44:55:66", PERIPHERALS) == "11:22:33:44:55:66"


def test_main_rejects_multiple_commands():
    with pytest.raises(SystemExit) as exc:
        cli.main(["--extend", "--retract", "--simulate"])
    assert exc.value.code == 1


def test_main_rejects_invalid_timeout():
    with pytest.raises(SystemExit) as exc:
        cli.main(["--simulate", "--scan", "--connect-timeout", "0"])
    assert exc.value.code == 1


# ========== One-shot commands ==========


@pytest.mark.asyncio
async def test_one_shot_scan(tmp_path, capsys):
    settings = Settings(simulate=True, scan_duration=0.3, label_file=tmp_path / "labels.json")
    await run_cli_command("scan", settings)
    out = capsys.readouterr().out
    assert "Sim Hinge A" in out
    assert "Sim Hinge B" in out


@pytest.mark.asyncio
async def test_one_shot_requires_label(tmp_path):
    settings = Settings(simulate=True, label_file=tmp_path / "labels.json")
    with pytest.raises(SystemExit) as exc:
        await run_cli_command("extend", settings, device=HINGE_A)
    assert exc.value.code == 1


@pytest.mark.asyncio
async def test_one_shot_extend_labelled(tmp_path, capsys):
    path = tmp_path / "labels.json"
    LabelStore(path).set(HINGE_A, "Front Door Actuator", "Front Door")
    settings = Settings(simulate=True, label_file=path)

    await run_cli_command("extend", settings, device=HINGE_A)
    assert "extend sent" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_one_shot_forced_position(tmp_path, capsys):
    settings = Settings(simulate=True, label_file=tmp_path / "labels.json")
    await run_cli_command("position", settings, device=HINGE_B, value=0.5, force=True)
    assert "position sent" in capsys.readouterr().out


# ========== REPL dispatch ==========


@pytest.fixture
def repl(monkeypatch, tmp_path):
    # No terminal under pytest; input is fed to _handle_input directly
    monkeypatch.setattr(cli, "PromptSession", lambda **kwargs: None)
    settings = Settings(simulate=True, label_file=tmp_path / "labels.json")
    instance = HingeCtlREPL(settings)
    instance.display.console = Console(record=True, width=120)
    return instance


@pytest.mark.asyncio
async def test_repl_connect_and_control(repl):
    adapter = repl.controller.adapter
    await repl.controller.start()

    await repl._handle_input("scan")
    await adapter.settle()
    await repl._handle_input('label 1 "Front Door Actuator" "Front Door"')
    await repl._handle_input("connect 1")
    assert repl.controller.is_connected

    await repl._handle_input("extend")
    await repl._handle_input("angle 90")
    await repl._handle_input("speed 0.25")
    assert [w.payload for w in adapter.writes] == [b"E", b"P100", b"V025"]

    await repl._handle_input("disconnect")
    assert repl.controller.connection_state is ConnectionState.DISCONNECTED
    await repl.controller.close()


@pytest.mark.asyncio
async def test_repl_gates_unlabelled_devices(repl):
    adapter = repl.controller.adapter
    await repl.controller.start()

    await repl._handle_input("scan")
    await adapter.settle()
    await repl._handle_input("connect 2")
    assert repl.controller.is_connected

    await repl._handle_input("extend")
    assert adapter.writes == []
    assert "not labelled" in repl.display.console.export_text()

    repl.force = True
    await repl._handle_input("extend")
    assert [w.payload for w in adapter.writes] == [b"E"]
    await repl.controller.close()


@pytest.mark.asyncio
async def test_repl_input_errors(repl):
    await repl.controller.start()
    await repl._handle_input("fly")
    await repl._handle_input("connect 7")
    await repl._handle_input("extend")
    await repl._handle_input('label "unterminated')

    text = repl.display.console.export_text()
    assert "Unknown command: fly" in text
    assert "No device number 7" in text
    assert "Not connected" in text
    assert "Could not parse input" in text
    await repl.controller.close()


@pytest.mark.asyncio
async def test_repl_quit(repl):
    await repl.controller.start()
    repl.running = True
    await repl._handle_input("quit")
    assert not repl.running
    await repl.controller.close()


@pytest.mark.asyncio
async def test_repl_devices_order_drives_numbers(repl):
    adapter = repl.controller.adapter
    await repl.controller.start()

    await repl._handle_input("scan")
    await adapter.settle()
    registry_order = [p.identifier for p in repl.controller.registry.peripherals]

    await repl._handle_input("devices name sim hinge b")
    assert "Sim Hinge B" in repl.display.console.export_text()
    assert [p.identifier for p in repl.controller.registry.peripherals] == registry_order

    await repl._handle_input("connect 1")
    assert repl.controller.is_connected
    assert repl.controller.connected_identifier == HINGE_B
    await repl.controller.close()


@pytest.mark.asyncio
async def test_repl_devices_unknown_filter(repl):
    adapter = repl.controller.adapter
    await repl.controller.start()

    await repl._handle_input("scan")
    await adapter.settle()
    await repl._handle_input("devices garage")

    assert repl.display.sort_key == "rssi"
    assert "No peripherals match 'garage'" in repl.display.console.export_text()
    await repl.controller.close()
