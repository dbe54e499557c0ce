"""Connection state machine and write dispatch against a recording adapter."""

from hingectl.adapter import RadioAdapter
from hingectl.dispatcher import CommandDispatcher
from hingectl.errors import FailureReason
from hingectl.model import (
    CharacteristicDiscoveryFailed,
    CharacteristicInfo,
    CharacteristicsDiscovered,
    ConnectFailed,
    ConnectionState,
    PeripheralConnected,
    PeripheralDisconnected,
    RadioStateChanged,
    ServiceDiscoveryFailed,
    ServicesDiscovered,
    SessionPhase,
    WriteFailed,
)
from hingectl.session import ConnectionSession

PERIPHERAL = "AA:BB:CC:DD:EE:01"
SVC_INFO = "0000180a-0000-1000-8000-00805f9b34fb"
SVC_HINGE = "0000ffe0-0000-1000-8000-00805f9b34fb"
CHAR_READ = "00002a29-0000-1000-8000-00805f9b34fb"
CHAR_A = "0000ffe1-0000-1000-8000-00805f9b34fb"
CHAR_B = "0000ffe2-0000-1000-8000-00805f9b34fb"


class RecordingAdapter(RadioAdapter):
    """Adapter that records every request and never answers on its own."""

    def __init__(self, available: bool = True) -> None:
        super().__init__()
        self._available = available
        self.calls: list = []

    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass

    def start_scan(self) -> None:
        self.calls.append(("start_scan",))

    def stop_scan(self) -> None:
        self.calls.append(("stop_scan",))

    def connect(self, identifier: str) -> None:
        self.calls.append(("connect", identifier))

    def cancel_connection(self, identifier: str) -> None:
        self.calls.append(("cancel_connection", identifier))

    def discover_services(self, identifier: str) -> None:
        self.calls.append(("discover_services", identifier))

    def discover_characteristics(self, identifier: str, service_uuid: str) -> None:
        self.calls.append(("discover_characteristics", identifier, service_uuid))

    def write(self, identifier, characteristic, payload, with_response) -> None:
        self.calls.append(("write", identifier, characteristic.uuid, payload, with_response))

    def names(self) -> list:
        return [call[0] for call in self.calls]


def char(uuid: str, service: str, *props: str) -> CharacteristicInfo:
    return CharacteristicInfo(uuid=uuid, service_uuid=service, properties=props)


def make_session(preferred=()):
    adapter = RecordingAdapter()
    transitions = []
    failures = []
    session = ConnectionSession(
        adapter,
        preferred_characteristics=preferred,
        on_transition=lambda old, new: transitions.append(new),
        on_failure=failures.append,
    )
    return session, adapter, transitions, failures


def drive_to_characteristics(session, services=(SVC_INFO, SVC_HINGE)):
    session.connect(PERIPHERAL, "Hinge")
    session.handle(PeripheralConnected(PERIPHERAL, "Hinge"))
    session.handle(ServicesDiscovered(PERIPHERAL, tuple(services)))


def test_initial_state_is_disconnected():
    session, _, _, _ = make_session()
    assert session.phase is SessionPhase.IDLE
    assert session.state is ConnectionState.DISCONNECTED
    assert session.endpoint is None


def test_happy_path_reaches_ready():
    session, adapter, transitions, _ = make_session()

    assert session.connect(PERIPHERAL, "Hinge")
    assert session.state is ConnectionState.CONNECTING
    assert adapter.calls[-1] == ("connect", PERIPHERAL)

    session.handle(PeripheralConnected(PERIPHERAL, "Hinge"))
    assert session.phase is SessionPhase.DISCOVERING_SERVICES
    assert session.state is ConnectionState.CONNECTING
    assert adapter.calls[-1] == ("discover_services", PERIPHERAL)

    session.handle(ServicesDiscovered(PERIPHERAL, (SVC_INFO, SVC_HINGE)))
    assert session.phase is SessionPhase.DISCOVERING_CHARACTERISTICS
    assert adapter.calls[-2:] == [
        ("discover_characteristics", PERIPHERAL, SVC_INFO),
        ("discover_characteristics", PERIPHERAL, SVC_HINGE),
    ]

    session.handle(CharacteristicsDiscovered(PERIPHERAL, SVC_INFO, (char(CHAR_READ, SVC_INFO, "read"),)))
    assert session.state is ConnectionState.CONNECTING

    session.handle(
        CharacteristicsDiscovered(PERIPHERAL, SVC_HINGE, (char(CHAR_A, SVC_HINGE, "write"),))
    )
    assert session.state is ConnectionState.CONNECTED
    assert session.endpoint.characteristic.uuid == CHAR_A
    assert session.peripheral_name == "Hinge"
    assert transitions == [
        SessionPhase.CONNECTING,
        SessionPhase.DISCOVERING_SERVICES,
        SessionPhase.DISCOVERING_CHARACTERISTICS,
        SessionPhase.READY,
    ]


def test_first_writable_characteristic_wins():
    session, _, _, _ = make_session()
    drive_to_characteristics(session)

    session.handle(
        CharacteristicsDiscovered(
            PERIPHERAL,
            SVC_INFO,
            (
                char(CHAR_READ, SVC_INFO, "read"),
                char(CHAR_B, SVC_INFO, "write-without-response"),
            ),
        )
    )
    assert session.is_ready
    assert session.endpoint.characteristic.uuid == CHAR_B

    # A later service arriving after the choice is ignored
    assert not session.handle(
        CharacteristicsDiscovered(PERIPHERAL, SVC_HINGE, (char(CHAR_A, SVC_HINGE, "write"),))
    )
    assert session.endpoint.characteristic.uuid == CHAR_B


def test_preferred_characteristic_beats_earlier_writable():
    session, _, _, _ = make_session(preferred=(CHAR_A.upper(),))
    drive_to_characteristics(session)

    session.handle(
        CharacteristicsDiscovered(PERIPHERAL, SVC_INFO, (char(CHAR_B, SVC_INFO, "write"),))
    )
    assert session.state is ConnectionState.CONNECTING

    session.handle(
        CharacteristicsDiscovered(PERIPHERAL, SVC_HINGE, (char(CHAR_A, SVC_HINGE, "write"),))
    )
    assert session.endpoint.characteristic.uuid == CHAR_A


def test_preferred_set_falls_back_to_first_writable():
    session, _, _, _ = make_session(preferred=("0000dead-0000-1000-8000-00805f9b34fb",))
    drive_to_characteristics(session)

    session.handle(
        CharacteristicsDiscovered(PERIPHERAL, SVC_INFO, (char(CHAR_B, SVC_INFO, "write"),))
    )
    session.handle(
        CharacteristicsDiscovered(PERIPHERAL, SVC_HINGE, (char(CHAR_A, SVC_HINGE, "write"),))
    )
    assert session.is_ready
    assert session.endpoint.characteristic.uuid == CHAR_B


def test_no_writable_characteristic_collapses_to_disconnected():
    session, adapter, transitions, failures = make_session()
    drive_to_characteristics(session)

    session.handle(CharacteristicsDiscovered(PERIPHERAL, SVC_INFO, (char(CHAR_READ, SVC_INFO, "read"),)))
    session.handle(CharacteristicsDiscovered(PERIPHERAL, SVC_HINGE, (char(CHAR_A, SVC_HINGE, "notify"),)))

    assert session.state is ConnectionState.DISCONNECTED
    assert session.last_failure is FailureReason.NO_WRITABLE_CHARACTERISTIC
    assert failures == [FailureReason.NO_WRITABLE_CHARACTERISTIC]
    assert SessionPhase.READY not in transitions
    assert ("cancel_connection", PERIPHERAL) in adapter.calls


def test_no_services_collapses_to_disconnected():
    session, _, _, _ = make_session()
    drive_to_characteristics(session, services=())
    assert session.state is ConnectionState.DISCONNECTED
    assert session.last_failure is FailureReason.NO_WRITABLE_CHARACTERISTIC


def test_connect_failure():
    session, _, _, _ = make_session()
    session.connect(PERIPHERAL)
    assert session.handle(ConnectFailed(PERIPHERAL, "timeout"))
    assert session.state is ConnectionState.DISCONNECTED
    assert session.last_failure is FailureReason.CONNECT_FAILED


def test_service_discovery_failure_drops_link():
    session, adapter, _, _ = make_session()
    session.connect(PERIPHERAL)
    session.handle(PeripheralConnected(PERIPHERAL))
    session.handle(ServiceDiscoveryFailed(PERIPHERAL, "gatt error"))
    assert session.state is ConnectionState.DISCONNECTED
    assert session.last_failure is FailureReason.SERVICE_DISCOVERY_FAILED
    assert adapter.calls[-1] == ("cancel_connection", PERIPHERAL)


def test_characteristic_discovery_failure():
    session, _, _, _ = make_session()
    drive_to_characteristics(session)
    session.handle(CharacteristicDiscoveryFailed(PERIPHERAL, SVC_INFO, "gatt error"))
    assert session.state is ConnectionState.DISCONNECTED
    assert session.last_failure is FailureReason.CHARACTERISTIC_DISCOVERY_FAILED


def test_disconnect_while_connecting_never_reaches_connected():
    session, adapter, transitions, _ = make_session()
    session.connect(PERIPHERAL)

    assert session.disconnect()
    assert session.state is ConnectionState.DISCONNECTED
    assert adapter.calls[-1] == ("cancel_connection", PERIPHERAL)

    # The stack may still report the connection afterwards
    assert not session.handle(PeripheralConnected(PERIPHERAL))
    assert session.state is ConnectionState.DISCONNECTED
    assert SessionPhase.READY not in transitions


def test_radio_loss_resets_and_ignores_late_callbacks():
    session, _, _, _ = make_session()
    drive_to_characteristics(session)

    assert session.handle(RadioStateChanged(available=False))
    assert session.state is ConnectionState.DISCONNECTED
    assert session.last_failure is FailureReason.RADIO_UNAVAILABLE

    late = CharacteristicsDiscovered(PERIPHERAL, SVC_HINGE, (char(CHAR_A, SVC_HINGE, "write"),))
    assert not session.handle(late)
    assert session.state is ConnectionState.DISCONNECTED
    assert session.endpoint is None


def test_events_for_other_peripherals_are_ignored():
    session, _, _, _ = make_session()
    session.connect(PERIPHERAL)
    assert not session.handle(PeripheralConnected("11:22:33:44:55:66"))
    assert session.phase is SessionPhase.CONNECTING


def test_connect_refused_while_busy():
    session, adapter, _, _ = make_session()
    session.connect(PERIPHERAL)
    assert not session.connect("11:22:33:44:55:66")
    assert session.target == PERIPHERAL
    assert adapter.names().count("connect") == 1


def test_link_loss_while_ready():
    session, _, _, failures = make_session()
    drive_to_characteristics(session)
    session.handle(CharacteristicsDiscovered(PERIPHERAL, SVC_HINGE, (char(CHAR_A, SVC_HINGE, "write"),)))

    assert session.handle(PeripheralDisconnected(PERIPHERAL))
    assert session.state is ConnectionState.DISCONNECTED
    assert session.endpoint is None
    assert session.peripheral_name is None
    assert failures == []


def test_write_failure_keeps_connection():
    session, _, _, failures = make_session()
    drive_to_characteristics(session)
    session.handle(CharacteristicsDiscovered(PERIPHERAL, SVC_HINGE, (char(CHAR_A, SVC_HINGE, "write"),)))

    assert session.handle(WriteFailed(PERIPHERAL, CHAR_A, "busy"))
    assert session.is_ready
    assert failures == [FailureReason.WRITE_FAILED]


def test_unnamed_peripheral_gets_default_name():
    session, _, _, _ = make_session()
    session.connect(PERIPHERAL)
    session.handle(PeripheralConnected(PERIPHERAL))
    session.handle(ServicesDiscovered(PERIPHERAL, (SVC_HINGE,)))
    session.handle(CharacteristicsDiscovered(PERIPHERAL, SVC_HINGE, (char(CHAR_A, SVC_HINGE, "write"),)))
    assert session.peripheral_name == "Device"


# ========== Dispatcher ==========


def ready_session(*props: str):
    session, adapter, _, _ = make_session()
    drive_to_characteristics(session, services=(SVC_HINGE,))
    session.handle(CharacteristicsDiscovered(PERIPHERAL, SVC_HINGE, (char(CHAR_A, SVC_HINGE, *props),)))
    return session, adapter


def test_dispatch_dropped_when_not_connected():
    session, adapter, _, _ = make_session()
    dispatcher = CommandDispatcher(session, adapter)
    assert not dispatcher.dispatch(b"E")
    assert "write" not in adapter.names()


def test_dispatch_dropped_while_connecting():
    session, adapter, _, _ = make_session()
    drive_to_characteristics(session)
    dispatcher = CommandDispatcher(session, adapter)
    assert not dispatcher.dispatch(b"E")
    assert "write" not in adapter.names()


def test_dispatch_prefers_unacknowledged_write():
    session, adapter = ready_session("write", "write-without-response")
    assert CommandDispatcher(session, adapter).dispatch(b"P050")
    assert adapter.calls[-1] == ("write", PERIPHERAL, CHAR_A, b"P050", False)


def test_dispatch_falls_back_to_acknowledged_write():
    session, adapter = ready_session("write")
    assert CommandDispatcher(session, adapter).dispatch(b"S")
    assert adapter.calls[-1] == ("write", PERIPHERAL, CHAR_A, b"S", True)
