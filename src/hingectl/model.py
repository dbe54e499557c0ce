"""
Data model shared by the adapter, registry, session and console.

Radio callbacks are represented as small frozen dataclasses, one per
callback kind. Adapters deliver them to a single handler, and the session
consumes them in its transition function.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

from .core import PROP_WRITE, PROP_WRITE_WITHOUT_RESPONSE, UNKNOWN_NAME
from .errors import FailureReason


class ConnectionState(Enum):
    """Connection state visible to the presentation layer."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SessionPhase(Enum):
    """Internal phase of a connection session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    DISCOVERING_SERVICES = "discovering-services"
    DISCOVERING_CHARACTERISTICS = "discovering-characteristics"
    READY = "ready"

    @property
    def connection_state(self) -> ConnectionState:
        """Collapse the phase to the public connection state."""
        if self is SessionPhase.IDLE:
            return ConnectionState.DISCONNECTED
        if self is SessionPhase.READY:
            return ConnectionState.CONNECTED
        return ConnectionState.CONNECTING


@dataclass
class DiscoveredPeripheral:
    """An advertising peripheral seen during a scan.

    Mutable: a repeated advertisement overwrites name and rssi in place.
    """

    identifier: str
    name: str = UNKNOWN_NAME
    rssi: Optional[int] = None


@dataclass(frozen=True)
class CharacteristicInfo:
    """A GATT characteristic as reported by characteristic discovery."""

    uuid: str
    service_uuid: str
    properties: Tuple[str, ...] = ()
    handle: Optional[int] = None

    @property
    def supports_acknowledged(self) -> bool:
        return PROP_WRITE in self.properties

    @property
    def supports_unacknowledged(self) -> bool:
        return PROP_WRITE_WITHOUT_RESPONSE in self.properties

    @property
    def writable(self) -> bool:
        return self.supports_acknowledged or self.supports_unacknowledged


@dataclass(frozen=True)
class NegotiatedEndpoint:
    """The write target selected for the connected peripheral."""

    identifier: str
    characteristic: CharacteristicInfo

    @property
    def supports_acknowledged(self) -> bool:
        return self.characteristic.supports_acknowledged

    @property
    def supports_unacknowledged(self) -> bool:
        return self.characteristic.supports_unacknowledged


# ========== Radio events ==========


@dataclass(frozen=True)
class RadioStateChanged:
    available: bool


@dataclass(frozen=True)
class AdvertisementReceived:
    identifier: str
    name: str = UNKNOWN_NAME
    rssi: Optional[int] = None


@dataclass(frozen=True)
class PeripheralConnected:
    identifier: str
    name: Optional[str] = None


@dataclass(frozen=True)
class ConnectFailed:
    identifier: str
    reason: str = ""


@dataclass(frozen=True)
class PeripheralDisconnected:
    identifier: str


@dataclass(frozen=True)
class ServicesDiscovered:
    identifier: str
    service_uuids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ServiceDiscoveryFailed:
    identifier: str
    reason: str = ""


@dataclass(frozen=True)
class CharacteristicsDiscovered:
    identifier: str
    service_uuid: str
    characteristics: Tuple[CharacteristicInfo, ...] = ()


@dataclass(frozen=True)
class CharacteristicDiscoveryFailed:
    identifier: str
    service_uuid: str
    reason: str = ""


@dataclass(frozen=True)
class WriteFailed:
    identifier: str
    characteristic_uuid: str
    reason: str = ""


RadioEvent = Union[
    RadioStateChanged,
    AdvertisementReceived,
    PeripheralConnected,
    ConnectFailed,
    PeripheralDisconnected,
    ServicesDiscovered,
    ServiceDiscoveryFailed,
    CharacteristicsDiscovered,
    CharacteristicDiscoveryFailed,
    WriteFailed,
]


@dataclass(frozen=True)
class ControllerSnapshot:
    """Immutable view of everything the presentation layer observes."""

    radio_available: bool = False
    scanning: bool = False
    peripherals: Tuple[DiscoveredPeripheral, ...] = field(default_factory=tuple)
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    connected_peripheral_name: Optional[str] = None
    connected_identifier: Optional[str] = None
    last_failure: Optional[FailureReason] = None
