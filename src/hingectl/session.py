"""
Connection state machine for a single peripheral.

The session walks one peripheral through connect, service discovery and
characteristic discovery until a writable characteristic has been selected.
Every radio callback arrives as a ``RadioEvent`` through ``handle()``; any
failure on the way collapses the session back to IDLE, so a half-ready
connection is never observable. Events for another peripheral, or that
arrive after the session has moved on, are ignored.
"""

import logging
from typing import Callable, Iterable, List, Optional

from .adapter import RadioAdapter
from .errors import FailureReason
from .model import (
    CharacteristicDiscoveryFailed,
    CharacteristicInfo,
    CharacteristicsDiscovered,
    ConnectFailed,
    ConnectionState,
    NegotiatedEndpoint,
    PeripheralConnected,
    PeripheralDisconnected,
    RadioEvent,
    RadioStateChanged,
    ServiceDiscoveryFailed,
    ServicesDiscovered,
    SessionPhase,
    WriteFailed,
)

logger = logging.getLogger(__name__)

DEFAULT_PERIPHERAL_NAME = "Device"

TransitionCallback = Callable[[SessionPhase, SessionPhase], None]
FailureCallback = Callable[[FailureReason], None]


class ConnectionSession:
    """Drives one connection attempt from request to a ready write endpoint."""

    def __init__(
        self,
        adapter: RadioAdapter,
        preferred_characteristics: Iterable[str] = (),
        on_transition: Optional[TransitionCallback] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> None:
        """Initialize an idle session.

        Args:
            adapter: Radio adapter used to issue requests
            preferred_characteristics: Characteristic UUIDs to prefer when
                selecting the write endpoint
            on_transition: Called with (old, new) on every phase change
            on_failure: Called with the reason whenever an attempt fails
        """
        self._adapter = adapter
        self._preferred = frozenset(uuid.lower() for uuid in preferred_characteristics)
        self._on_transition = on_transition
        self._on_failure = on_failure

        self.phase = SessionPhase.IDLE
        self.target: Optional[str] = None
        self.peripheral_name: Optional[str] = None
        self.endpoint: Optional[NegotiatedEndpoint] = None
        self.last_failure: Optional[FailureReason] = None

        self._pending_services: List[str] = []
        self._fallback: Optional[CharacteristicInfo] = None

    @property
    def state(self) -> ConnectionState:
        return self.phase.connection_state

    @property
    def is_ready(self) -> bool:
        return self.phase is SessionPhase.READY and self.endpoint is not None

    # ========== User intents ==========

    def connect(self, identifier: str, name: Optional[str] = None) -> bool:
        """Start connecting to a peripheral.

        Only one session may be active; a request while another attempt or
        connection is in progress is refused.

        Args:
            identifier: Peripheral to connect to
            name: Name to show until the stack reports one

        Returns:
            True if the connect request was issued
        """
        if self.phase is not SessionPhase.IDLE:
            logger.warning(
                f"Connect to {identifier} refused: session busy with {self.target}"
            )
            return False

        self.target = identifier
        self.peripheral_name = name
        self.last_failure = None
        self._set_phase(SessionPhase.CONNECTING)
        logger.info(f"Connecting to {name or identifier}...")
        self._adapter.connect(identifier)
        return True

    def disconnect(self) -> bool:
        """Cancel a pending attempt or drop the connection.

        Returns to IDLE immediately without waiting for the adapter.

        Returns:
            True if there was anything to disconnect
        """
        if self.phase is SessionPhase.IDLE or self.target is None:
            return False

        target = self.target
        self._adapter.cancel_connection(target)
        self._reset()
        logger.info(f"Disconnected from {target}")
        return True

    # ========== Radio events ==========

    def handle(self, event: RadioEvent) -> bool:
        """Apply one radio event.

        Args:
            event: Event delivered by the adapter

        Returns:
            True if the session state changed
        """
        if isinstance(event, RadioStateChanged):
            return self._on_radio_state(event)

        identifier = getattr(event, "identifier", None)
        if self.target is None or identifier != self.target:
            logger.debug(f"Ignoring {type(event).__name__} for {identifier}")
            return False

        if isinstance(event, PeripheralConnected):
            return self._on_connected(event)
        if isinstance(event, ConnectFailed):
            return self._on_connect_failed(event)
        if isinstance(event, ServicesDiscovered):
            return self._on_services(event)
        if isinstance(event, ServiceDiscoveryFailed):
            return self._on_service_failure(event)
        if isinstance(event, CharacteristicsDiscovered):
            return self._on_characteristics(event)
        if isinstance(event, CharacteristicDiscoveryFailed):
            return self._on_characteristic_failure(event)
        if isinstance(event, PeripheralDisconnected):
            return self._on_disconnected(event)
        if isinstance(event, WriteFailed):
            return self._on_write_failed(event)
        return False

    def _expect(self, phase: SessionPhase, event: RadioEvent) -> bool:
        if self.phase is phase:
            return True
        logger.debug(f"Late {type(event).__name__} ignored in phase {self.phase.value}")
        return False

    def _on_radio_state(self, event: RadioStateChanged) -> bool:
        if event.available or self.phase is SessionPhase.IDLE:
            return False
        logger.warning("Radio unavailable, connection reset")
        if self.target is not None:
            self._adapter.cancel_connection(self.target)
        self._fail(FailureReason.RADIO_UNAVAILABLE)
        return True

    def _on_connected(self, event: PeripheralConnected) -> bool:
        if not self._expect(SessionPhase.CONNECTING, event):
            return False
        if event.name:
            self.peripheral_name = event.name
        self._set_phase(SessionPhase.DISCOVERING_SERVICES)
        self._adapter.discover_services(event.identifier)
        return True

    def _on_connect_failed(self, event: ConnectFailed) -> bool:
        if not self._expect(SessionPhase.CONNECTING, event):
            return False
        logger.warning(f"Connection to {event.identifier} failed: {event.reason}")
        self._fail(FailureReason.CONNECT_FAILED)
        return True

    def _on_services(self, event: ServicesDiscovered) -> bool:
        if not self._expect(SessionPhase.DISCOVERING_SERVICES, event):
            return False
        if not event.service_uuids:
            logger.warning(f"{event.identifier} exposes no services")
            self._fail(FailureReason.NO_WRITABLE_CHARACTERISTIC, drop_link=True)
            return True

        self._pending_services = list(event.service_uuids)
        self._set_phase(SessionPhase.DISCOVERING_CHARACTERISTICS)
        for service_uuid in list(self._pending_services):
            self._adapter.discover_characteristics(event.identifier, service_uuid)
        return True

    def _on_service_failure(self, event: ServiceDiscoveryFailed) -> bool:
        if not self._expect(SessionPhase.DISCOVERING_SERVICES, event):
            return False
        logger.warning(f"Service discovery on {event.identifier} failed: {event.reason}")
        self._fail(FailureReason.SERVICE_DISCOVERY_FAILED, drop_link=True)
        return True

    def _on_characteristics(self, event: CharacteristicsDiscovered) -> bool:
        if not self._expect(SessionPhase.DISCOVERING_CHARACTERISTICS, event):
            return False
        if event.service_uuid not in self._pending_services:
            logger.debug(f"Unexpected characteristics for service {event.service_uuid}")
            return False
        self._pending_services.remove(event.service_uuid)

        selected = self._select(event.characteristics)
        if selected is not None:
            self._ready(selected)
            return True

        if self._pending_services:
            return False

        # All services exhausted without a preferred match
        if self._fallback is not None:
            self._ready(self._fallback)
            return True
        logger.warning(f"No writable characteristic found on {event.identifier}")
        self._fail(FailureReason.NO_WRITABLE_CHARACTERISTIC, drop_link=True)
        return True

    def _select(self, characteristics: Iterable[CharacteristicInfo]) -> Optional[CharacteristicInfo]:
        """First-match selection over one service's characteristics.

        Without a preferred set the first writable characteristic wins
        immediately. With one, only a preferred UUID wins immediately; the
        first writable characteristic is kept as a fallback for when every
        service has been seen.
        """
        for char in characteristics:
            if self._preferred:
                if char.uuid.lower() in self._preferred:
                    return char
                if self._fallback is None and char.writable:
                    self._fallback = char
            elif char.writable:
                return char
        return None

    def _on_characteristic_failure(self, event: CharacteristicDiscoveryFailed) -> bool:
        if not self._expect(SessionPhase.DISCOVERING_CHARACTERISTICS, event):
            return False
        logger.warning(
            f"Characteristic discovery for {event.service_uuid} failed: {event.reason}"
        )
        self._fail(FailureReason.CHARACTERISTIC_DISCOVERY_FAILED, drop_link=True)
        return True

    def _on_disconnected(self, event: PeripheralDisconnected) -> bool:
        if self.phase is SessionPhase.IDLE:
            return False
        if self.phase is SessionPhase.READY:
            logger.warning(f"{self.peripheral_name or event.identifier} disconnected")
            self._reset()
        else:
            logger.warning(f"{event.identifier} dropped the link while connecting")
            self._fail(FailureReason.CONNECT_FAILED)
        return True

    def _on_write_failed(self, event: WriteFailed) -> bool:
        if self.phase is not SessionPhase.READY:
            return False
        logger.warning(f"Write to {event.characteristic_uuid} failed: {event.reason}")
        self.last_failure = FailureReason.WRITE_FAILED
        if self._on_failure is not None:
            self._on_failure(FailureReason.WRITE_FAILED)
        return True

    # ========== Transitions ==========

    def _ready(self, characteristic: CharacteristicInfo) -> None:
        assert self.target is not None
        self.endpoint = NegotiatedEndpoint(self.target, characteristic)
        self._pending_services.clear()
        self._fallback = None
        if not self.peripheral_name:
            self.peripheral_name = DEFAULT_PERIPHERAL_NAME
        self._set_phase(SessionPhase.READY)
        mode = "unacknowledged" if characteristic.supports_unacknowledged else "acknowledged"
        logger.info(
            f"Connected to {self.peripheral_name} "
            f"(write {characteristic.uuid}, {mode} writes)"
        )

    def _fail(self, reason: FailureReason, drop_link: bool = False) -> None:
        if drop_link and self.target is not None:
            self._adapter.cancel_connection(self.target)
        self.last_failure = reason
        self._reset()
        if self._on_failure is not None:
            self._on_failure(reason)

    def _reset(self) -> None:
        self.target = None
        self.peripheral_name = None
        self.endpoint = None
        self._pending_services.clear()
        self._fallback = None
        self._set_phase(SessionPhase.IDLE)

    def _set_phase(self, phase: SessionPhase) -> None:
        old, self.phase = self.phase, phase
        if old is not phase:
            logger.debug(f"Session {old.value} -> {phase.value}")
            if self._on_transition is not None:
                self._on_transition(old, phase)
