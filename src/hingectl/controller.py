"""
Facade over the radio adapter, discovery registry and connection session.

This module provides the interface the console (or any other front end)
talks to: commands for scanning, connecting and moving the actuator, plus a
snapshot of observable state and change notifications.
"""

import asyncio
import logging
from dataclasses import replace
from typing import AsyncGenerator, Callable, List, Optional

from .adapter import BleakRadioAdapter, RadioAdapter
from .config import Settings
from .dispatcher import CommandDispatcher
from .encoder import (
    encode_extend,
    encode_position,
    encode_retract,
    encode_speed,
    encode_stop,
)
from .errors import FailureReason
from .model import (
    AdvertisementReceived,
    ConnectionState,
    ControllerSnapshot,
    RadioEvent,
    RadioStateChanged,
    SessionPhase,
)
from .registry import DiscoveryRegistry
from .session import ConnectionSession
from .simulated import SimulatedRadioAdapter

logger = logging.getLogger(__name__)

Subscriber = Callable[[ControllerSnapshot], None]


def create_adapter(settings: Settings) -> RadioAdapter:
    """Pick the radio backend from configuration.

    Args:
        settings: Runtime settings

    Returns:
        SimulatedRadioAdapter when ``settings.simulate`` is set, otherwise a
        BleakRadioAdapter
    """
    if settings.simulate:
        logger.info("Using simulated radio")
        return SimulatedRadioAdapter()
    return BleakRadioAdapter(
        service_filter=settings.service_filter,
        connect_timeout=settings.connect_timeout,
    )


class ActuatorController:
    """Manages discovery, connection and control of a smart hinge actuator."""

    def __init__(
        self,
        adapter: Optional[RadioAdapter] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """Initialize controller with no connection.

        Args:
            adapter: Radio backend (built from settings if None)
            settings: Runtime settings (defaults if None)
        """
        self.settings = settings or Settings()
        self.adapter = adapter or create_adapter(self.settings)
        self.registry = DiscoveryRegistry(self.adapter)
        self.session = ConnectionSession(
            self.adapter,
            preferred_characteristics=self.settings.preferred_characteristics,
            on_transition=self._on_transition,
            on_failure=self._record_failure,
        )
        self.dispatcher = CommandDispatcher(self.session, self.adapter)

        self._subscribers: List[Subscriber] = []
        self._last_failure: Optional[FailureReason] = None
        self._update_queue: asyncio.Queue = asyncio.Queue(maxsize=10)
        self._is_running = False

        self.adapter.set_event_handler(self._on_event)

    # ========== Lifecycle ==========

    async def start(self) -> None:
        """Bring up the radio backend; reports availability via events."""
        self._is_running = True
        await self.adapter.start()

    async def close(self) -> None:
        """Disconnect, stop scanning and release the radio."""
        self.disconnect()
        self.stop_scan()
        await self.adapter.close()
        self._is_running = False

    # ========== Observable state ==========

    @property
    def radio_available(self) -> bool:
        return self.adapter.available

    @property
    def scanning(self) -> bool:
        return self.registry.scanning

    @property
    def connection_state(self) -> ConnectionState:
        return self.session.state

    @property
    def is_connected(self) -> bool:
        return self.session.is_ready

    @property
    def connected_identifier(self) -> Optional[str]:
        return self.session.target if self.session.is_ready else None

    @property
    def connected_peripheral_name(self) -> Optional[str]:
        return self.session.peripheral_name if self.session.is_ready else None

    @property
    def last_failure(self) -> Optional[FailureReason]:
        return self._last_failure

    def snapshot(self) -> ControllerSnapshot:
        """Get a consistent, immutable view of the observable state."""
        return ControllerSnapshot(
            radio_available=self.radio_available,
            scanning=self.scanning,
            peripherals=tuple(replace(p) for p in self.registry.peripherals),
            connection_state=self.connection_state,
            connected_peripheral_name=self.connected_peripheral_name,
            connected_identifier=self.connected_identifier,
            last_failure=self._last_failure,
        )

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register for change notifications.

        Args:
            callback: Called with a ControllerSnapshot after every change

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Subscriber callback error: {e}")
        if self._is_running:
            try:
                self._update_queue.put_nowait(snapshot)
            except asyncio.QueueFull:
                # Drop if backed up - the next snapshot supersedes this one
                pass

    async def get_updates(self) -> AsyncGenerator[ControllerSnapshot, None]:
        """Async generator that yields snapshots as state changes.

        Yields:
            ControllerSnapshot after each change while the controller runs
        """
        while self._is_running:
            try:
                snapshot = await asyncio.wait_for(self._update_queue.get(), timeout=0.5)
                yield snapshot
            except asyncio.TimeoutError:
                continue

    async def wait_for_connection(self, timeout: float) -> bool:
        """Wait until a pending connection attempt resolves.

        Args:
            timeout: Seconds to wait before giving up and disconnecting

        Returns:
            True if connected, False if the attempt failed or timed out
        """
        if self.connection_state is not ConnectionState.CONNECTING:
            return self.is_connected

        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def _check(snapshot: ControllerSnapshot) -> None:
            if snapshot.connection_state is ConnectionState.CONNECTING or future.done():
                return
            future.set_result(snapshot.connection_state is ConnectionState.CONNECTED)

        unsubscribe = self.subscribe(_check)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Connection not ready after {timeout:.1f}s, giving up")
            self.disconnect()
            return False
        finally:
            unsubscribe()

    # ========== Commands ==========

    async def refresh_radio(self) -> bool:
        """Re-check the radio if it was reported unavailable.

        Lets a user retry (scan or connect again) recover once Bluetooth is
        back, without restarting.

        Returns:
            True if the radio is available
        """
        if not self.radio_available:
            await self.adapter.check_radio()
        return self.radio_available

    def begin_scan(self) -> bool:
        """Start scanning; ignored if the radio is unavailable or busy connecting."""
        if self.connection_state is not ConnectionState.DISCONNECTED:
            logger.debug("Scan ignored: session active")
            return False
        started = self.registry.begin_scan()
        if not started:
            self._last_failure = FailureReason.SCAN_IGNORED
        self._notify()
        return started

    def stop_scan(self) -> None:
        if self.registry.scanning:
            self.registry.stop_scan()
            self._notify()

    def connect(self, identifier: str) -> bool:
        """Connect to a discovered (or known) peripheral.

        Stops any scan in progress before the connect request is issued.

        Args:
            identifier: Peripheral identifier

        Returns:
            True if the attempt was started
        """
        if not self.radio_available:
            logger.warning("Cannot connect: radio unavailable")
            self._last_failure = FailureReason.RADIO_UNAVAILABLE
            self._notify()
            return False

        entry = self.registry.get(identifier)
        self.registry.stop_scan()
        started = self.session.connect(identifier, entry.name if entry else None)
        if started:
            self._last_failure = None
        self._notify()
        return started

    def disconnect(self) -> None:
        if self.session.disconnect():
            self._notify()

    def extend(self) -> bool:
        return self._send(encode_extend())

    def retract(self) -> bool:
        return self._send(encode_retract())

    def stop(self) -> bool:
        return self._send(encode_stop())

    def set_position(self, normalized: float) -> bool:
        """Move to a normalized position (0.0 retracted .. 1.0 extended)."""
        return self._send(encode_position(normalized))

    def set_speed(self, normalized: float) -> bool:
        """Set the normalized motor speed (0.0 .. 1.0)."""
        return self._send(encode_speed(normalized))

    def _send(self, payload: bytes) -> bool:
        if self.dispatcher.dispatch(payload):
            return True
        self._last_failure = FailureReason.WRITE_DROPPED
        self._notify()
        return False

    # ========== Event routing ==========

    def _on_event(self, event: RadioEvent) -> None:
        """Single entry point for every adapter event."""
        if isinstance(event, RadioStateChanged):
            self._on_radio_state(event)
            return

        if isinstance(event, AdvertisementReceived):
            if self.registry.on_advertisement(event.identifier, event.name, event.rssi):
                self._notify()
            return

        if self.session.handle(event):
            self._notify()

    def _on_radio_state(self, event: RadioStateChanged) -> None:
        if event.available:
            logger.info("Bluetooth available")
        else:
            logger.warning("Bluetooth unavailable")
            self.registry.reset()
            self.session.handle(event)
            self._last_failure = FailureReason.RADIO_UNAVAILABLE
        self._notify()

    def _on_transition(self, old: SessionPhase, new: SessionPhase) -> None:
        if new is SessionPhase.READY:
            # Candidates were only gathered to pick this peripheral
            self.registry.clear()

    def _record_failure(self, reason: FailureReason) -> None:
        self._last_failure = reason
