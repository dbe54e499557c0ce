"""
Radio adapter interface and the bleak-backed implementation.

Adapters never return results from their request methods. Every completion
or failure is delivered as a ``RadioEvent`` to the handler registered with
``set_event_handler``, always on the asyncio event loop thread.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Set, Tuple

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakBluetoothNotAvailableError, BleakError

from .core import DEFAULT_CONNECT_TIMEOUT, UNKNOWN_NAME
from .model import (
    AdvertisementReceived,
    CharacteristicDiscoveryFailed,
    CharacteristicInfo,
    CharacteristicsDiscovered,
    ConnectFailed,
    PeripheralConnected,
    PeripheralDisconnected,
    RadioEvent,
    RadioStateChanged,
    ServiceDiscoveryFailed,
    ServicesDiscovered,
    WriteFailed,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[RadioEvent], None]


class RadioAdapter(ABC):
    """Capability interface over a BLE central."""

    def __init__(self) -> None:
        self._handler: Optional[EventHandler] = None
        self._available = False

    @property
    def available(self) -> bool:
        """Whether the radio is currently powered and usable."""
        return self._available

    def set_event_handler(self, handler: Optional[EventHandler]) -> None:
        """Register the single consumer of radio events.

        Args:
            handler: Callable invoked with each RadioEvent, or None to detach
        """
        self._handler = handler

    def emit(self, event: RadioEvent) -> None:
        """Deliver an event to the registered handler."""
        if isinstance(event, RadioStateChanged):
            self._available = event.available
        if self._handler is None:
            logger.debug(f"No handler for {event!r}")
            return
        self._handler(event)

    @abstractmethod
    async def start(self) -> None:
        """Bring the adapter up and report the initial radio state."""

    @abstractmethod
    async def close(self) -> None:
        """Release radio resources and cancel outstanding requests."""

    async def check_radio(self) -> bool:
        """Re-check radio availability; adapters that push power changes need not."""
        return self.available

    @abstractmethod
    def start_scan(self) -> None:
        """Begin delivering AdvertisementReceived events."""

    @abstractmethod
    def stop_scan(self) -> None:
        """Stop delivering advertisements."""

    @abstractmethod
    def connect(self, identifier: str) -> None:
        """Request a connection; answered by PeripheralConnected or ConnectFailed."""

    @abstractmethod
    def cancel_connection(self, identifier: str) -> None:
        """Cancel a pending connection or drop an established one."""

    @abstractmethod
    def discover_services(self, identifier: str) -> None:
        """Answered by ServicesDiscovered or ServiceDiscoveryFailed."""

    @abstractmethod
    def discover_characteristics(self, identifier: str, service_uuid: str) -> None:
        """Answered by CharacteristicsDiscovered or CharacteristicDiscoveryFailed."""

    @abstractmethod
    def write(
        self,
        identifier: str,
        characteristic: CharacteristicInfo,
        payload: bytes,
        with_response: bool,
    ) -> None:
        """Write a payload; only failures are reported (WriteFailed)."""


class BleakRadioAdapter(RadioAdapter):
    """RadioAdapter backed by bleak's BleakScanner and BleakClient."""

    def __init__(
        self,
        service_filter: Tuple[str, ...] = (),
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        super().__init__()
        self._service_filter = list(service_filter) or None
        self._connect_timeout = connect_timeout
        self._scanner: Optional[BleakScanner] = None
        self._devices: Dict[str, BLEDevice] = {}
        self._clients: Dict[str, BleakClient] = {}
        self._connect_tasks: Dict[str, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._write_tasks: Set[asyncio.Task] = set()

    async def start(self) -> None:
        await self.check_radio()

    async def check_radio(self) -> bool:
        """Check the radio by briefly starting a scanner.

        bleak has no power-state notification, so this runs at startup and
        again whenever the user retries while the radio is reported
        unavailable. The result is reported as a RadioStateChanged event.

        Returns:
            True if the radio is available
        """
        try:
            scanner = BleakScanner()
            await scanner.start()
            await scanner.stop()
        except BleakError as e:
            self._radio_lost(e)
            return False
        self.emit(RadioStateChanged(available=True))
        return True

    async def close(self) -> None:
        # Pending connects are abandoned; writes and disconnects run to completion
        for task in list(self._connect_tasks.values()):
            task.cancel()
        self._connect_tasks.clear()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._scanner is not None:
            try:
                await self._scanner.stop()
            except BleakError as e:
                logger.debug(f"Scanner stop on close failed: {e}")
            self._scanner = None
        for identifier, client in list(self._clients.items()):
            try:
                await client.disconnect()
            except BleakError as e:
                logger.debug(f"Disconnect of {identifier} on close failed: {e}")
        self._clients.clear()

    def _spawn(self, coro) -> asyncio.Task:  # type: ignore[no-untyped-def]
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _post(self, event: RadioEvent) -> None:
        """Deliver an event on the next loop iteration, never re-entrantly."""
        asyncio.get_running_loop().call_soon(self.emit, event)

    def _radio_lost(self, error: Exception) -> None:
        logger.warning(f"Bluetooth not available: {error}")
        # A scanner on a dead radio would block the next start_scan
        self.stop_scan()
        self.emit(RadioStateChanged(available=False))

    # ========== Scanning ==========

    def _on_detection(self, device: BLEDevice, adv: AdvertisementData) -> None:
        """Scanner callback, called on the event loop."""
        self._devices[device.address] = device
        name = adv.local_name or device.name or UNKNOWN_NAME
        self.emit(AdvertisementReceived(device.address, name, adv.rssi))

    def start_scan(self) -> None:
        if self._scanner is not None:
            return
        self._scanner = BleakScanner(
            detection_callback=self._on_detection,
            service_uuids=self._service_filter,
        )
        self._spawn(self._start_scanner(self._scanner))

    async def _start_scanner(self, scanner: BleakScanner) -> None:
        try:
            await scanner.start()
            logger.debug("Scanner started")
        except BleakBluetoothNotAvailableError as e:
            if self._scanner is scanner:
                self._scanner = None
            self._radio_lost(e)
        except BleakError as e:
            if self._scanner is scanner:
                self._scanner = None
            logger.error(f"Scan start failed: {e}")

    def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is not None:
            self._spawn(self._stop_scanner(scanner))

    async def _stop_scanner(self, scanner: BleakScanner) -> None:
        try:
            await scanner.stop()
            logger.debug("Scanner stopped")
        except BleakError as e:
            logger.debug(f"Scan stop failed: {e}")

    # ========== Connection ==========

    def connect(self, identifier: str) -> None:
        self._connect_tasks[identifier] = self._spawn(self._connect(identifier))

    async def _connect(self, identifier: str) -> None:
        target = self._devices.get(identifier, identifier)

        def _on_disconnect(client: BleakClient) -> None:
            if self._clients.pop(identifier, None) is client:
                logger.info(f"Link to {identifier} lost")
                self.emit(PeripheralDisconnected(identifier))

        client = BleakClient(
            target,
            disconnected_callback=_on_disconnect,
            timeout=self._connect_timeout,
        )
        try:
            await client.connect()
        except asyncio.CancelledError:
            await self._safe_disconnect(client)
            raise
        except BleakBluetoothNotAvailableError as e:
            self._radio_lost(e)
            return
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            self.emit(ConnectFailed(identifier, str(e)))
            return
        finally:
            if self._connect_tasks.get(identifier) is asyncio.current_task():
                del self._connect_tasks[identifier]

        self._clients[identifier] = client
        name = self._devices[identifier].name if identifier in self._devices else None
        self.emit(PeripheralConnected(identifier, name))

    async def _safe_disconnect(self, client: BleakClient) -> None:
        try:
            await client.disconnect()
        except BleakError as e:
            logger.debug(f"Disconnect failed: {e}")

    async def _disconnect_after_writes(self, client: BleakClient) -> None:
        if self._write_tasks:
            await asyncio.wait(set(self._write_tasks), timeout=self._connect_timeout)
        await self._safe_disconnect(client)

    def cancel_connection(self, identifier: str) -> None:
        task = self._connect_tasks.pop(identifier, None)
        if task is not None:
            task.cancel()
        client = self._clients.pop(identifier, None)
        if client is not None:
            self._spawn(self._disconnect_after_writes(client))

    # ========== GATT ==========

    def discover_services(self, identifier: str) -> None:
        client = self._clients.get(identifier)
        if client is None:
            self._post(ServiceDiscoveryFailed(identifier, "not connected"))
            return
        try:
            uuids = tuple(service.uuid for service in client.services)
        except BleakError as e:
            self._post(ServiceDiscoveryFailed(identifier, str(e)))
            return
        self._post(ServicesDiscovered(identifier, uuids))

    def discover_characteristics(self, identifier: str, service_uuid: str) -> None:
        client = self._clients.get(identifier)
        if client is None:
            self._post(
                CharacteristicDiscoveryFailed(identifier, service_uuid, "not connected")
            )
            return
        try:
            service = client.services.get_service(service_uuid)
        except BleakError as e:
            self._post(CharacteristicDiscoveryFailed(identifier, service_uuid, str(e)))
            return
        if service is None:
            self._post(
                CharacteristicDiscoveryFailed(identifier, service_uuid, "unknown service")
            )
            return
        chars = tuple(
            CharacteristicInfo(
                uuid=char.uuid,
                service_uuid=service_uuid,
                properties=tuple(char.properties),
                handle=char.handle,
            )
            for char in service.characteristics
        )
        self._post(CharacteristicsDiscovered(identifier, service_uuid, chars))

    def write(
        self,
        identifier: str,
        characteristic: CharacteristicInfo,
        payload: bytes,
        with_response: bool,
    ) -> None:
        client = self._clients.get(identifier)
        if client is None:
            self._post(WriteFailed(identifier, characteristic.uuid, "not connected"))
            return
        task = self._spawn(
            self._write(client, identifier, characteristic, payload, with_response)
        )
        self._write_tasks.add(task)
        task.add_done_callback(self._write_tasks.discard)

    async def _write(
        self,
        client: BleakClient,
        identifier: str,
        characteristic: CharacteristicInfo,
        payload: bytes,
        with_response: bool,
    ) -> None:
        try:
            target = (
                characteristic.handle
                if characteristic.handle is not None
                else characteristic.uuid
            )
            await client.write_gatt_char(target, payload, response=with_response)
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            self._post(WriteFailed(identifier, characteristic.uuid, str(e)))
