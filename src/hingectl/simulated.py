"""
Simulated radio backend for development, CI and machines without Bluetooth.

Fabricates the same event sequence a real BLE stack produces, delivered on
the event loop in request order, so the connection state machine cannot
tell which adapter backs it. Every write is recorded for inspection.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from .adapter import RadioAdapter
from .core import PROP_WRITE, PROP_WRITE_WITHOUT_RESPONSE, SIM_LATENCY
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

# Stages at which a simulated peripheral can be told to fail
FAIL_CONNECT = "connect"
FAIL_SERVICES = "services"
FAIL_CHARACTERISTICS = "characteristics"

HINGE_SERVICE_UUID = "0000ffe0-0000-1000-8000-00805f9b34fb"
HINGE_CHAR_UUID = "0000ffe1-0000-1000-8000-00805f9b34fb"
BATTERY_SERVICE_UUID = "0000180f-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL_UUID = "00002a19-0000-1000-8000-00805f9b34fb"


@dataclass
class SimulatedPeripheral:
    """A fake peripheral: advertisement data plus its GATT layout.

    ``services`` maps a service UUID to ``(characteristic uuid, properties)``
    pairs in discovery order.
    """

    identifier: str
    name: str
    rssi: Optional[int] = -60
    services: Dict[str, List[Tuple[str, Tuple[str, ...]]]] = field(default_factory=dict)
    fail_stage: Optional[str] = None


@dataclass(frozen=True)
class WriteRecord:
    identifier: str
    characteristic_uuid: str
    payload: bytes
    with_response: bool


def demo_peripherals() -> List[SimulatedPeripheral]:
    """Two hinges: one accepting unacknowledged writes, one acknowledged only."""
    return [
        SimulatedPeripheral(
            identifier="SIM-00:00:00:00:00:01",
            name="Sim Hinge A",
            rssi=-60,
            services={
                BATTERY_SERVICE_UUID: [(BATTERY_LEVEL_UUID, ("read", "notify"))],
                HINGE_SERVICE_UUID: [
                    (HINGE_CHAR_UUID, (PROP_WRITE, PROP_WRITE_WITHOUT_RESPONSE))
                ],
            },
        ),
        SimulatedPeripheral(
            identifier="SIM-00:00:00:00:00:02",
            name="Sim Hinge B",
            rssi=-75,
            services={HINGE_SERVICE_UUID: [(HINGE_CHAR_UUID, (PROP_WRITE,))]},
        ),
    ]


class SimulatedRadioAdapter(RadioAdapter):
    """Drop-in RadioAdapter that fabricates discovery and connection events."""

    def __init__(
        self,
        peripherals: Optional[List[SimulatedPeripheral]] = None,
        latency: float = SIM_LATENCY,
        available: bool = True,
    ) -> None:
        super().__init__()
        if peripherals is None:
            peripherals = demo_peripherals()
        self.peripherals: Dict[str, SimulatedPeripheral] = {
            p.identifier: p for p in peripherals
        }
        self.latency = latency
        self.scanning = False
        self.connected: set = set()
        self.calls: List[str] = []
        self.writes: List[WriteRecord] = []
        self._initially_available = available
        self._queue: Deque[Tuple[Optional[str], RadioEvent]] = deque()

    # ========== Event scheduling ==========

    def _schedule(self, identifier: Optional[str], event: RadioEvent) -> None:
        """Queue an event; events always fire in the order they were queued."""
        self._queue.append((identifier, event))
        asyncio.get_running_loop().call_later(self.latency, self._pump)

    def _pump(self) -> None:
        if not self._queue:
            return
        _, event = self._queue.popleft()
        if isinstance(event, PeripheralConnected):
            self.connected.add(event.identifier)
        self.emit(event)

    def _cancel_pending(self, identifier: Optional[str] = None) -> None:
        """Drop queued events for one peripheral, or all of them."""
        if identifier is None:
            self._queue.clear()
            return
        self._queue = deque(item for item in self._queue if item[0] != identifier)

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def settle(self) -> None:
        """Wait until every queued event, including follow-ups, has fired."""
        while self._queue:
            await asyncio.sleep(self.latency)
        await asyncio.sleep(0)

    # ========== Radio power ==========

    async def start(self) -> None:
        self.calls.append("start")
        self.emit(RadioStateChanged(available=self._initially_available))

    async def close(self) -> None:
        self.calls.append("close")
        self._cancel_pending()
        self.scanning = False
        self.connected.clear()

    def set_available(self, available: bool) -> None:
        """Simulate the user toggling Bluetooth power."""
        if not available:
            self._cancel_pending()
            self.scanning = False
            self.connected.clear()
        self.emit(RadioStateChanged(available=available))

    # ========== Scanning ==========

    def start_scan(self) -> None:
        self.calls.append("start_scan")
        if not self.available:
            return
        self.scanning = True
        for peripheral in self.peripherals.values():
            self.advertise(peripheral.identifier)

    def stop_scan(self) -> None:
        self.calls.append("stop_scan")
        self.scanning = False
        self._queue = deque(
            item for item in self._queue if not isinstance(item[1], AdvertisementReceived)
        )

    def advertise(
        self,
        identifier: str,
        name: Optional[str] = None,
        rssi: Optional[int] = None,
    ) -> None:
        """Queue one advertisement, optionally overriding name and signal."""
        if not self.scanning:
            return
        peripheral = self.peripherals[identifier]
        self._schedule(
            None,
            AdvertisementReceived(
                identifier,
                name if name is not None else peripheral.name,
                rssi if rssi is not None else peripheral.rssi,
            ),
        )

    # ========== Connection ==========

    def connect(self, identifier: str) -> None:
        self.calls.append("connect")
        peripheral = self.peripherals.get(identifier)
        if peripheral is None or not self.available:
            self._schedule(identifier, ConnectFailed(identifier, "peripheral not found"))
        elif peripheral.fail_stage == FAIL_CONNECT:
            self._schedule(identifier, ConnectFailed(identifier, "simulated failure"))
        else:
            self._schedule(identifier, PeripheralConnected(identifier, peripheral.name))

    def cancel_connection(self, identifier: str) -> None:
        self.calls.append("cancel_connection")
        self._cancel_pending(identifier)
        self.connected.discard(identifier)

    def drop_link(self, identifier: str) -> None:
        """Simulate the peripheral going out of range."""
        self._cancel_pending(identifier)
        if identifier in self.connected:
            self.connected.discard(identifier)
            self.emit(PeripheralDisconnected(identifier))

    # ========== GATT ==========

    def discover_services(self, identifier: str) -> None:
        self.calls.append("discover_services")
        peripheral = self.peripherals.get(identifier)
        if peripheral is None or identifier not in self.connected:
            self._schedule(identifier, ServiceDiscoveryFailed(identifier, "not connected"))
        elif peripheral.fail_stage == FAIL_SERVICES:
            self._schedule(identifier, ServiceDiscoveryFailed(identifier, "simulated failure"))
        else:
            self._schedule(
                identifier, ServicesDiscovered(identifier, tuple(peripheral.services))
            )

    def discover_characteristics(self, identifier: str, service_uuid: str) -> None:
        self.calls.append("discover_characteristics")
        peripheral = self.peripherals.get(identifier)
        if (
            peripheral is None
            or identifier not in self.connected
            or service_uuid not in peripheral.services
        ):
            self._schedule(
                identifier,
                CharacteristicDiscoveryFailed(identifier, service_uuid, "unknown service"),
            )
        elif peripheral.fail_stage == FAIL_CHARACTERISTICS:
            self._schedule(
                identifier,
                CharacteristicDiscoveryFailed(identifier, service_uuid, "simulated failure"),
            )
        else:
            chars = tuple(
                CharacteristicInfo(uuid=uuid, service_uuid=service_uuid, properties=props)
                for uuid, props in peripheral.services[service_uuid]
            )
            self._schedule(
                identifier, CharacteristicsDiscovered(identifier, service_uuid, chars)
            )

    def write(
        self,
        identifier: str,
        characteristic: CharacteristicInfo,
        payload: bytes,
        with_response: bool,
    ) -> None:
        self.calls.append("write")
        if identifier not in self.connected:
            self._schedule(
                identifier, WriteFailed(identifier, characteristic.uuid, "not connected")
            )
            return
        self.writes.append(
            WriteRecord(identifier, characteristic.uuid, bytes(payload), with_response)
        )
        logger.debug(
            f"Simulated write to {identifier} {characteristic.uuid}: {payload!r} "
            f"({'acknowledged' if with_response else 'unacknowledged'})"
        )
