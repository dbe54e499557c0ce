"""
Deduplicated registry of advertising peripherals.
"""

import logging
from typing import Dict, List, Optional

from .adapter import RadioAdapter
from .core import UNKNOWN_NAME
from .model import DiscoveredPeripheral

logger = logging.getLogger(__name__)


class DiscoveryRegistry:
    """Latest-seen state of every peripheral advertised during the current scan.

    Entries are keyed by identifier, so repeated advertisements of one
    peripheral coalesce into a single entry. Nothing expires on a timer:
    entries stay until a new scan starts or the radio resets.
    """

    def __init__(self, adapter: RadioAdapter) -> None:
        self._adapter = adapter
        self._entries: Dict[str, DiscoveredPeripheral] = {}
        self.scanning = False

    @property
    def peripherals(self) -> List[DiscoveredPeripheral]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._entries

    def get(self, identifier: str) -> Optional[DiscoveredPeripheral]:
        return self._entries.get(identifier)

    def begin_scan(self) -> bool:
        """Clear previous results and start scanning.

        Silently ignored while the radio is unavailable; the request is not
        queued for later.

        Returns:
            True if scanning started, False if the request was ignored
        """
        if not self._adapter.available:
            logger.debug("Scan ignored: radio unavailable")
            return False
        if self.scanning:
            return True
        self.clear()
        self.scanning = True
        self._adapter.start_scan()
        logger.info("Scanning for peripherals...")
        return True

    def stop_scan(self) -> None:
        """Stop scanning; existing entries remain visible."""
        if not self.scanning:
            return
        self.scanning = False
        self._adapter.stop_scan()
        logger.info(f"Scan stopped ({len(self._entries)} peripheral(s) seen)")

    def on_advertisement(
        self,
        identifier: str,
        name: Optional[str] = None,
        rssi: Optional[int] = None,
    ) -> bool:
        """Upsert an advertisement; the latest one wins.

        Args:
            identifier: Stable peripheral identifier
            name: Advertised name, if any
            rssi: Signal strength in dBm, if available

        Returns:
            True if the registry changed
        """
        if not self.scanning:
            logger.debug(f"Advertisement from {identifier} ignored: not scanning")
            return False

        entry = self._entries.get(identifier)
        if entry is None:
            self._entries[identifier] = DiscoveredPeripheral(
                identifier, name or UNKNOWN_NAME, rssi
            )
            logger.debug(f"Discovered {identifier} ({name or UNKNOWN_NAME})")
            return True

        entry.name = name or UNKNOWN_NAME
        entry.rssi = rssi
        return True

    def clear(self) -> None:
        self._entries.clear()

    def reset(self) -> None:
        """Hard reset after the radio went away: not scanning, no entries."""
        self.scanning = False
        self.clear()
