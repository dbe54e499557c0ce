"""
Persisted human-readable labels for peripherals.

Maps a peripheral identifier to a label, the door it is mounted on and a
device kind. The console uses the kind to decide whether actuator controls
are offered for the connected peripheral; the connection core never reads
this store.
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional

from .core import DEVICE_KINDS, KIND_ACTUATOR_HINGE
from .errors import LabelStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceLabel:
    label: str
    door: str
    kind: str = KIND_ACTUATOR_HINGE

    @property
    def is_actuator_hinge(self) -> bool:
        return self.kind == KIND_ACTUATOR_HINGE


class LabelStore:
    """JSON file of identifier -> DeviceLabel."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._labels: Dict[str, DeviceLabel] = {}

    def load(self) -> None:
        """Load labels from disk; a missing file means no labels.

        Raises:
            LabelStoreError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            self._labels = {}
            return
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise LabelStoreError(f"Failed to read labels from {self.path}: {e}") from e

        labels: Dict[str, DeviceLabel] = {}
        for identifier, entry in data.items():
            try:
                labels[identifier] = DeviceLabel(
                    label=entry["label"],
                    door=entry["door"],
                    kind=entry.get("kind") or KIND_ACTUATOR_HINGE,
                )
            except (KeyError, TypeError, AttributeError):
                logger.warning(f"Skipping malformed label entry for {identifier}")
        self._labels = labels

    def save(self) -> None:
        """Write labels to disk, creating the directory if needed.

        Raises:
            LabelStoreError: If the file cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(
                    {key: asdict(value) for key, value in self._labels.items()},
                    f,
                    indent=2,
                )
        except OSError as e:
            raise LabelStoreError(f"Failed to save labels to {self.path}: {e}") from e
        logger.debug(f"Saved {len(self._labels)} label(s) to {self.path}")

    def get(self, identifier: str) -> Optional[DeviceLabel]:
        return self._labels.get(identifier)

    def set(self, identifier: str, label: str, door: str, kind: str = KIND_ACTUATOR_HINGE) -> DeviceLabel:
        """Assign a label and persist it.

        Args:
            identifier: Peripheral identifier
            label: Human-readable name, e.g. "Front Door Actuator"
            door: Door name, e.g. "Front Door"
            kind: One of DEVICE_KINDS

        Returns:
            The stored label

        Raises:
            ValueError: If label or door is blank, or kind is unknown
        """
        label, door = label.strip(), door.strip()
        if not label or not door:
            raise ValueError("Label and door must not be empty")
        if kind not in DEVICE_KINDS:
            raise ValueError(f"Unknown device kind '{kind}'. Use one of: {', '.join(DEVICE_KINDS)}")
        entry = DeviceLabel(label=label, door=door, kind=kind)
        self._labels[identifier] = entry
        self.save()
        return entry

    def __len__(self) -> int:
        return len(self._labels)
