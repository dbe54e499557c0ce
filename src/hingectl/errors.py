"""Domain-specific errors and failure reasons for hingectl."""

from enum import Enum


class HingeCtlError(Exception):
    """Base error for hingectl."""


class ConfigError(HingeCtlError):
    """Raised when settings from the environment or flags are invalid."""


class LabelStoreError(HingeCtlError):
    """Raised when the persisted label file cannot be read or written."""


class FailureReason(Enum):
    """Why the last operation did not reach its goal.

    These never propagate as exceptions: the state machine collapses to
    DISCONNECTED and records the reason for display.
    """

    RADIO_UNAVAILABLE = "radio unavailable"
    SCAN_IGNORED = "scan ignored (radio unavailable)"
    CONNECT_FAILED = "connection failed"
    SERVICE_DISCOVERY_FAILED = "service discovery failed"
    CHARACTERISTIC_DISCOVERY_FAILED = "characteristic discovery failed"
    NO_WRITABLE_CHARACTERISTIC = "no writable characteristic"
    WRITE_DROPPED = "write dropped (not connected)"
    WRITE_FAILED = "write failed"
