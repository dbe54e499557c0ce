"""
HingeCtl - Smart Hinge Actuator Control Library

A Python library for discovering, connecting to and commanding BLE
linear-actuator peripherals.
"""

__version__ = "0.1.0"
__description__ = "CLI and REPL interface for controlling BLE smart hinge actuators"

from .controller import ActuatorController, create_adapter
from .display import DisplayManager
from .model import ConnectionState, ControllerSnapshot, DiscoveredPeripheral
from .simulated import SimulatedRadioAdapter

__all__ = [
    "ActuatorController",
    "ConnectionState",
    "ControllerSnapshot",
    "DiscoveredPeripheral",
    "DisplayManager",
    "SimulatedRadioAdapter",
    "create_adapter",
]
