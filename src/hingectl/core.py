"""
Core constants for smart hinge actuator control.
"""

# Wire protocol command bytes understood by the actuator-side controller
CMD_EXTEND = b"E"
CMD_RETRACT = b"R"
CMD_STOP = b"S"
CMD_POSITION_PREFIX = "P"
CMD_SPEED_PREFIX = "V"

# Normalized values are scaled to an integer percentage on the wire
PERCENT_MAX = 100

# Break-before-make dead time applied by the actuator firmware before it
# energizes the opposite direction. Informational only: the host never waits.
FIRMWARE_DEAD_TIME_MS = 80

# Characteristic properties (as reported by bleak) that allow writing
PROP_WRITE = "write"
PROP_WRITE_WITHOUT_RESPONSE = "write-without-response"

# Name shown when neither the advertisement nor the platform cache has one
UNKNOWN_NAME = "Unknown"

# Connection defaults
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_SCAN_DURATION = 5.0

# Simulated backend timing (seconds between fabricated events)
SIM_LATENCY = 0.05

# Angle slider range used by the console (degrees)
ANGLE_MIN = 1.0
ANGLE_MAX = 90.0

# Device kind that enables actuator controls in the console
KIND_ACTUATOR_HINGE = "actuator-door-hinge"
KIND_OTHER = "other"
DEVICE_KINDS = (KIND_ACTUATOR_HINGE, KIND_OTHER)

# Device table ordering in the console
SORT_RSSI = "rssi"
SORT_NAME = "name"
SORT_KEYS = (SORT_RSSI, SORT_NAME)

# Application metadata
__version__ = "0.1.0"
__description__ = "CLI and REPL interface for controlling BLE smart hinge actuators"
