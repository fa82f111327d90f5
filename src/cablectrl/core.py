"""
Core constants for cable trainer control over BLE.
"""

# Primary GATT service and command characteristic (Nordic UART layout)
SERVICE_UUID = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"
COMMAND_CHAR_UUID = "6e400002-b5a3-f393-e0a9-e50e24dcca9e"

# Polled characteristics
MONITOR_CHAR_UUID = "90e991a6-c548-44ed-969b-eb541014eae3"
PROPERTY_CHAR_UUID = "5fa538ec-d041-42f6-bbd6-c30d475387b7"

# Notify characteristics (only the rep one is interpreted)
REP_NOTIFY_CHAR_UUID = "8308f2a6-0875-4a94-a86f-5c5c5e1b068a"
NOTIFY_CHAR_UUIDS = (
    "383f7276-49af-4335-9072-f01b0f8acad6",
    "74e994ac-0e80-4c02-9cd0-76cb31d3959b",
    "67d0dae0-5bfc-4ea2-acc9-ac784dee7f29",
    REP_NOTIFY_CHAR_UUID,
    "c7b73007-b245-4503-a1ed-9e4e97eb9802",
    "36e6c2ee-21c7-404e-aa9b-f74ca4728ad4",
)

# Advertised name prefixes used for discovery
DEVICE_NAME_PREFIXES = ("Vee", "VIT")

# Timing (seconds)
SCAN_TIMEOUT = 10.0
CONNECT_TIMEOUT = 10.0
OPERATION_TIMEOUT = 5.0
MONITOR_POLL_INTERVAL = 0.1
PROPERTY_POLL_INTERVAL = 0.5
INIT_PRESET_DELAY = 0.05

# STOP path
STOP_ATTEMPTS = 3
STOP_RETRY_BACKOFF = 0.1

# Telemetry
POSITION_SPIKE_CEILING = 50000
LOAD_SCALE = 100.0

# Rep detection
DEFAULT_WARMUP_REPS = 3
CALIBRATION_WINDOW = 2
WORKING_WINDOW = 3

# Auto-stop safety gate
AUTO_STOP_DWELL = 5.0
AUTO_STOP_NOISE_FLOOR = 50.0
AUTO_STOP_DANGER_FRACTION = 0.05

# Program limits
PROGRAM_MIN_KG = 0.0
PROGRAM_MAX_KG = 100.0
EFFECTIVE_KG_OFFSET = 10.0
PROGRESSION_MIN_KG = -3.0
PROGRESSION_MAX_KG = 3.0
PROGRAM_MIN_REPS = 1
PROGRAM_MAX_REPS = 100

# Echo limits
ECHO_PERCENT_MIN = 0
ECHO_PERCENT_MAX = 150
ECHO_REPS_MIN = 0
ECHO_REPS_MAX = 30

# Color scheme limits
COLOR_BRIGHTNESS_MIN = 0.0
COLOR_BRIGHTNESS_MAX = 1.0
COLOR_CHANNEL_MIN = 0
COLOR_CHANNEL_MAX = 255
COLOR_COUNT = 3

# Application metadata
__version__ = "0.1.0"
__description__ = "CLI and library for controlling a BLE cable resistance trainer"
