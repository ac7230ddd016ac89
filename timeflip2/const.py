"""Constants for TimeFlip2 BLE protocol."""

# BLE Service UUID
TIMEFLIP_SERVICE_UUID = "f1196f50-71a4-11e6-bdf4-0800200c9a66"

# Characteristic UUIDs
BATTERY_LEVEL_UUID = "00002a19-0000-1000-8000-00805f9b34fb"  # Read, Notify
EVENT_UUID = "f1196f51-71a4-11e6-bdf4-0800200c9a66"          # Read, Notify (ASCII)
FACET_UUID = "f1196f52-71a4-11e6-bdf4-0800200c9a66"          # Read, Notify
COMMAND_RESULT_UUID = "f1196f53-71a4-11e6-bdf4-0800200c9a66" # Read
COMMAND_UUID = "f1196f54-71a4-11e6-bdf4-0800200c9a66"        # Write, Read (ack)
DOUBLE_TAP_UUID = "f1196f55-71a4-11e6-bdf4-0800200c9a66"     # Notify
SYSTEM_STATE_UUID = "f1196f56-71a4-11e6-bdf4-0800200c9a66"   # Read, Notify
PASSWORD_UUID = "f1196f57-71a4-11e6-bdf4-0800200c9a66"       # Write
HISTORY_UUID = "f1196f58-71a4-11e6-bdf4-0800200c9a66"        # Write, Read, Notify

# Password
DEFAULT_PASSWORD = "000000"
PASSWORD_LENGTH = 6

# Payload sizes
SYSTEM_STATE_LENGTH = 4
BATTERY_LENGTH = 1
FACET_LENGTH = 1
COMMAND_ACK_LENGTH = 2
TIME_PAYLOAD_LENGTH = 9
DEVICE_STATUS_LENGTH = 4
FACET_SETTINGS_LENGTH = 11
HISTORY_ENTRY_LENGTH = 17

# Command acknowledgement status byte (second byte read back from COMMAND_UUID).
# Captured traffic shows 0x02 after a successful command; the vendor prose
# labels it differently.
COMMAND_STATUS_OK = 0x02
COMMAND_STATUS_FAILED = 0x01

# Facet flags
PAUSE_BIT = 0b10000000   # 0x80 - set on double tap / history entries in pause
FACET_MASK = 0b01111111  # 0x7F
FACET_COUNT = 12

# History requests
HISTORY_READ_SINGLE = 0x01
HISTORY_READ_SINCE = 0x02
HISTORY_LAST_ENTRY = 0xFFFFFFFF

# Limits
MAX_PERCENT = 100
MAX_BRIGHTNESS = MAX_PERCENT
MIN_BLINK_INTERVAL = 5
MAX_BLINK_INTERVAL = 60
MAX_AUTO_PAUSE = 0xFFFF

# Defaults (applied by the configuration layer)
DEFAULT_BRIGHTNESS = 100
DEFAULT_BLINK_INTERVAL = 30
DEFAULT_AUTO_PAUSE = 8 * 60

# Timeouts
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_OPERATION_TIMEOUT = 5.0

# Ready polling
DEFAULT_READY_ATTEMPTS = 5
DEFAULT_READY_POLL_INTERVAL = 1.0

# Reconnect backoff
RECONNECT_INITIAL_DELAY = 2.0  # seconds
RECONNECT_MAX_DELAY = 60.0     # seconds
RECONNECT_BACKOFF_FACTOR = 2.0
