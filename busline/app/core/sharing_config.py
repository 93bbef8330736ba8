"""
Location sharing configuration.

Defaults for the client-side publisher: geolocation watch options,
persisted-flag naming and the optional reconnect policy.
"""

# Sharing-State Store
SHARE_FLAG_PREFIX = "share_location_"  # Key is share_location_<scheduleId>
SHARE_FLAG_VALUE = "true"
DEFAULT_STORE_PATH = "~/.busline/sharing_state.json"

# Geolocation watch
HIGH_ACCURACY = True
MAXIMUM_AGE_MS = 10000  # Accept cached positions up to 10 seconds old
POSITION_TIMEOUT_MS = None  # No per-fix timeout unless the provider needs one
INITIAL_FIX_TIMEOUT_MS = 5000  # One-shot fix sent by drivers as soon as sharing starts

# Channel
CHANNEL_OPEN_TIMEOUT = 10.0  # Seconds to wait for the WebSocket handshake

# Reconnect policy (disabled unless RECONNECT_MAX_RETRIES > 0)
RECONNECT_MAX_RETRIES = 0
RECONNECT_BASE_DELAY = 1.0  # Doubles per attempt
RECONNECT_MAX_DELAY = 10.0
