"""Protocol constants and default timings (seconds)."""

# Placeholder UI agent address; replaced by the address the backend
# reports in identity_confirmed.
DEFAULT_UI_AGENT_EMAIL = "ui-agent@ui_agents.local.mind-swarm.ltngt.ai"
DEFAULT_FROM_ADDRESS = "user@mindswarm.ai"
MESSAGE_ID_DOMAIN = "mindswarm.ai"

DEFAULT_WEBSOCKET_URL = "ws://localhost:8000/ws"

# Long-running agent operations
UI_OPERATION_TIMEOUT = 180.0

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_HEARTBEAT_TIMEOUT = 30.0
DEFAULT_RECONNECT_INTERVAL = 5.0
MAX_RECONNECT_ATTEMPTS = 10

MESSAGE_DEDUP_WINDOW = 0.5
DEDUP_SWEEP_INTERVAL = 5.0
DEDUP_BODY_PREFIX = 200
MAX_SEND_ATTEMPTS = 3
MAX_DEBUG_LOG = 100

NORMAL_CLOSURE = 1000
