"""Runtime constants shared across engine, adapter and server modules."""

# Git defaults
DEFAULT_BASE_BRANCH = "main"

# Container defaults
DEFAULT_DOCKERFILE = ".devcontainer/Dockerfile"
DEFAULT_WORKSPACE_MOUNT = "/workspace"
DEFAULT_CONTAINER_COMMAND = ["sleep", "infinity"]

# Control-plane server defaults
DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 8765
WEBSOCKET_PATH = "/ws"
MAX_MESSAGE_BYTES = 16 * 1024 * 1024
# Output chunks buffered per streamed command before the pipe readers block
STREAM_QUEUE_CHUNKS = 64
