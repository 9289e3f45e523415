import os

from dungeon_link import __version__

__all__ = [
    "DEFAULT_SERVER_HOST",
    "DEFAULT_SERVER_PORT",
    "DLINK_CONFIG_FILE_PATH",
    "DLINK_DEBUG",
    "DLINK_LOG_FORMAT",
    "DLINK_LOG_HUMAN_OUTPUT",
    "DLINK_LOG_JSON_FILE",
    "DLINK_LOG_NAME",
    "DLINK_METRICS_PORT",
    "DLINK_PERF_THRESHOLD_MS",
    "DLINK_PERF_TRACKING",
    "DLINK_SERVERS_FILE_PATH",
    "DLINK_VERSION",
    "PING_MESSAGE_TYPE",
    "PONG_MESSAGE_TYPE",
    "PROBE_TIMEOUT_SECONDS",
    "SERVER_STATUS_CACHE_SECONDS",
    "WS_ABNORMAL_CLOSURE",
    "WS_NORMAL_CLOSURE",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
DLINK_LOG_NAME: str = "dungeon_link"
DLINK_VERSION: str = __version__

DEFAULT_SERVER_HOST: str = "localhost"
DEFAULT_SERVER_PORT: int = 8080
PROBE_TIMEOUT_SECONDS: float = 5.0
SERVER_STATUS_CACHE_SECONDS: float = 30.0

PING_MESSAGE_TYPE: str = "PING"
PONG_MESSAGE_TYPE: str = "PONG"
# RFC 6455 close codes
WS_NORMAL_CLOSURE: int = 1000
WS_ABNORMAL_CLOSURE: int = 1006

DLINK_DEBUG: bool = os.environ.get("DLINK_DEBUG", "0").casefold() in YES_ANSWER

_base_dir = os.environ.get("DLINK_BASE_DIR", "~/.config/dungeon-link")
DLINK_CONFIG_FILE_PATH: str = os.environ.get("DLINK_CONFIG_FILE_PATH", f"{_base_dir}/link.yaml")
DLINK_SERVERS_FILE_PATH: str = os.environ.get("DLINK_SERVERS_FILE_PATH", f"{_base_dir}/servers.yaml")

_metrics_port = os.environ.get("DLINK_METRICS_PORT", "0")
try:
    _metrics_port_value: int = int(_metrics_port) if _metrics_port else 0
except ValueError:
    _metrics_port_value = 0
DLINK_METRICS_PORT: int = _metrics_port_value

# Logging Configuration
DLINK_LOG_FORMAT: str = os.environ.get("DLINK_LOG_FORMAT", "human")  # "json", "human", or "both"
DLINK_LOG_JSON_FILE: str = os.environ.get("DLINK_LOG_JSON_FILE", "")
DLINK_LOG_HUMAN_OUTPUT: str = os.environ.get("DLINK_LOG_HUMAN_OUTPUT", "stderr")  # "stdout", "stderr", or file path

# Performance Instrumentation
DLINK_PERF_TRACKING: bool = os.environ.get("DLINK_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("DLINK_PERF_THRESHOLD_MS", "100")
DLINK_PERF_THRESHOLD_MS: int = int(_perf_threshold) if _perf_threshold and _perf_threshold.isdigit() else 100
