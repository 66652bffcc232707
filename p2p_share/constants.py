from dataclasses import dataclass


@dataclass
class Constants:
    # Commands
    REGISTER = "register"
    HEARTBEAT = "heartbeat"
    LIST = "list"
    GET_PEERS = "getpeers"
    DOWNLOAD = "download"

    # Response statuses
    STATUS_OK = "ok"
    STATUS_PEER_NOT_REGISTERED = "peer not registered"
    STATUS_FILE_NOT_FOUND = "file not found"
    STATUS_SERVER_ERROR = "server error"

    # Socket timeouts, in seconds.
    TRACKER_READ_TIMEOUT_SEC = 10
    TRACKER_WRITE_TIMEOUT_SEC = 5
    TRACKER_LIST_TIMEOUT_SEC = 10
    PEER_REQUEST_TIMEOUT_SEC = 5
    DOWNLOAD_TIMEOUT_SEC = 30
    DIAL_TIMEOUT_SEC = 5

    # Liveness, in seconds. PEER_STALE_SEC sits between 2 and 3 heartbeat intervals:
    # one missed heartbeat is fine, two are not.
    HEARTBEAT_INTERVAL_SEC = 30
    PEER_STALE_SEC = 75
    REAPER_INTERVAL_SEC = 15

    # Advisory active-peer cache.
    PEER_CACHE_SWEEP_INTERVAL_SEC = 2 * 60
    PEER_CACHE_HORIZON_SEC = 5 * 60

    # Re-register straight away when the tracker has forgotten us.
    AUTO_REREGISTER = True

    FILE_CHUNK_SIZE = 4096  # buffer size for streaming file bytes
    MAX_MESSAGE_BYTES = 16 * 1024 * 1024
    ENCODING = "utf-8"

    DEFAULT_TRACKER_PORT = 9000
    DEFAULT_PEER_PORT = 9001
    LOG_FILE = "p2p_share.log"
    GLOBAL_IP_URL = "https://api.ipify.org"
    LOCAL_IP_PROBE = ("8.8.8.8", 80)
