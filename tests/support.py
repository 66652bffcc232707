import os
import time
from typing import Callable

from p2p_share.dictionaries import DownloadResponse, Message
from p2p_share.constants import Constants
from p2p_share.helpers import get_valid_port
from p2p_share.networking import BaseRequestHandler, BaseServer, Connection
from p2p_share.peer import Peer
from p2p_share.tracker import TrackerServer

LOCALHOST = "127.0.0.1"


class FakeClock:
    """Stands in for time.monotonic; only moves when told to."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def start_tracker(**kwargs) -> TrackerServer:
    tracker = TrackerServer(0, host=LOCALHOST, **kwargs)
    tracker.thread_start()
    return tracker


def tracker_address(tracker: TrackerServer) -> str:
    return f"{LOCALHOST}:{tracker.port}"


def unreachable_address() -> str:
    """An address on localhost that nothing is listening on."""
    return f"{LOCALHOST}:{get_valid_port(lower_bound=20000, upper_bound=60000)}"


def make_peer(tracker_addr: str, shared_dir: str, **kwargs) -> Peer:
    return Peer(tracker_addr, 0, shared_dir, host=LOCALHOST, **kwargs)


def write_file(directory: str, name: str, content: bytes) -> str:
    path = os.path.join(directory, name)
    with open(path, "wb") as f:
        f.write(content)
    return path


def read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def send_request(address: str, message: Message | dict, timeout: float = 5) -> Message:
    with Connection.dial(address) as connection:
        return connection.request(message, timeout)


class TruncatingHandler(BaseRequestHandler):
    """Promises a file of 100 bytes, sends 10, then hangs up."""
    read_timeout = Constants.DOWNLOAD_TIMEOUT_SEC

    def handle_message(self, connection: Connection, message: Message) -> None:
        connection.write_message(DownloadResponse(status=Constants.STATUS_OK, size=100), 5)
        connection.sock.sendall(b"x" * 10)


def start_truncating_server() -> BaseServer:
    server = BaseServer((LOCALHOST, 0), TruncatingHandler)
    server.thread_start()
    return server
