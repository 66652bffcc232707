import logging
import threading
import time
from typing import Callable

from p2p_share.constants import Constants

logger = logging.getLogger("__main__")


class ActivePeerCache:
    """
    Bookkeeping only: which peers the tracker has mentioned recently.

    Nothing reads this to make a decision. Downloads always use the
    tracker's peer order, whatever is in here.
    """

    def __init__(self,
                 horizon_sec: float = Constants.PEER_CACHE_HORIZON_SEC,
                 clock: Callable[[], float] = time.monotonic):
        self.horizon_sec: float = horizon_sec
        self._clock = clock
        self._peers: dict[str, float] = {}
        self._lock = threading.Lock()

    def touch(self, addresses: list[str]) -> None:
        """Records every address as seen now."""
        now = self._clock()
        with self._lock:
            for address in addresses:
                self._peers[address] = now

    def prune(self, now: float | None = None) -> list[str]:
        """
        Evicts entries older than horizon_sec.
        :return: evicted addresses.
        """
        with self._lock:
            if now is None:
                now = self._clock()
            evicted = [address for address, seen in self._peers.items() if now - seen > self.horizon_sec]
            for address in evicted:
                del self._peers[address]

        for address in evicted:
            logger.info(f"[Peer] Removed inactive peer from cache: {address}")
        return evicted

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            return dict(self._peers)

    def __contains__(self, address: str) -> bool:
        with self._lock:
            return address in self._peers

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)
