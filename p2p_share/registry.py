import logging
import time
from typing import Callable

from p2p_share.constants import Constants
from p2p_share.locking import ReadWriteLock

logger = logging.getLogger("__main__")


class PeerRegistry:
    """
    The tracker's view of the network: when each peer was last seen, and
    which peers hold which files.

    Two maps, each behind its own reader/writer lock. When both are needed
    they are always taken in the same order, peers first then files, so
    that register and the reaper can never deadlock each other.

    Invariants:
        every address in a file's peer set is also in the liveness map;
        no file is ever left with an empty peer set.
    """

    def __init__(self,
                 stale_after_sec: float = Constants.PEER_STALE_SEC,
                 clock: Callable[[], float] = time.monotonic):
        self.stale_after_sec: float = stale_after_sec
        self._clock = clock

        self._peers: dict[str, float] = {}  # address -> last seen
        self._files: dict[str, set[str]] = {}  # filename -> addresses
        self._peers_lock = ReadWriteLock()
        self._files_lock = ReadWriteLock()

    def register(self, address: str, files: list[str] | None = None) -> None:
        """
        Marks address as alive and adds it to the peer set of every file
        in files. Registering the same thing twice only refreshes the
        timestamp.
        :raises TypeError: address is not a string or files is not a list of strings.
        """
        files = files or []
        if not isinstance(address, str) or isinstance(files, str) \
                or not all(isinstance(filename, str) for filename in files):
            raise TypeError(f"Cannot register {address!r} with files {files!r}.")
        with self._peers_lock.write():
            with self._files_lock.write():
                self._peers[address] = self._clock()
                for filename in files:
                    self._files.setdefault(filename, set()).add(address)

        logger.info(f"[Tracker] Registered {address} with {len(files)} file(s).")

    def heartbeat(self, address: str) -> bool:
        """
        Refreshes the timestamp of a registered peer.
        :return: False if the address is not registered; no record is made.
        """
        with self._peers_lock.write():
            if address not in self._peers:
                return False
            self._peers[address] = self._clock()
            return True

    def list_files(self) -> dict[str, list[str]]:
        """
        Returns a snapshot of filename -> peers, taken under one read lock
        so it never mixes states from before and after a write.
        """
        with self._files_lock.read():
            return {filename: sorted(peers) for filename, peers in self._files.items()}

    def get_peers(self, filename: str) -> list[str]:
        """
        Returns the peers holding filename, or [] if nobody does.
        """
        with self._files_lock.read():
            return sorted(self._files.get(filename, ()))

    def is_registered(self, address: str) -> bool:
        with self._peers_lock.read():
            return address in self._peers

    def last_seen(self, address: str) -> float | None:
        with self._peers_lock.read():
            return self._peers.get(address)

    def peer_count(self) -> int:
        with self._peers_lock.read():
            return len(self._peers)

    def _remove_peer(self, address: str) -> None:
        """Caller must hold both write locks."""
        self._peers.pop(address, None)
        for filename in list(self._files):
            peers = self._files[filename]
            peers.discard(address)
            if not peers:
                del self._files[filename]

    def reap(self, now: float | None = None) -> list[str]:
        """
        Removes every peer not seen for longer than stale_after_sec, from
        both the liveness map and every file's peer set, in one critical
        section.
        :param now: clock reading to judge staleness against, defaults to now.
        :return: addresses that were removed.
        """
        reaped = []
        with self._peers_lock.write():
            with self._files_lock.write():
                if now is None:
                    now = self._clock()
                for address, last_seen in list(self._peers.items()):
                    if now - last_seen > self.stale_after_sec:
                        self._remove_peer(address)
                        reaped.append(address)

        for address in reaped:
            logger.info(f"[Tracker] Removed inactive peer: {address}")
        return reaped
