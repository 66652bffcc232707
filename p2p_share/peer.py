import logging
import os
import threading
from enum import Enum

from p2p_share.cache import ActivePeerCache
from p2p_share.constants import Constants
from p2p_share.dictionaries import (DownloadRequest, GetPeersRequest, HeartbeatRequest, ListRequest, Message,
                                    RegisterRequest)
from p2p_share.errors import (DownloadExhaustedError, NoPeersError, P2PShareError, PeerNotRegisteredError,
                              ProtocolError, error_for_status)
from p2p_share.file_server import PeerFileServer
from p2p_share.helpers import Timer, resolve_shared_path, scan_shared_directory
from p2p_share.networking import Connection, join_address, resolve_local_ip

logger = logging.getLogger("__main__")


class RegistrationState(Enum):
    """
    UNREGISTERED -> REGISTERED on a successful register.
    REGISTERED stays REGISTERED while heartbeats are accepted.
    REGISTERED -> EXPIRED when the tracker rejects a heartbeat.
    EXPIRED -> REGISTERED on the next successful register.
    """
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    EXPIRED = "expired"


class Peer:
    """
    A participant in the network: serves its shared directory to other
    peers, keeps itself registered with the tracker, and downloads files
    from whichever peers the tracker says have them.
    """

    def __init__(self,
                 tracker_address: str,
                 port: int,
                 shared_dir: str,
                 host: str | None = None,
                 use_global_ip: bool = False,
                 auto_reregister: bool = Constants.AUTO_REREGISTER,
                 heartbeat_interval_sec: float = Constants.HEARTBEAT_INTERVAL_SEC,
                 cache_sweep_interval_sec: float = Constants.PEER_CACHE_SWEEP_INTERVAL_SEC,
                 cache_horizon_sec: float = Constants.PEER_CACHE_HORIZON_SEC):
        """
        Binds the file server straight away, so a port that cannot be
        bound fails here rather than later.

        :param tracker_address: "host:port" of the tracker.
        :param port: port to serve files on, 0 picks any free port.
        :param shared_dir: directory whose files we share and download into.
        :param host: IP other peers reach us at, resolved if not given.
        :param auto_reregister: re-register when the tracker rejects a heartbeat.
        """
        self.tracker_address: str = tracker_address
        self.shared_dir: str = shared_dir
        self.auto_reregister: bool = auto_reregister

        self.server = PeerFileServer(port, shared_dir)
        if host is None:
            host = resolve_local_ip(use_global_ip)
        self.address: str = join_address(host, self.server.port)

        self.state: RegistrationState = RegistrationState.UNREGISTERED
        self.known_files: set[str] = set()
        self._files_lock = threading.Lock()
        # Advisory only, see ActivePeerCache.
        self.active_peers = ActivePeerCache(horizon_sec=cache_horizon_sec)

        self.heartbeat_timer = Timer(heartbeat_interval_sec, self.heartbeat_cycle, name="heartbeat")
        self.cache_timer = Timer(cache_sweep_interval_sec, self.active_peers.prune, name="peer cache sweep")

    def start(self) -> None:
        """
        Starts serving files, registers (best effort), then starts the
        heartbeat and cache sweep in the background.
        """
        self.server.thread_start()
        logger.info(f"[Peer] Peer server listening on {self.address}")

        try:
            self.register()
        except (P2PShareError, OSError) as e:
            logger.error(f"[Peer] Initial registration failed: {e}")

        self.heartbeat_timer.start()
        self.cache_timer.start()

    def stop(self) -> None:
        self.heartbeat_timer.stop()
        self.cache_timer.stop()
        self.server.thread_stop()

    def _tracker_request(self, message: Message | dict,
                         response_timeout: float = Constants.PEER_REQUEST_TIMEOUT_SEC) -> Message:
        with Connection.dial(self.tracker_address) as connection:
            response = connection.request(message, Constants.PEER_REQUEST_TIMEOUT_SEC, response_timeout)

        if response.get("status") != Constants.STATUS_OK:
            raise error_for_status(response.get("status"), self.tracker_address)
        return response

    def scan_local_files(self) -> list[str]:
        """
        Rescans the shared directory and replaces the known-files set with
        the result.
        """
        files = scan_shared_directory(self.shared_dir)
        with self._files_lock:
            self.known_files = set(files)
        return files

    def get_known_files(self) -> list[str]:
        with self._files_lock:
            return sorted(self.known_files)

    def register(self) -> None:
        """
        Sends register with a fresh scan of the shared directory.
        :raises P2PShareError: tracker unreachable or refused.
        :raises OSError: the shared directory could not be scanned.
        """
        files = self.scan_local_files()
        self._tracker_request(RegisterRequest(
            command=Constants.REGISTER,
            address=self.address,
            files=files
        ))
        self.state = RegistrationState.REGISTERED
        logger.info(f"[Peer] Registered with tracker, sharing {len(files)} file(s).")

    def send_heartbeat(self) -> None:
        """
        Sends heartbeat with our address only; the file list is only ever
        sent by register.
        :raises PeerNotRegisteredError: the tracker has forgotten us.
        """
        self.scan_local_files()
        try:
            self._tracker_request(HeartbeatRequest(
                command=Constants.HEARTBEAT,
                address=self.address
            ))
        except PeerNotRegisteredError:
            self.state = RegistrationState.EXPIRED
            raise
        self.state = RegistrationState.REGISTERED
        logger.debug("[Peer] Heartbeat sent.")

    def heartbeat_cycle(self) -> None:
        """
        One run of the background cycle. Never raises: every failure is
        logged and the next cycle tries again.
        """
        try:
            self.send_heartbeat()
            return
        except PeerNotRegisteredError:
            logger.warning("[Peer] Heartbeat rejected, tracker does not know us.")
        except (P2PShareError, OSError) as e:
            logger.error(f"[Peer] Heartbeat failed: {e}")
            return

        if not self.auto_reregister:
            return
        try:
            self.register()
        except (P2PShareError, OSError) as e:
            logger.error(f"[Peer] Re-registration failed: {e}")

    def list_files(self) -> dict[str, list[str]]:
        """
        Asks the tracker for every file it knows and who has it.
        """
        response = self._tracker_request(ListRequest(command=Constants.LIST),
                                         response_timeout=Constants.TRACKER_LIST_TIMEOUT_SEC)
        return response.get("filemap") or {}

    def get_peers(self, filename: str) -> list[str]:
        """
        Asks the tracker which peers have filename, in the order it gives.
        """
        response = self._tracker_request(GetPeersRequest(
            command=Constants.GET_PEERS,
            filename=filename
        ))
        peers = response.get("peers") or []
        self.active_peers.touch(peers)
        return peers

    def download(self, filename: str, destination: str | None = None, progress: bool = False) -> str:
        """
        Downloads filename into destination (default: the shared directory),
        trying each peer the tracker lists, in order, until one succeeds.

        :return: path the file was written to.
        :raises ValueError: filename is not a plain file name.
        :raises NotADirectoryError: destination is not an existing directory.
        :raises NoPeersError: the tracker knows nobody with the file.
        :raises DownloadExhaustedError: every peer failed, last_error is from the last one.
        :raises OSError: the output file could not be written; local errors are not retried.
        """
        destination = destination or self.shared_dir
        output_path = resolve_shared_path(destination, filename)
        if output_path is None or os.path.basename(filename) != filename:
            raise ValueError(f"Invalid filename {filename!r}.")
        if not os.path.isdir(destination):
            raise NotADirectoryError(f"Download destination {destination!r} is not a directory.")

        peers = self.get_peers(filename)
        if not peers:
            raise NoPeersError(filename)

        last_error: Exception | None = None
        for peer_address in peers:
            try:
                self.download_from_peer(peer_address, filename, output_path, progress=progress)
                return output_path
            except P2PShareError as e:
                last_error = e
                logger.warning(f"[Peer] Download from {peer_address} failed: {e}")

        raise DownloadExhaustedError(filename, last_error, len(peers))

    def download_from_peer(self, peer_address: str, filename: str, output_path: str,
                           progress: bool = False) -> int:
        """
        One download attempt from one peer. On failure, nothing is left at
        output_path.
        :return: bytes received.
        """
        with Connection.dial(peer_address) as connection:
            response = connection.request(
                DownloadRequest(command=Constants.DOWNLOAD, filename=filename),
                Constants.DOWNLOAD_TIMEOUT_SEC
            )
            if response.get("status") != Constants.STATUS_OK:
                raise error_for_status(response.get("status"), peer_address)

            size = response.get("size", 0)
            if not isinstance(size, int) or isinstance(size, bool) or size < 0:
                raise ProtocolError(f"invalid size {size!r}", peer_address)

            try:
                with open(output_path, "wb") as file:
                    received = connection.receive_file(file, size, Constants.DOWNLOAD_TIMEOUT_SEC,
                                                       progress=progress)
            except BaseException:
                if os.path.exists(output_path):
                    os.remove(output_path)
                raise

        with self._files_lock:
            self.known_files.add(filename)

        logger.info(f"[Peer] Downloaded {filename} ({received} bytes) from {peer_address}")
        return received
