import logging

from p2p_share.constants import Constants
from p2p_share.dictionaries import GetPeersResponse, ListResponse, Message, StatusResponse
from p2p_share.helpers import Timer
from p2p_share.networking import BaseRequestHandler, BaseServer, Connection
from p2p_share.registry import PeerRegistry

logger = logging.getLogger("__main__")


class TrackerRequestHandler(BaseRequestHandler):
    """
    Answers one register, heartbeat, list or getpeers request per
    connection. Unknown commands are logged and get no response.
    """
    read_timeout = Constants.TRACKER_READ_TIMEOUT_SEC

    def handle_message(self, connection: Connection, message: Message) -> None:
        self.server: TrackerServer
        registry = self.server.registry
        command = message.get("command")

        if command == Constants.REGISTER:
            registry.register(message.get("address", ""), message.get("files") or [])
            connection.write_message(StatusResponse(status=Constants.STATUS_OK),
                                     Constants.TRACKER_WRITE_TIMEOUT_SEC)

        elif command == Constants.HEARTBEAT:
            address = message.get("address", "")
            if registry.heartbeat(address):
                logger.debug(f"[Tracker] Heartbeat from {address}.")
                status = Constants.STATUS_OK
            else:
                logger.info(f"[Tracker] Heartbeat from unregistered peer {address}.")
                status = Constants.STATUS_PEER_NOT_REGISTERED
            connection.write_message(StatusResponse(status=status), Constants.TRACKER_WRITE_TIMEOUT_SEC)

        elif command == Constants.LIST:
            connection.write_message(
                ListResponse(status=Constants.STATUS_OK, filemap=registry.list_files()),
                Constants.TRACKER_LIST_TIMEOUT_SEC
            )

        elif command == Constants.GET_PEERS:
            peers = registry.get_peers(message.get("filename", ""))
            connection.write_message(
                GetPeersResponse(status=Constants.STATUS_OK, peers=peers),
                Constants.TRACKER_WRITE_TIMEOUT_SEC
            )

        else:
            logger.warning(f"[Tracker] Unknown command from {connection.address}: {command!r}")


class TrackerServer(BaseServer):
    def __init__(self, port: int,
                 host: str = "",
                 registry: PeerRegistry | None = None,
                 reaper_interval_sec: float = Constants.REAPER_INTERVAL_SEC):
        """
        Creates a tracker listening on (host, port), based on a threading TCP
        server, so every connection is served on its own thread.
        :param port: 0 picks any free port.
        """
        self.registry: PeerRegistry = registry if registry is not None else PeerRegistry()
        self.reaper = Timer(reaper_interval_sec, self.registry.reap, name="tracker reaper")

        super().__init__(
            server_address=(host, port),
            request_handler_class=TrackerRequestHandler
        )

    def start(self) -> None:
        logger.info(f"[Tracker] Tracker running on port {self.port}.")
        self.reaper.start()
        super().start()

    def stop(self) -> None:
        self.reaper.stop()
        super().stop()

    def thread_stop(self, thread=None) -> None:
        self.reaper.stop()
        super().thread_stop(thread)
