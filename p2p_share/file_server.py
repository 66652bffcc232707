import logging
import os

from p2p_share.constants import Constants
from p2p_share.dictionaries import DownloadResponse, Message, StatusResponse
from p2p_share.helpers import resolve_shared_path
from p2p_share.networking import BaseRequestHandler, BaseServer, Connection

logger = logging.getLogger("__main__")


class FileRequestHandler(BaseRequestHandler):
    """
    Serves a single download request from the shared directory. Any other
    command is logged and dropped without a response.
    """
    read_timeout = Constants.DOWNLOAD_TIMEOUT_SEC

    def handle_message(self, connection: Connection, message: Message) -> None:
        command = message.get("command")
        if command != Constants.DOWNLOAD:
            logger.warning(f"[Server] Unknown command from {connection.address}: {command!r}")
            return
        self.handle_download(connection, message.get("filename", ""))

    def handle_download(self, connection: Connection, filename: str) -> None:
        self.server: PeerFileServer
        path = resolve_shared_path(self.server.shared_dir, filename)

        try:
            if path is None or os.path.isdir(path):
                raise FileNotFoundError(filename)
            file = open(path, "rb")
        except OSError:
            logger.info(f"[Server] {connection.address} asked for missing file {filename!r}.")
            connection.write_message(StatusResponse(status=Constants.STATUS_FILE_NOT_FOUND),
                                     Constants.PEER_REQUEST_TIMEOUT_SEC)
            return

        with file:
            try:
                size = os.fstat(file.fileno()).st_size
            except OSError as e:
                logger.error(f"[Server] Could not stat {filename!r}: {e}")
                connection.write_message(StatusResponse(status=Constants.STATUS_SERVER_ERROR),
                                         Constants.PEER_REQUEST_TIMEOUT_SEC)
                return

            connection.write_message(DownloadResponse(status=Constants.STATUS_OK, size=size),
                                     Constants.PEER_REQUEST_TIMEOUT_SEC)
            sent = connection.send_file(file, size, Constants.DOWNLOAD_TIMEOUT_SEC)

        logger.info(f"[Server] Sent {filename} ({sent} bytes) to {connection.address}")


class PeerFileServer(BaseServer):
    def __init__(self, port: int, shared_dir: str, host: str = ""):
        """
        Serves files out of shared_dir to other peers.
        :param port: 0 picks any free port.
        """
        self.shared_dir: str = shared_dir
        super().__init__(
            server_address=(host, port),
            request_handler_class=FileRequestHandler
        )
