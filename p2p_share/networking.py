import logging
import socket
import socketserver
import threading
from typing import BinaryIO

import requests
from tqdm import tqdm

from p2p_share.constants import Constants
from p2p_share.dictionaries import Message
from p2p_share.errors import DataDecodingError, PeerConnectionError, RequestTimeoutError
from p2p_share.pickler import decode_data, encode_data, validate_request

logger = logging.getLogger("__main__")


def split_address(address: str) -> tuple[str, int]:
    """
    Splits "host:port" into its host and integer port.
    :param address: Peer or tracker address.
    :return: (host, port)
    """
    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isnumeric():
        raise ValueError(f"Address must be formatted host:port, found {address!r}.")
    port_number = int(port)
    if not 0 < port_number < 65536:
        raise ValueError(f"Port out of range in address {address!r}.")
    return host, port_number


def join_address(host: str, port: int) -> str:
    return f"{host}:{port}"


def resolve_local_ip(use_global_ip: bool = False) -> str:
    """
    Returns the IP address other machines should use to reach us.

    By default this is the address of the interface used for outbound
    traffic, found by "connecting" a UDP socket (nothing is sent).
    If use_global_ip is set, the global IP is fetched from api.ipify.org,
    which requires port forwarding for other peers to reach us.
    """
    if use_global_ip:
        try:
            response = requests.get(Constants.GLOBAL_IP_URL, timeout=Constants.DIAL_TIMEOUT_SEC)
            response.raise_for_status()
        except requests.RequestException as e:
            raise PeerConnectionError(f"Could not fetch global IP: {e}", Constants.GLOBAL_IP_URL) from e
        return response.content.decode("utf8").strip()

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(Constants.LOCAL_IP_PROBE)
            return sock.getsockname()[0]
    except OSError as e:
        raise PeerConnectionError(f"Could not resolve local IP: {e}") from e


class Connection:
    """
    One end of a TCP stream carrying newline-delimited JSON messages,
    optionally followed by raw file bytes after a download response.

    Every operation takes its own timeout. Any failure means the
    connection should be closed, not reused.
    """

    def __init__(self, sock: socket.socket, address: str, rfile: BinaryIO | None = None):
        self.sock = sock
        self.address = address
        # Messages and file bytes must come out of the same buffer,
        # otherwise bytes read ahead with a message would be lost.
        self.rfile: BinaryIO = rfile if rfile is not None else sock.makefile("rb")
        self._owns_rfile = rfile is None

    @classmethod
    def dial(cls, address: str, timeout: float = Constants.DIAL_TIMEOUT_SEC) -> "Connection":
        host, port = split_address(address)
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except socket.timeout as e:
            raise RequestTimeoutError("Timed out connecting.", address) from e
        except OSError as e:
            raise PeerConnectionError(f"Could not connect: {e}", address) from e
        logger.debug(f"[Client] Connected to {address}.")
        return cls(sock, address)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def close(self) -> None:
        try:
            if self._owns_rfile:
                self.rfile.close()
            self.sock.close()
        except OSError as e:
            logger.debug(f"[Client] Error closing connection to {self.address}: {e}")

    def read_message(self, timeout: float) -> Message:
        """
        Reads exactly one message off the stream.
        :raises PeerConnectionError: stream closed, truncated, or timed out.
        :raises DataDecodingError: the line was not a JSON object.
        """
        self.sock.settimeout(timeout)
        try:
            line = self.rfile.readline(Constants.MAX_MESSAGE_BYTES + 1)
        except socket.timeout as e:
            raise RequestTimeoutError("Timed out reading message.", self.address) from e
        except OSError as e:
            raise PeerConnectionError(f"Error reading message: {e}", self.address) from e

        if not line:
            raise PeerConnectionError("Connection closed before a message was received.", self.address)
        if not line.endswith(b"\n"):
            if len(line) > Constants.MAX_MESSAGE_BYTES:
                raise DataDecodingError(f"Message from {self.address} is too long.")
            raise PeerConnectionError("Message was truncated.", self.address)

        return decode_data(line)

    def write_message(self, message: Message | dict, timeout: float) -> None:
        self.sock.settimeout(timeout)
        try:
            self.sock.sendall(encode_data(message))
        except socket.timeout as e:
            raise RequestTimeoutError("Timed out writing message.", self.address) from e
        except OSError as e:
            raise PeerConnectionError(f"Error writing message: {e}", self.address) from e

    def request(self, message: Message | dict, timeout: float, response_timeout: float | None = None) -> Message:
        """
        Writes a request then waits for its one response.
        """
        self.write_message(message, timeout)
        return self.read_message(response_timeout if response_timeout is not None else timeout)

    def send_file(self, file: BinaryIO, size: int, timeout: float) -> int:
        """
        Streams exactly size bytes from file, in FILE_CHUNK_SIZE blocks.
        :return: bytes sent.
        """
        self.sock.settimeout(timeout)
        sent = 0
        try:
            while sent < size:
                block = file.read(min(Constants.FILE_CHUNK_SIZE, size - sent))
                if not block:
                    raise PeerConnectionError(f"File ended after {sent} of {size} bytes.", self.address)
                self.sock.sendall(block)
                sent += len(block)
        except socket.timeout as e:
            raise RequestTimeoutError(f"Timed out after sending {sent} of {size} bytes.", self.address) from e
        except PeerConnectionError:
            raise
        except OSError as e:
            raise PeerConnectionError(f"Error sending file: {e}", self.address) from e
        return sent

    def receive_file(self, file: BinaryIO, size: int, timeout: float, progress: bool = False) -> int:
        """
        Copies exactly size raw bytes from the stream into file.
        :param progress: show a tqdm progress bar while receiving.
        :return: bytes received.
        """
        self.sock.settimeout(timeout)
        received = 0
        with tqdm(total=size, unit="iB", unit_scale=True, disable=not progress) as progress_bar:
            try:
                while received < size:
                    block = self.rfile.read(min(Constants.FILE_CHUNK_SIZE, size - received))
                    if not block:
                        raise PeerConnectionError(
                            f"Connection closed after {received} of {size} bytes.", self.address
                        )
                    file.write(block)
                    received += len(block)
                    progress_bar.update(len(block))
            except socket.timeout as e:
                raise RequestTimeoutError(
                    f"Timed out after receiving {received} of {size} bytes.", self.address
                ) from e
            except PeerConnectionError:
                raise
            except OSError as e:
                raise PeerConnectionError(f"Error receiving file: {e}", self.address) from e
        return received


class BaseRequestHandler(socketserver.StreamRequestHandler):
    """
    Reads one request per connection and hands it to handle_message().
    A bad request only ever costs its own connection.
    """
    read_timeout: float = Constants.TRACKER_READ_TIMEOUT_SEC

    def handle(self) -> None:
        client_address = join_address(*self.client_address[:2])
        connection = Connection(self.connection, client_address, rfile=self.rfile)
        try:
            message = validate_request(connection.read_message(self.read_timeout))
        except (PeerConnectionError, DataDecodingError) as e:
            logger.warning(f"[Server] Read error from {client_address}: {e}")
            return

        logger.debug(f"[Server] Request received from {client_address}: {message}")
        try:
            self.handle_message(connection, message)
        except PeerConnectionError as e:
            logger.warning(f"[Server] Write error to {client_address}: {e}")

    def handle_message(self, connection: Connection, message: Message) -> None:
        raise NotImplementedError


class BaseServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, server_address: tuple[str, int], request_handler_class):
        logger.info(f"[Server] Server socket address: {server_address}")
        socketserver.TCPServer.__init__(
            self,
            server_address=server_address,
            RequestHandlerClass=request_handler_class
        )
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        return self.server_address[1]

    def handle_error(self, request, client_address) -> None:
        logger.exception(f"[Server] Unhandled error serving {client_address}.")

    def start(self) -> None:
        """
        Serves until stop() is called.
        :return:
        """
        logger.info("[Server] Starting server...")
        self.serve_forever()

    def stop(self):
        """
        Stops the server.
        :return:
        """
        logger.warning("[Server] Stopping server...")
        self.shutdown()
        self.server_close()

    def thread_start(self) -> threading.Thread:
        """
        Starts the server on a thread that is returned.
        :return: Thread the server is running on
        """
        self._thread = threading.Thread(target=self.start, daemon=True)
        self._thread.start()
        return self._thread

    def thread_stop(self, thread: threading.Thread | None = None) -> None:
        """
        Stops the server, then waits for its thread to finish.
        :param thread: defaults to the thread made by thread_start().
        :return:
        """
        thread = thread or self._thread
        if thread and thread.is_alive():
            self.shutdown()
        self.server_close()
        if thread:
            thread.join()
        logger.info("[Server] Server stopped.")
