from p2p_share.constants import Constants


class P2PShareError(Exception):
    pass


class DataDecodingError(P2PShareError):
    """Raised when bytes on the wire cannot be decoded into a message."""
    pass


class PeerConnectionError(P2PShareError):
    """
    Dial, read or write failure on a connection, including a stream that
    closed early. The connection it happened on must be abandoned.
    """

    def __init__(self, message: str, address: str | None = None):
        super().__init__(message)
        self.address = address

    def __str__(self):
        if self.address:
            return f"{self.address}: {self.args[0]}"
        return self.args[0]


class RequestTimeoutError(PeerConnectionError):
    """Raised when a read or write did not complete within its timeout."""
    pass


class ProtocolError(P2PShareError):
    """
    The remote side answered, but with a status other than "ok".
    """

    def __init__(self, status: str, address: str | None = None):
        super().__init__(status)
        self.status: str = status
        self.address: str | None = address

    def __str__(self):
        if self.address:
            return f"Protocol error from {self.address}: {self.status}"
        return f"Protocol error: {self.status}"


class FileNotFoundOnPeerError(ProtocolError):
    def __init__(self, address: str | None = None):
        super().__init__(Constants.STATUS_FILE_NOT_FOUND, address)


class PeerNotRegisteredError(ProtocolError):
    def __init__(self, address: str | None = None):
        super().__init__(Constants.STATUS_PEER_NOT_REGISTERED, address)


class NoPeersError(P2PShareError):
    """Raised when the tracker knows no peers for a file."""

    def __init__(self, filename: str):
        super().__init__(f"No peers available for file {filename!r}.")
        self.filename = filename


class DownloadExhaustedError(P2PShareError):
    """
    Every candidate peer failed. last_error is the failure from the
    last peer that was tried.
    """

    def __init__(self, filename: str, last_error: Exception, attempts: int):
        super().__init__(
            f"All {attempts} download attempt(s) for {filename!r} failed. Last error: {last_error}"
        )
        self.filename = filename
        self.last_error = last_error
        self.attempts = attempts


def error_for_status(status: str | None, address: str | None = None) -> ProtocolError:
    """
    Maps a non-"ok" response status onto the matching ProtocolError.
    """
    if status == Constants.STATUS_FILE_NOT_FOUND:
        return FileNotFoundOnPeerError(address)
    elif status == Constants.STATUS_PEER_NOT_REGISTERED:
        return PeerNotRegisteredError(address)
    else:
        return ProtocolError(status or "missing status", address)
