from typing import TypedDict


class Message(TypedDict, total=False):
    """
    The single message type used on the wire. Every field is optional
    except "command" on requests; responses carry "status".

    command: one of register, heartbeat, list, getpeers, download

    address: "host:port" the sender identifies itself as (register, heartbeat)

    files: filenames the sender shares (register, heartbeat)

    filemap: filename -> list of peer addresses (list response)

    filename: file being asked about (getpeers, download)

    peers: list of peer addresses (getpeers response)

    status: "ok" or an error phrase (all responses)

    size: number of raw bytes that follow a download response
    """
    command: str
    address: str
    files: list[str]
    filemap: dict[str, list[str]]
    filename: str
    peers: list[str]
    status: str
    size: int


class RegisterRequest(TypedDict):
    command: str
    address: str
    files: list[str]


class HeartbeatRequest(TypedDict):
    command: str
    address: str


class ListRequest(TypedDict):
    command: str


class GetPeersRequest(TypedDict):
    command: str
    filename: str


class DownloadRequest(TypedDict):
    command: str
    filename: str


class StatusResponse(TypedDict):
    status: str


class ListResponse(StatusResponse):
    filemap: dict[str, list[str]]


class GetPeersResponse(StatusResponse):
    peers: list[str]


class DownloadResponse(StatusResponse, total=False):
    size: int
