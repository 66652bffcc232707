import json
import logging

from p2p_share.constants import Constants
from p2p_share.dictionaries import Message
from p2p_share.errors import DataDecodingError

logger = logging.getLogger("__main__")


class Encoder(json.JSONEncoder):
    def default(self, obj):
        # Peer sets are stored as sets, the wire only knows lists.
        if isinstance(obj, (set, frozenset)):
            logger.debug(f"Encoding object {type(obj)} as a sorted list.")
            return sorted(obj)

        return json.JSONEncoder.default(self, obj)


def strip_empty(message: dict) -> dict:
    """
    Drops fields that are None or empty, so only the fields a message
    variant actually uses go on the wire. A size of 0 is kept on download
    responses, since an empty file is still a valid file.
    """
    stripped = {}
    for key, value in message.items():
        if value is None:
            continue
        if key == "size":
            stripped[key] = value
        elif value == "" or value == [] or value == {}:
            continue
        else:
            stripped[key] = value
    return stripped


def encode_data(data: Message | dict) -> bytes:
    """
    Encodes a message as one line of compact JSON, terminated by a newline,
    so several messages can be written back to back on one stream.
    """
    encoded = json.dumps(strip_empty(dict(data)), cls=Encoder, separators=(",", ":"))
    return (encoded + "\n").encode(Constants.ENCODING)


def decode_data(encoded_data: str | bytes) -> Message:
    """
    Decodes a single encoded message. Anything other than a JSON object
    raises DataDecodingError.
    """
    try:
        if isinstance(encoded_data, bytes):
            encoded_data = encoded_data.decode(Constants.ENCODING)
        elif not isinstance(encoded_data, str):
            raise TypeError(f"Encoded data should be type str or bytes, found type {type(encoded_data)}")

        decoded_data = json.loads(encoded_data)

    except Exception as error:
        raise DataDecodingError("Error decoding data.") from error

    if not isinstance(decoded_data, dict):
        raise DataDecodingError(f"Expected a JSON object, found {type(decoded_data).__name__}.")
    return decoded_data


def validate_request(message: Message) -> Message:
    """
    Checks the fields a request may carry have the types in Message, and
    that register and heartbeat name the sender's address.
    :raises DataDecodingError: on the first bad field.
    """
    for key in ("command", "address", "filename"):
        if key in message and not isinstance(message[key], str):
            raise DataDecodingError(f"Field {key!r} should be a string, found {type(message[key]).__name__}.")

    files = message.get("files", [])
    if not isinstance(files, list) or not all(isinstance(filename, str) for filename in files):
        raise DataDecodingError("Field 'files' should be a list of strings.")

    if message.get("command") in (Constants.REGISTER, Constants.HEARTBEAT) and not message.get("address"):
        raise DataDecodingError(f"{message['command'].capitalize()} request has no address.")
    return message
