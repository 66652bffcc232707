import io
import socket
import unittest

from p2p_share.constants import Constants
from p2p_share.errors import (DataDecodingError, FileNotFoundOnPeerError, PeerConnectionError,
                              PeerNotRegisteredError, ProtocolError, RequestTimeoutError, error_for_status)
from p2p_share.networking import Connection, split_address
from p2p_share.pickler import decode_data, encode_data, validate_request


class PicklerTest(unittest.TestCase):
    def test_one_line_per_message(self):
        encoded = encode_data({"command": "getpeers", "filename": "a.txt"})

        self.assertTrue(encoded.endswith(b"\n"))
        self.assertEqual(encoded.count(b"\n"), 1)

    def test_unused_fields_are_left_out(self):
        encoded = encode_data({"status": "ok", "peers": [], "filemap": {}, "address": None, "filename": ""})

        self.assertEqual(decode_data(encoded), {"status": "ok"})

    def test_zero_size_is_kept(self):
        self.assertEqual(decode_data(encode_data({"status": "ok", "size": 0})), {"status": "ok", "size": 0})

    def test_sets_are_encoded_as_sorted_lists(self):
        encoded = encode_data({"status": "ok", "peers": {"b:2", "a:1"}})

        self.assertEqual(decode_data(encoded)["peers"], ["a:1", "b:2"])

    def test_decode_accepts_str(self):
        self.assertEqual(decode_data('{"command": "list"}'), {"command": "list"})

    def test_malformed_json_is_rejected(self):
        with self.assertRaises(DataDecodingError):
            decode_data(b'{"command": ')

    def test_non_object_is_rejected(self):
        with self.assertRaises(DataDecodingError):
            decode_data(b'["register"]')

    def test_invalid_utf8_is_rejected(self):
        with self.assertRaises(DataDecodingError):
            decode_data(b'\xff\xfe')


class ValidateRequestTest(unittest.TestCase):
    def test_well_formed_requests(self):
        for message in [
            {"command": "register", "address": "a:1", "files": ["a.txt"]},
            {"command": "register", "address": "a:1"},
            {"command": "heartbeat", "address": "a:1"},
            {"command": "list"},
            {"command": "getpeers", "filename": "a.txt"},
            {"command": "download", "filename": "a.txt"},
            {},
        ]:
            self.assertEqual(validate_request(message), message)

    def test_badly_typed_fields(self):
        for message in [
            {"command": 1},
            {"command": "register", "address": 5, "files": ["a.txt"]},
            {"command": "register", "address": "a:1", "files": "abc"},
            {"command": "register", "address": "a:1", "files": [["a.txt"]]},
            {"command": "getpeers", "filename": None},
            {"command": "download", "filename": {"name": "a.txt"}},
        ]:
            with self.assertRaises(DataDecodingError, msg=str(message)):
                validate_request(message)

    def test_register_and_heartbeat_need_an_address(self):
        for command in ["register", "heartbeat"]:
            with self.assertRaises(DataDecodingError, msg=command):
                validate_request({"command": command, "address": ""})


class ConnectionTest(unittest.TestCase):
    def setUp(self):
        left, right = socket.socketpair()
        self.client = Connection(left, "client")
        self.server = Connection(right, "server")

    def tearDown(self):
        self.client.close()
        self.server.close()

    def test_messages_can_be_read_back_to_back(self):
        self.client.write_message({"command": "list"}, 1)
        self.client.write_message({"command": "getpeers", "filename": "a.txt"}, 1)

        self.assertEqual(self.server.read_message(1), {"command": "list"})
        self.assertEqual(self.server.read_message(1), {"command": "getpeers", "filename": "a.txt"})

    def test_file_bytes_follow_message_on_same_stream(self):
        content = b"0123456789" * 1000
        self.server.write_message({"status": "ok", "size": len(content)}, 1)
        self.server.send_file(io.BytesIO(content), len(content), 1)

        response = self.client.read_message(1)
        received = io.BytesIO()
        count = self.client.receive_file(received, response["size"], 1)

        self.assertEqual(count, len(content))
        self.assertEqual(received.getvalue(), content)

    def test_request_returns_the_response(self):
        self.server.write_message({"status": "ok"}, 1)

        self.assertEqual(self.client.request({"command": "list"}, 1), {"status": "ok"})
        self.assertEqual(self.server.read_message(1), {"command": "list"})

    def test_closed_stream(self):
        self.server.sock.shutdown(socket.SHUT_WR)

        with self.assertRaises(PeerConnectionError):
            self.client.read_message(1)

    def test_truncated_message(self):
        self.server.sock.sendall(b'{"status": "ok"')
        self.server.sock.shutdown(socket.SHUT_WR)

        with self.assertRaises(PeerConnectionError):
            self.client.read_message(1)

    def test_read_timeout(self):
        with self.assertRaises(RequestTimeoutError):
            self.client.read_message(0.1)

    def test_short_file_body(self):
        self.server.sock.sendall(b"abc")
        self.server.sock.shutdown(socket.SHUT_WR)

        with self.assertRaises(PeerConnectionError):
            self.client.receive_file(io.BytesIO(), 10, 1)

    def test_send_file_shorter_than_size(self):
        with self.assertRaises(PeerConnectionError):
            self.server.send_file(io.BytesIO(b"abc"), 10, 1)


class DialTest(unittest.TestCase):
    def test_dial_refused(self):
        with socket.socket() as sock:
            sock.bind(("127.0.0.1", 0))
            address = f"127.0.0.1:{sock.getsockname()[1]}"
            # Bound but not listening, so connecting is refused.
            with self.assertRaises(PeerConnectionError) as context:
                Connection.dial(address, timeout=1)

        self.assertEqual(context.exception.address, address)
        self.assertIn(address, str(context.exception))


class AddressTest(unittest.TestCase):
    def test_split_address(self):
        self.assertEqual(split_address("192.168.1.5:9001"), ("192.168.1.5", 9001))
        self.assertEqual(split_address("localhost:80"), ("localhost", 80))

    def test_bad_addresses(self):
        for address in ["9001", "host:", ":9001", "host:port", "host:0", "host:70000"]:
            with self.assertRaises(ValueError, msg=address):
                split_address(address)


class StatusErrorTest(unittest.TestCase):
    def test_error_for_status(self):
        self.assertIsInstance(error_for_status(Constants.STATUS_FILE_NOT_FOUND), FileNotFoundOnPeerError)
        self.assertIsInstance(error_for_status(Constants.STATUS_PEER_NOT_REGISTERED), PeerNotRegisteredError)

        error = error_for_status("server error", "10.0.0.1:9001")
        self.assertIsInstance(error, ProtocolError)
        self.assertEqual(error.status, "server error")
        self.assertIn("10.0.0.1:9001", str(error))

    def test_missing_status(self):
        self.assertEqual(error_for_status(None).status, "missing status")


if __name__ == '__main__':
    unittest.main()
