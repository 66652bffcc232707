import io
import os
import shutil
import tempfile
import unittest

from p2p_share.constants import Constants
from p2p_share.errors import PeerConnectionError
from p2p_share.file_server import PeerFileServer
from p2p_share.networking import Connection
from support import LOCALHOST, wait_for, write_file


class PeerFileServerTest(unittest.TestCase):
    def setUp(self):
        self.root = tempfile.mkdtemp()
        self.shared_dir = os.path.join(self.root, "shared")
        os.mkdir(self.shared_dir)
        self.server = PeerFileServer(0, self.shared_dir, host=LOCALHOST)
        self.server.thread_start()
        self.address = f"{LOCALHOST}:{self.server.port}"

    def tearDown(self):
        self.server.thread_stop()
        shutil.rmtree(self.root, ignore_errors=True)

    def download(self, filename: str) -> tuple[dict, bytes]:
        with Connection.dial(self.address) as connection:
            response = connection.request({"command": "download", "filename": filename}, 5)
            body = io.BytesIO()
            if response.get("status") == Constants.STATUS_OK:
                connection.receive_file(body, response["size"], 5)
            # Nothing else may follow on the stream.
            connection.sock.settimeout(5)
            self.assertEqual(connection.rfile.read(), b"")
        return response, body.getvalue()

    def test_download(self):
        content = os.urandom(3 * Constants.FILE_CHUNK_SIZE + 17)
        write_file(self.shared_dir, "data.bin", content)

        response, body = self.download("data.bin")

        self.assertEqual(response, {"status": "ok", "size": len(content)})
        self.assertEqual(body, content)

    def test_download_logs_transfer(self):
        write_file(self.shared_dir, "a.txt", b"hello world\n")

        with self.assertLogs("__main__", level="INFO") as logs:
            self.download("a.txt")
            self.assertTrue(wait_for(lambda: any("Sent a.txt (12 bytes)" in line for line in logs.output)))

    def test_empty_file(self):
        write_file(self.shared_dir, "empty.txt", b"")

        response, body = self.download("empty.txt")

        self.assertEqual(response, {"status": "ok", "size": 0})
        self.assertEqual(body, b"")

    def test_missing_file(self):
        response, body = self.download("missing.txt")

        self.assertEqual(response, {"status": Constants.STATUS_FILE_NOT_FOUND})
        self.assertEqual(body, b"")

    def test_path_traversal_is_not_found(self):
        write_file(self.root, "secret.txt", b"secret")

        for name in ["../secret.txt", os.path.join(self.root, "secret.txt")]:
            response, body = self.download(name)
            self.assertEqual(response, {"status": Constants.STATUS_FILE_NOT_FOUND}, msg=name)
            self.assertEqual(body, b"")

    def test_directory_is_not_found(self):
        os.mkdir(os.path.join(self.shared_dir, "subdir"))

        response, _ = self.download("subdir")

        self.assertEqual(response, {"status": Constants.STATUS_FILE_NOT_FOUND})

    def test_other_commands_are_dropped_silently(self):
        for message in [{"command": "list"}, {"command": "register", "address": "x:1"}, {}]:
            with Connection.dial(self.address) as connection:
                connection.write_message(message, 1)
                with self.assertRaises(PeerConnectionError, msg=str(message)):
                    connection.read_message(5)

    def test_concurrent_downloads(self):
        content = os.urandom(50_000)
        write_file(self.shared_dir, "big.bin", content)
        connections = [Connection.dial(self.address) for _ in range(5)]
        try:
            for connection in connections:
                connection.write_message({"command": "download", "filename": "big.bin"}, 5)
            for connection in connections:
                response = connection.read_message(5)
                body = io.BytesIO()
                connection.receive_file(body, response["size"], 5)
                self.assertEqual(body.getvalue(), content)
        finally:
            for connection in connections:
                connection.close()


if __name__ == '__main__':
    unittest.main()
