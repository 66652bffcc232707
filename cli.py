import logging
import time
from typing import Callable, TextIO
from sys import stdin, stdout

import ui_helpers
from p2p_share.errors import NoPeersError, P2PShareError
from p2p_share.peer import Peer
from p2p_share.tracker import TrackerServer

logger = logging.getLogger("__main__")


class PeerPrompt:
    """
    Line based prompt for a running peer: list, download <filename>, exit.
    """

    def __init__(self, peer: Peer, input_stream: TextIO = stdin, output_stream: TextIO = stdout):
        self.peer = peer
        self.input_stream = input_stream
        self.output_stream = output_stream
        self.__commands: dict[str, dict] = {}
        self.running = False

        self.add_command("list", self.list_files, "List every file the tracker knows about.")
        self.add_command("download", self.download, "download <filename>: fetch a file from other peers.")
        self.add_command("exit", self.exit, "Stop the peer.")

    def add_command(self, name: str, command: Callable, description: str = "") -> None:
        if name in self.__commands:
            raise ValueError(f"Command \"{name}\" is already in the prompt.")
        self.__commands[name] = {"command": command, "description": description}

    def write(self, *lines: str) -> None:
        for line in lines:
            print(line, file=self.output_stream)

    def display(self) -> None:
        self.write("Peer-to-Peer File Sharing System", f"Our address: {self.peer.address}", "Commands:")
        for name, option in self.__commands.items():
            self.write(f"  {name}: {option['description']}")

    def handle_line(self, line: str) -> None:
        words = line.split()
        if not words:
            return
        option = self.__commands.get(words[0])
        if option is None:
            self.write("Unknown command")
            return
        option["command"](*words[1:])

    def run(self) -> None:
        self.display()
        self.running = True
        while self.running:
            print("> ", end="", file=self.output_stream, flush=True)
            line = self.input_stream.readline()
            if not line:
                break
            self.handle_line(line)

    def list_files(self, *_) -> None:
        try:
            file_map = self.peer.list_files()
        except P2PShareError as e:
            logger.error(f"List failed: {e}")
            self.write(f"Error: {e}")
            return

        self.write("Available files:")
        for filename, peers in sorted(file_map.items()):
            self.write(f"  {filename} ({len(peers)} peers)")

    def download(self, *args) -> None:
        if not args:
            self.write("Usage: download <filename>")
            return

        filename = args[0]
        self.write(f"Downloading {filename}...")
        try:
            path = self.peer.download(filename, progress=True)
        except NoPeersError as e:
            self.write(f"Download failed: {e}")
        except (P2PShareError, ValueError, OSError) as e:
            logger.error(f"Download of {filename} failed: {e}")
            self.write(f"Download failed: {e}")
        else:
            self.write(f"Download successful! Saved to {path}")

    def exit(self, *_) -> None:
        self.write("Exiting...")
        self.running = False


def run_tracker(port: int, logger: logging.Logger) -> None:
    tracker: TrackerServer = ui_helpers.initialise_tracker(port, logger)
    tracker.thread_start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Tracker stopped by user.")
    finally:
        tracker.thread_stop()


def run_peer(tracker_address: str, port: int, shared_dir: str, use_global_ip: bool,
             logger: logging.Logger) -> None:
    peer = ui_helpers.initialise_peer(tracker_address, port, shared_dir, use_global_ip, logger)
    peer.start()
    try:
        PeerPrompt(peer).run()
    except KeyboardInterrupt:
        logger.info("Peer stopped by user.")
    finally:
        peer.stop()


if __name__ == "__main__":
    args = ui_helpers.handle_terminal()
    logger = ui_helpers.create_logger(args.verbose, args.log_file)

    if args.role == "tracker":
        run_tracker(args.port, logger)
    else:
        run_peer(args.tracker, args.port, args.shared_dir, args.use_global_ip, logger)
