import argparse
import logging
import sys
from sys import stdout

from p2p_share import helpers
from p2p_share.constants import Constants
from p2p_share.errors import P2PShareError
from p2p_share.networking import split_address
from p2p_share.peer import Peer
from p2p_share.tracker import TrackerServer


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tracker-coordinated peer-to-peer file sharing.")
    parser.add_argument("--verbose", "-v", action="store_true", required=False, default=False,
                        help="If logs should be verbose.")
    parser.add_argument("--log_file", default=Constants.LOG_FILE,
                        help="File logs are written to.")
    subparsers = parser.add_subparsers(dest="role", required=True)

    tracker_parser = subparsers.add_parser("tracker", help="Run the tracker.")
    tracker_parser.add_argument("--port", type=int, required=False, default=Constants.DEFAULT_TRACKER_PORT)

    peer_parser = subparsers.add_parser("peer", help="Run a peer with an interactive prompt.")
    peer_parser.add_argument("--tracker", required=True,
                             help="Address of the tracker, as host:port.")
    peer_parser.add_argument("--port", type=int, required=False, default=None,
                             help="Port to serve files to other peers on, a free one is picked if not given.")
    peer_parser.add_argument("--shared_dir", "--shared-dir", required=True,
                             help="Directory to share, downloads are saved here too.")
    peer_parser.add_argument("--use_global_ip", action="store_true",
                             help="If the clients global IP should be used by the P2P network.")
    return parser


def handle_terminal(argv: list[str] | None = None) -> argparse.Namespace:
    args = make_parser().parse_args(argv)
    if args.role == "peer":
        try:
            split_address(args.tracker)
        except ValueError as e:
            make_parser().error(str(e))
    return args


def create_logger(verbose: bool, log_file: str = Constants.LOG_FILE) -> logging.Logger:
    """
    Every module logs to the "__main__" logger; this sends it to log_file
    and to stdout.
    """
    logger = logging.getLogger("__main__")
    handler = logging.StreamHandler(stdout)

    # clear the log file
    with open(log_file, "w"):
        pass

    if verbose:
        logging.basicConfig(filename=log_file, level=logging.DEBUG,
                            format="%(asctime)s [%(levelname)s] %(message)s")
        handler.setLevel(logging.DEBUG)
    else:
        logging.basicConfig(filename=log_file, level=logging.INFO,
                            format="%(asctime)s [%(levelname)s] %(message)s")
        handler.setLevel(logging.INFO)

    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s', datefmt="%H:%M:%S")
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


def initialise_tracker(port: int, logger: logging.Logger) -> TrackerServer:
    """
    Binds the tracker. Failing to bind is fatal.
    """
    try:
        return TrackerServer(port)
    except OSError as e:
        logger.critical(f"Could not listen on port {port}: {e}")
        sys.exit(1)


def initialise_peer(tracker_address: str, port: int | None, shared_dir: str,
                    use_global_ip: bool, logger: logging.Logger) -> Peer:
    """
    Creates the shared directory if it is missing, then creates the peer
    and binds its file server. Either failing is fatal.
    Without a port, DEFAULT_PEER_PORT is used if it is free, otherwise any free port.
    """
    logger.info("Initialising peer.")
    if not port:
        port = helpers.get_valid_port(default=Constants.DEFAULT_PEER_PORT)
        logger.info(f"No port given, using port {port}.")
    try:
        shared_dir = helpers.make_sure_directory_exists(shared_dir)
    except OSError as e:
        logger.critical(f"Could not create shared directory {shared_dir}: {e}")
        sys.exit(1)

    try:
        peer = Peer(tracker_address, port, shared_dir, use_global_ip=use_global_ip)
    except OSError as e:
        logger.critical(f"Could not start peer on port {port}: {e}")
        sys.exit(1)
    except P2PShareError as e:
        logger.critical(f"Could not resolve our address: {e}")
        sys.exit(1)

    logger.info(f"Our address is {peer.address}.")
    return peer
