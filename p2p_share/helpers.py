import logging
import os
import random
import socket
import threading
from typing import Callable

logger = logging.getLogger("__main__")


def scan_shared_directory(shared_dir: str) -> list[str]:
    """
    Returns the names of every non-directory entry in shared_dir, sorted.
    This is a fresh scan every time, nothing is cached.
    :raises OSError: if the directory cannot be read.
    """
    with os.scandir(shared_dir) as entries:
        return sorted(entry.name for entry in entries if not entry.is_dir())


def resolve_shared_path(shared_dir: str, filename: str) -> str | None:
    """
    Joins filename onto shared_dir, returning None if the result would
    point anywhere outside shared_dir (absolute names, "..", symlinks out).
    """
    if not filename or filename in (".", "..") or "\x00" in filename:
        return None
    if os.path.isabs(filename):
        return None

    root = os.path.realpath(shared_dir)
    path = os.path.realpath(os.path.join(root, filename))
    if os.path.commonpath([root, path]) != root or path == root:
        return None
    return path


def make_sure_directory_exists(directory: str) -> str:
    """
    Creates directory (and parents) if missing.
    :return: absolute path of the directory.
    """
    if os.path.isabs(directory):
        logger.debug(f"Path {directory} is absolute.")
        path = directory
    else:
        path = os.path.join(os.getcwd(), directory)
        logger.debug(f"Path {directory} is not absolute, absolute version is {path}")
    if not os.path.exists(path):
        logger.debug("Path does not exist, creating it.")
        os.makedirs(path, exist_ok=True)
    return path


def port_is_free(port: int) -> bool:
    """
    Returns if a port is free on localhost.
    :param port: Port to be checked
    :return: if it's free.
    """

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(('localhost', port))
            return True
    except (OSError, PermissionError):
        return False


def get_valid_port(default: int | None = None,
                   lower_bound=1024, upper_bound=65535) -> int:
    """
    Gets a free port on localhost, trying default first if given.
    """
    if lower_bound > upper_bound:
        raise ValueError("Port lower bound cannot be greater than port upper bound.")

    if default is not None and port_is_free(default):
        return default

    while True:
        port = random.randint(lower_bound, upper_bound)
        if port_is_free(port):
            return port


class Timer:
    """
    Calls function every interval_sec on its own thread until stopped.

    A failing call is logged and the timer carries on. tick() runs one
    cycle on the calling thread, for driving the timer without waiting.
    """

    def __init__(self, interval_sec: float, function: Callable, auto_reset: bool = True,
                 name: str = "timer", *args, **kwargs):
        self.interval_sec: float = interval_sec
        self.function: Callable = function
        self.auto_reset: bool = auto_reset
        self.name: str = name
        self.args: tuple = args
        self.kwargs: dict = kwargs
        self.cycles: int = 0
        self._stop_event = threading.Event()
        self.__thread: threading.Thread | None = None

    def tick(self) -> None:
        self.cycles += 1
        self.function(*self.args, **self.kwargs)

    def run(self) -> None:
        logger.info(f"Starting {self.name}.")

        while not self._stop_event.is_set():
            if self._stop_event.wait(self.interval_sec):
                break
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in {self.name}: {e}")
            if not self.auto_reset:
                break

        logger.info(f"{self.name.capitalize()} stopped.")

    def reset(self) -> None:
        self.stop()
        self.start()

    def start(self) -> None:
        if self.__thread is None or not self.__thread.is_alive():
            self._stop_event.clear()
            self.__thread = threading.Thread(target=self.run, name=self.name, daemon=True)
            self.__thread.start()
        else:
            logger.info(f"Resetting {self.name}.")
            self.reset()

    def stop(self) -> None:
        if self._stop_event.is_set():
            logger.warning(f"{self.name.capitalize()} already stopped.")
            return

        logger.info(f"Stopping {self.name}.")
        self._stop_event.set()
        if self.__thread and self.__thread.is_alive() and self.__thread is not threading.current_thread():
            self.__thread.join()

    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def is_running(self) -> bool:
        return self.__thread is not None and self.__thread.is_alive()
