from threading import Condition, Lock


class ReadWriteLock:
    """
    Many readers or one writer. Writers are preferred: once a writer is
    waiting, new readers wait too, so a steady stream of list/getpeers
    requests cannot starve register or the reaper.

    Example usage:
        lock = ReadWriteLock()
        with lock.read():
            look_at_things()
        with lock.write():
            change_things()
    """

    def __init__(self) -> None:
        self._condition = Condition(Lock())
        self._readers: int = 0
        self._writer: bool = False
        self._writers_waiting: int = 0

    def acquire_read(self) -> None:
        with self._condition:
            while self._writer or self._writers_waiting:
                self._condition.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._condition:
            self._readers -= 1
            if self._readers == 0:
                self._condition.notify_all()

    def acquire_write(self) -> None:
        with self._condition:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._condition.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._condition:
            self._writer = False
            self._condition.notify_all()

    def read(self) -> "_Held":
        return _Held(self.acquire_read, self.release_read)

    def write(self) -> "_Held":
        return _Held(self.acquire_write, self.release_write)


class _Held:
    """
    Lock side that can be used in "with" statements.
    """

    def __init__(self, acquire, release) -> None:
        self._acquire = acquire
        self._release = release

    def __enter__(self) -> None:
        self._acquire()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self._release()
