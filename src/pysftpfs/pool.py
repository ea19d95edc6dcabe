
from __future__ import annotations

import contextlib
import logging
import threading
import time
from typing import Callable, Iterator, List, Optional

from paramiko.sftp import SFTP_NO_CONNECTION

from .errors import IOFailureError, RemoteError
from .session import RemoteSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], RemoteSession]


class ChannelPool:
    """Hands out :class:`RemoteSession` channels, one per running operation.

    Channels are created lazily up to ``size``. :meth:`acquire` is a context manager
    that always gives the channel back, whether the block finishes or raises. A
    channel that is found dead on release frees its slot and wakes one waiter, which
    then opens a replacement.
    """

    def __init__(self, factory: SessionFactory, size: int = 1, timeout: Optional[float] = None) -> None:
        if size < 1:
            raise ValueError(f"pool size must be at least 1, got {size}")
        self.factory = factory
        self.size = size
        self.timeout = timeout
        self._idle: List[RemoteSession] = []
        self._all: List[RemoteSession] = []
        self._opening = 0
        self._available = threading.Condition()
        self._closed = False

    @contextlib.contextmanager
    def acquire(self) -> Iterator[RemoteSession]:
        session = self._take()
        try:
            yield session
        finally:
            self._give_back(session)

    def _take(self) -> RemoteSession:
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        with self._available:
            while True:
                if self._closed:
                    raise IOFailureError(None, reason="channel pool is closed", status=SFTP_NO_CONNECTION)
                if self._idle:
                    return self._idle.pop()
                if len(self._all) + self._opening < self.size:
                    self._opening += 1
                    break
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise IOFailureError(
                        None, reason=f"no channel available within {self.timeout} seconds", status=SFTP_NO_CONNECTION
                    )
                self._available.wait(remaining)
        try:
            session = self._open()
        except BaseException:
            with self._available:
                self._opening -= 1
                self._available.notify()
            raise
        with self._available:
            self._opening -= 1
            self._all.append(session)
        return session

    def _open(self) -> RemoteSession:
        try:
            session = self.factory()
        except RemoteError as exc:
            raise IOFailureError(None, reason=f"could not open channel: {exc.message}", status=exc.status) from exc
        logger.debug("Opened channel %d of %d", len(self._all) + 1, self.size)
        return session

    def _give_back(self, session: RemoteSession) -> None:
        with self._available:
            keep = not self._closed and session.is_open
            if keep:
                self._idle.append(session)
            elif session in self._all:
                self._all.remove(session)
            self._available.notify()
        if not keep:
            session.close()
            logger.debug("Discarded channel %r", session)

    def keep_alive(self) -> None:
        """Send a no-op request over every idle channel."""
        with self._available:
            idle, self._idle = self._idle, []
        try:
            for session in idle:
                session.keep_alive()
        finally:
            for session in idle:
                self._give_back(session)

    def close(self) -> None:
        with self._available:
            self._closed = True
            sessions, self._all, self._idle = self._all, [], []
            self._available.notify_all()
        for session in sessions:
            session.close()
