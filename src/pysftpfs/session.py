
from __future__ import annotations

import contextlib
import errno
import logging
from typing import Iterator, List, Optional

import paramiko
from paramiko.sftp import SFTP_CONNECTION_LOST, SFTP_DESC, SFTP_FAILURE, SFTP_NO_SUCH_FILE, SFTP_PERMISSION_DENIED

from .errors import RemoteError

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 32768


def status_of(exc: OSError) -> int:
    """Recover the SFTP status code from an error raised by ``paramiko.SFTPClient``.

    paramiko raises ``IOError(errno, text)`` for "no such file" and "permission
    denied", and a bare ``IOError(text)`` with the server's message otherwise.
    """
    if exc.errno == errno.ENOENT:
        return SFTP_NO_SUCH_FILE
    if exc.errno == errno.EACCES:
        return SFTP_PERMISSION_DENIED
    text = exc.args[0] if len(exc.args) == 1 else exc.strerror
    if isinstance(text, str) and text in SFTP_DESC:
        return SFTP_DESC.index(text)
    return SFTP_FAILURE


@contextlib.contextmanager
def remote_errors() -> Iterator[None]:
    """Turn paramiko/socket failures raised in the block into :class:`RemoteError`."""
    try:
        yield
    except (paramiko.SSHException, EOFError) as exc:
        raise RemoteError(SFTP_CONNECTION_LOST, str(exc) or None) from exc
    except OSError as exc:
        status = status_of(exc)
        message = exc.strerror or (str(exc.args[0]) if exc.args else None)
        raise RemoteError(status, message) from exc


class RemoteSession:
    """One SFTP channel; every method is a single remote call.

    Failures are raised as :class:`RemoteError` carrying the SFTP status code,
    leaving the mapping onto caller-facing errors to the :class:`ErrorTranslator`.
    """

    def __init__(self, client: paramiko.SFTPClient, ssh: Optional[paramiko.SSHClient] = None) -> None:
        self.client = client
        self.ssh = ssh
        self._closed = False

    # ----- metadata -----
    def stat(self, path: str) -> paramiko.SFTPAttributes:
        with remote_errors():
            return self.client.stat(path)

    def lstat(self, path: str) -> paramiko.SFTPAttributes:
        with remote_errors():
            return self.client.lstat(path)

    def readlink(self, path: str) -> str:
        with remote_errors():
            target = self.client.readlink(path)
        if target is None:
            raise RemoteError(SFTP_FAILURE, "not a symbolic link")
        return target

    def normalize(self, path: str) -> str:
        with remote_errors():
            return self.client.normalize(path)

    def listdir_attr(self, path: str) -> List[paramiko.SFTPAttributes]:
        with remote_errors():
            return self.client.listdir_attr(path)

    def set_attrs(
        self,
        path: str,
        mtime: Optional[int] = None,
        atime: Optional[int] = None,
        uid: Optional[int] = None,
        gid: Optional[int] = None,
        perm: Optional[int] = None,
    ) -> None:
        """Apply the given attributes. Times and ids are set pairwise, as SFTP v3 requires."""
        with remote_errors():
            if mtime is not None or atime is not None:
                if mtime is None or atime is None:
                    raise ValueError("atime and mtime must be set together")
                self.client.utime(path, (atime, mtime))
            if uid is not None or gid is not None:
                if uid is None or gid is None:
                    raise ValueError("uid and gid must be set together")
                self.client.chown(path, uid, gid)
            if perm is not None:
                self.client.chmod(path, perm)

    # ----- namespace -----
    def mkdir(self, path: str) -> None:
        with remote_errors():
            self.client.mkdir(path)

    def remove(self, path: str) -> None:
        with remote_errors():
            self.client.remove(path)

    def rmdir(self, path: str) -> None:
        with remote_errors():
            self.client.rmdir(path)

    def rename(self, source: str, target: str) -> None:
        with remote_errors():
            self.client.rename(source, target)

    def symlink(self, target: str, path: str) -> None:
        """Create ``path`` as a symbolic link pointing at ``target``."""
        with remote_errors():
            self.client.symlink(target, path)

    # ----- content -----
    def open_read(self, path: str) -> paramiko.SFTPFile:
        with remote_errors():
            return self.client.open(path, "rb")

    def open_write(
        self,
        path: str,
        append: bool = False,
        truncate: bool = True,
        create: bool = True,
        exclusive: bool = False,
    ) -> paramiko.SFTPFile:
        if exclusive:
            mode = "xb"
        elif not create:
            mode = "r+b"
        elif append:
            mode = "ab"
        elif truncate:
            mode = "wb"
        else:
            # create is only passed for a file that does not exist yet
            mode = "ab"
        with remote_errors():
            handle = self.client.open(path, mode)
            if mode == "r+b":
                if append:
                    handle.seek(0, 2)
                elif truncate:
                    handle.truncate(0)
            return handle

    # ----- lifecycle -----
    @property
    def is_open(self) -> bool:
        if self._closed:
            return False
        channel = self.client.get_channel()
        return channel is not None and not channel.closed

    def keep_alive(self) -> None:
        self.normalize(".")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.client.close()
        finally:
            if self.ssh is not None:
                self.ssh.close()
        logger.debug("Closed SFTP session %r", self)
