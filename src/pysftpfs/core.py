
from __future__ import annotations

import abc
import io
import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Optional, Set, Union
from urllib.parse import unquote, urlparse

from .errors import FileSystemNotFoundError, NoSuchFileError

if TYPE_CHECKING:
    from .attributes import RemoteFileAttributes
    from .path import SFTPPath
    from .sftpfs import SFTPFS

logger = logging.getLogger(__name__)

StrOrPath = Union[str, "SFTPPath"]


class AbstractFS(abc.ABC):
    """Abstract filesystem interface.

    Implementations resolve relative paths against a per-connection home directory.
    The primitives below are abstract; the convenience methods are built on them.
    """

    @abc.abstractmethod
    def get_path(self, first: str, *more: str) -> "SFTPPath":
        ...

    @abc.abstractmethod
    def open(self, path: StrOrPath, mode: str = "rb", *, delete_on_close: bool = False) -> io.IOBase:
        ...

    @abc.abstractmethod
    def read_attributes(self, path: StrOrPath, follow_links: bool = True) -> "RemoteFileAttributes":
        ...

    @abc.abstractmethod
    def iterdir(self, path: StrOrPath = "", filter: Optional[Callable[["SFTPPath"], bool]] = None) -> Iterator["SFTPPath"]:
        ...

    @abc.abstractmethod
    def create_directory(self, path: StrOrPath) -> None:
        ...

    @abc.abstractmethod
    def delete(self, path: StrOrPath) -> None:
        ...

    @abc.abstractmethod
    def copy(self, source: StrOrPath, target: StrOrPath, *options: Any) -> None:
        ...

    @abc.abstractmethod
    def move(self, source: StrOrPath, target: StrOrPath, *options: Any) -> None:
        ...

    # ----- conveniences -----
    def read_bytes(self, path: StrOrPath) -> bytes:
        with self.open(path, "rb") as f:
            return f.read()

    def write_bytes(self, path: StrOrPath, data: bytes) -> None:
        with self.open(path, "wb") as f:
            f.write(data)

    def read_text(self, path: StrOrPath, encoding: str = "utf-8") -> str:
        return self.read_bytes(path).decode(encoding)

    def write_text(self, path: StrOrPath, text: str, encoding: str = "utf-8") -> None:
        self.write_bytes(path, text.encode(encoding))

    def exists(self, path: StrOrPath, follow_links: bool = True) -> bool:
        try:
            self.read_attributes(path, follow_links)
            return True
        except NoSuchFileError:
            return False

    def is_dir(self, path: StrOrPath) -> bool:
        try:
            return self.read_attributes(path).is_directory
        except NoSuchFileError:
            return False

    def is_file(self, path: StrOrPath) -> bool:
        try:
            return self.read_attributes(path).is_regular_file
        except NoSuchFileError:
            return False

    def ls(self, path: StrOrPath = "") -> List[str]:
        return [child.name for child in self.iterdir(path)]

    def mkdirs(self, path: StrOrPath, exist_ok: bool = True) -> None:
        """Create a directory and any missing parents."""
        target = self.get_path(str(path)).normalize()
        missing = []
        current: Optional["SFTPPath"] = target
        while current is not None and current.parts and not self.exists(current):
            missing.append(current)
            current = current.parent
        if not missing:
            if not exist_ok or not self.is_dir(target):
                self.create_directory(target)
            return
        for directory in reversed(missing):
            self.create_directory(directory)

    def rm(self, path: StrOrPath, recursive: bool = False) -> None:
        """Delete a file or directory; with ``recursive`` the directory's contents go first."""
        if recursive and self.read_attributes(path, follow_links=False).is_directory:
            for child in list(self.iterdir(path)):
                self.rm(child, recursive=True)
        self.delete(path)


class FileSystemRegistry:
    """Open filesystems by connection key (``sftp://user@host:port``)."""

    def __init__(self) -> None:
        self._filesystems: Dict[str, "SFTPFS"] = {}
        self._pending: Set[str] = set()
        self._lock = threading.Lock()

    def open(self, uri: str, env: Optional[Dict[str, Any]] = None) -> "SFTPFS":
        from .config import SFTPConfig
        from .sftpfs import SFTPFS

        config = SFTPConfig.from_uri(uri, env)
        with self._lock:
            if config.key in self._filesystems or config.key in self._pending:
                raise FileExistsError(f"A filesystem is already open for {config.key}")
            self._pending.add(config.key)
        try:
            fs = SFTPFS(config)
        except BaseException:
            with self._lock:
                self._pending.discard(config.key)
            raise
        with self._lock:
            self._pending.discard(config.key)
            self._filesystems[config.key] = fs
        logger.info("Opened filesystem %s", config.key)
        return fs

    def get(self, uri: str) -> "SFTPFS":
        from .config import uri_key

        key = uri_key(uri)
        with self._lock:
            fs = self._filesystems.get(key)
        if fs is None:
            raise FileSystemNotFoundError(uri)
        return fs

    def get_path(self, uri: str) -> "SFTPPath":
        fs = self.get(uri)
        return fs.get_path(unquote(urlparse(uri).path) or "/")

    def remove(self, fs: "SFTPFS") -> None:
        with self._lock:
            if self._filesystems.get(fs.config.key) is fs:
                del self._filesystems[fs.config.key]
                logger.info("Closed filesystem %s", fs.config.key)


registry = FileSystemRegistry()


def open_fs(uri: str, **env: Any) -> "SFTPFS":
    """Open and register a filesystem for a URI.

    Examples:
        sftp://user@host
        sftp://user@host:2222/home/user
    """
    scheme = urlparse(uri).scheme
    if not scheme:
        raise ValueError(f"URI is not absolute: {uri}")
    if scheme.lower() == "sftp":
        return registry.open(uri, env)
    raise ValueError(f"Unsupported URI scheme: {scheme!r}")


def get_fs(uri: str) -> "SFTPFS":
    return registry.get(uri)


def get_path(uri: str) -> "SFTPPath":
    return registry.get_path(uri)
