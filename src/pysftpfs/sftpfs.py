
from __future__ import annotations

import contextlib
import enum
import functools
import logging
import stat
import sys
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union

from paramiko.sftp import SFTP_NO_SUCH_FILE

from .attributes import AttributeEngine, RemoteFileAttributes
from .config import SFTPConfig
from .core import AbstractFS, StrOrPath, registry
from .errors import (
    AccessDeniedError,
    FileAlreadyExistsError,
    IOFailureError,
    IsDirectoryError,
    NoSuchFileError,
    NotDirectoryError,
    RemoteError,
    UnsupportedOptionError,
)
from .path import SFTPPath, join_path
from .pool import ChannelPool
from .resolver import EquivalenceChecker, SymlinkResolver
from .session import RemoteSession, remote_errors
from .transfer import CopyMoveEngine, CopyOption

logger = logging.getLogger(__name__)


class OpenOption(enum.Enum):
    READ = "read"
    WRITE = "write"
    APPEND = "append"
    CREATE = "create"
    CREATE_NEW = "create-new"
    TRUNCATE_EXISTING = "truncate-existing"
    DELETE_ON_CLOSE = "delete-on-close"


class AccessMode(enum.Enum):
    READ = stat.S_IRUSR
    WRITE = stat.S_IWUSR
    EXECUTE = stat.S_IXUSR


_MODES: Dict[str, FrozenSet[OpenOption]] = {
    "r": frozenset({OpenOption.READ}),
    "w": frozenset({OpenOption.WRITE, OpenOption.CREATE, OpenOption.TRUNCATE_EXISTING}),
    "a": frozenset({OpenOption.WRITE, OpenOption.CREATE, OpenOption.APPEND}),
    "x": frozenset({OpenOption.WRITE, OpenOption.CREATE_NEW}),
    "r+": frozenset({OpenOption.WRITE}),
}


class RemoteFile:
    """A remote file handle that owns a pooled channel until it is closed."""

    def __init__(
        self,
        handle: Any,
        path: str,
        release: contextlib.ExitStack,
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        self._handle = handle
        self.path = path
        self._release = release
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._release:
            try:
                with remote_errors():
                    self._handle.close()
            except RemoteError as exc:
                raise IOFailureError(self.path, reason=f"close failed: {exc.message}", status=exc.status) from exc
            if self._on_close is not None:
                self._on_close()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._handle, name)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._handle)

    def __enter__(self) -> "RemoteFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class SFTPFS(AbstractFS):
    """SFTP-backed filesystem.

    Every operation borrows one channel from the pool for its duration. Relative
    paths resolve against ``home``: the configured default directory, or the
    server's working directory at connection time.
    """

    def __init__(self, config: SFTPConfig, pool: Optional[ChannelPool] = None) -> None:
        self.config = config
        self.connection_id = uuid.uuid4().hex
        self.pool = pool or ChannelPool(config.open_session, config.pool_size, config.timeout)
        self.translator = config.error_translator
        self.attributes = AttributeEngine(self.translator)
        self.resolver = SymlinkResolver(self.translator)
        self.equivalence = EquivalenceChecker(self.resolver)
        self.transfers = CopyMoveEngine(self.translator, self.attributes, self.equivalence)
        self._closed = False
        try:
            self.home = config.default_dir or self._working_directory()
        except Exception:
            self.pool.close()
            raise

    @classmethod
    def from_uri(cls, uri: str, **env: Any) -> "SFTPFS":
        """Connect without registering; see :func:`pysftpfs.open_fs` for the registered form."""
        return cls(SFTPConfig.from_uri(uri, env))

    def _working_directory(self) -> str:
        with self.pool.acquire() as session:
            try:
                return session.normalize(".")
            except RemoteError as exc:
                raise IOFailureError(".", reason=f"could not query the working directory: {exc.message}", status=exc.status) from exc

    # ----- identity -----
    @property
    def authority(self) -> str:
        return self.config.authority

    @property
    def server_identity(self) -> Tuple[str, int]:
        return self.config.server_identity

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return f"SFTPFS({self.authority!r}, home={self.home!r})"

    # ----- paths -----
    def get_path(self, first: str, *more: str) -> SFTPPath:
        return SFTPPath(self, join_path(first, *more))

    def _path(self, path: StrOrPath) -> SFTPPath:
        if isinstance(path, SFTPPath):
            if path.fs is not self:
                raise ValueError(f"{path!r} belongs to another filesystem")
            return path
        return SFTPPath(self, path)

    def _any_path(self, path: StrOrPath) -> SFTPPath:
        # copy/move targets may live on another connection
        if isinstance(path, SFTPPath):
            return path
        return SFTPPath(self, path)

    def to_absolute_path(self, path: StrOrPath) -> SFTPPath:
        return self._path(path).to_absolute()

    def to_uri(self, path: StrOrPath) -> str:
        return self._path(path).to_uri()

    def to_real_path(self, path: StrOrPath, follow_links: bool = True) -> SFTPPath:
        path = self._path(path)
        with self._session() as session:
            return self.resolver.to_real_path(session, path, follow_links)

    # ----- sessions -----
    @contextlib.contextmanager
    def _session(self) -> Iterator[RemoteSession]:
        if self._closed:
            raise IOFailureError(None, reason="filesystem is closed")
        with self.pool.acquire() as session:
            yield session

    @contextlib.contextmanager
    def _sessions(self, first: SFTPPath, second: SFTPPath) -> Iterator[Tuple[RemoteSession, RemoteSession]]:
        if first.fs.connection_id == second.fs.connection_id:
            with first.fs._session() as session:
                yield session, session
            return
        # both pools are taken in connection_id order, whichever side is the source
        swapped = second.fs.connection_id < first.fs.connection_id
        outer, inner = (second, first) if swapped else (first, second)
        with outer.fs._session() as outer_session, inner.fs._session() as inner_session:
            if swapped:
                yield inner_session, outer_session
            else:
                yield outer_session, inner_session

    # ----- content -----
    def open(self, path: StrOrPath, mode: str = "rb", *, delete_on_close: bool = False) -> RemoteFile:
        """Open a remote file in binary mode (``r``, ``w``, ``a``, ``x`` or ``r+``, with ``b``)."""
        if "b" not in mode:
            raise ValueError(f"only binary modes are supported, got {mode!r}")
        options = _MODES.get(mode.replace("b", ""))
        if options is None:
            raise ValueError(f"invalid mode: {mode!r}")
        if delete_on_close:
            options = options | {OpenOption.DELETE_ON_CLOSE}
        return self.new_byte_channel(path, options)

    def new_byte_channel(self, path: StrOrPath, options: Iterable[OpenOption] = (OpenOption.READ,)) -> RemoteFile:
        path = self._path(path)
        options = frozenset(options)
        writing = OpenOption.WRITE in options or OpenOption.APPEND in options
        if OpenOption.READ in options and OpenOption.APPEND in options:
            raise UnsupportedOptionError(OpenOption.APPEND)
        remote = path.to_absolute().path
        with contextlib.ExitStack() as stack:
            session = stack.enter_context(self._session())
            if writing:
                handle = self._open_write(session, path, remote, options)
            else:
                try:
                    handle = session.open_read(remote)
                except RemoteError as exc:
                    raise self.translator.new_input_stream(str(path), exc) from exc
            on_close = None
            if OpenOption.DELETE_ON_CLOSE in options:
                on_close = functools.partial(self._delete_after_close, session, path)
            logger.debug("Opened %s (%s)", path, ", ".join(sorted(o.value for o in options)))
            return RemoteFile(handle, str(path), stack.pop_all(), on_close)

    def _open_write(self, session: RemoteSession, path: SFTPPath, remote: str, options: FrozenSet[OpenOption]) -> Any:
        create_new = OpenOption.CREATE_NEW in options
        create = create_new or OpenOption.CREATE in options
        try:
            attrs = RemoteFileAttributes.from_sftp(session.stat(remote))
        except RemoteError as exc:
            if exc.status != SFTP_NO_SUCH_FILE:
                raise self.translator.new_output_stream(str(path), exc) from exc
            attrs = None
        if attrs is not None:
            if attrs.is_directory:
                raise IsDirectoryError(str(path))
            if create_new:
                raise FileAlreadyExistsError(str(path))
        elif not create:
            raise NoSuchFileError(str(path))
        append = OpenOption.APPEND in options
        try:
            return session.open_write(
                remote,
                append=append,
                truncate=OpenOption.TRUNCATE_EXISTING in options,
                create=create and attrs is None,
                exclusive=create_new,
            )
        except RemoteError as exc:
            raise self.translator.new_output_stream(str(path), exc) from exc

    def _delete_after_close(self, session: RemoteSession, path: SFTPPath) -> None:
        try:
            session.remove(path.to_absolute().path)
        except RemoteError as exc:
            raise self.translator.delete(str(path), exc, False) from exc

    # ----- directories -----
    def iterdir(self, path: StrOrPath = "", filter: Optional[Callable[[SFTPPath], bool]] = None) -> Iterator[SFTPPath]:
        path = self._path(path)
        with self._session() as session:
            if not self.attributes.read_attributes(session, path).is_directory:
                raise NotDirectoryError(str(path))
            try:
                entries = session.listdir_attr(path.to_absolute().path)
            except RemoteError as exc:
                raise self.translator.list_directory(str(path), exc) from exc
        children: List[SFTPPath] = []
        for entry in entries:
            if entry.filename in (".", ".."):
                continue
            child = path / entry.filename
            if filter is None or filter(child):
                children.append(child)
        return iter(children)

    def create_directory(self, path: StrOrPath) -> None:
        path = self._path(path)
        with self._session() as session:
            if self._lexists(session, path):
                raise FileAlreadyExistsError(str(path))
            try:
                session.mkdir(path.to_absolute().path)
            except RemoteError as exc:
                raise self.translator.create_directory(str(path), exc) from exc

    def delete(self, path: StrOrPath) -> None:
        path = self._path(path)
        remote = path.to_absolute().path
        with self._session() as session:
            is_directory = self.attributes.read_attributes(session, path, follow_links=False).is_directory
            try:
                if is_directory:
                    session.rmdir(remote)
                else:
                    session.remove(remote)
            except RemoteError as exc:
                raise self.translator.delete(str(path), exc, is_directory) from exc

    def _lexists(self, session: RemoteSession, path: SFTPPath) -> bool:
        try:
            self.attributes.read_attributes(session, path, follow_links=False)
            return True
        except NoSuchFileError:
            return False

    # ----- links -----
    def read_symbolic_link(self, link: StrOrPath) -> SFTPPath:
        link = self._path(link)
        with self._session() as session:
            try:
                return SFTPPath(self, session.readlink(link.to_absolute().path))
            except RemoteError as exc:
                raise self.translator.read_link(str(link), exc) from exc

    def create_symbolic_link(self, link: StrOrPath, target: StrOrPath) -> None:
        """Create ``link`` pointing at ``target``; the target is stored as given."""
        link = self._path(link)
        with self._session() as session:
            if self._lexists(session, link):
                raise FileAlreadyExistsError(str(link))
            try:
                session.symlink(str(target), link.to_absolute().path)
            except RemoteError as exc:
                raise self.translator.create_link(str(link), exc) from exc

    # ----- copy / move -----
    def copy(self, source: StrOrPath, target: StrOrPath, *options: CopyOption) -> None:
        source, target = self._path(source), self._any_path(target)
        with self._sessions(source, target) as (source_session, target_session):
            self.transfers.copy(source_session, source, target_session, target, options)

    def move(self, source: StrOrPath, target: StrOrPath, *options: CopyOption) -> None:
        source, target = self._path(source), self._any_path(target)
        with self._sessions(source, target) as (source_session, target_session):
            self.transfers.move(source_session, source, target_session, target, options)

    def is_same_file(self, first: StrOrPath, second: StrOrPath) -> bool:
        first, second = self._path(first), self._any_path(second)
        if EquivalenceChecker.lexically_same(first, second):
            return True
        with self._sessions(first, second) as (first_session, second_session):
            return self.equivalence.is_same_file(first_session, first, second_session, second)

    # ----- access -----
    def is_hidden(self, path: StrOrPath) -> bool:
        path = self._path(path)
        with self._session() as session:
            self.attributes.read_attributes(session, path)
        return path.name.startswith(".")

    def check_access(self, path: StrOrPath, *modes: AccessMode) -> None:
        """Raise :class:`AccessDeniedError` unless the owner permission bits allow every mode."""
        path = self._path(path)
        attrs = self.read_attributes(path)
        for mode in modes:
            if not attrs.permissions & mode.value:
                raise AccessDeniedError(str(path), reason=f"{mode.name.lower()} access denied")

    # ----- attributes -----
    def read_attributes(self, path: StrOrPath, follow_links: bool = True) -> RemoteFileAttributes:
        path = self._path(path)
        with self._session() as session:
            return self.attributes.read_attributes(session, path, follow_links)

    def read_attribute_map(self, path: StrOrPath, expression: str, follow_links: bool = True) -> Dict[str, Any]:
        path = self._path(path)
        with self._session() as session:
            return self.attributes.read_attribute_map(session, path, expression, follow_links)

    def set_attribute(self, path: StrOrPath, name: str, value: Any) -> None:
        path = self._path(path)
        with self._session() as session:
            self.attributes.set_attribute(session, path, name, value)

    def set_last_modified_time(self, path: StrOrPath, when: datetime) -> None:
        path = self._path(path)
        with self._session() as session:
            self.attributes.set_last_modified_time(session, path, when)

    def set_owner(self, path: StrOrPath, owner: Union[int, str]) -> None:
        path = self._path(path)
        with self._session() as session:
            self.attributes.set_owner(session, path, owner)

    def set_group(self, path: StrOrPath, group: Union[int, str]) -> None:
        path = self._path(path)
        with self._session() as session:
            self.attributes.set_group(session, path, group)

    def set_permissions(self, path: StrOrPath, permissions: int) -> None:
        path = self._path(path)
        with self._session() as session:
            self.attributes.set_permissions(session, path, permissions)

    # ----- space -----
    # SFTP v3 has no statvfs; report "unknown" as the largest size.
    def get_total_space(self, path: StrOrPath = "") -> int:
        self._path(path)
        return sys.maxsize

    def get_usable_space(self, path: StrOrPath = "") -> int:
        self._path(path)
        return sys.maxsize

    def get_unallocated_space(self, path: StrOrPath = "") -> int:
        self._path(path)
        return sys.maxsize

    # ----- lifecycle -----
    def keep_alive(self) -> None:
        try:
            self.pool.keep_alive()
        except RemoteError as exc:
            raise IOFailureError(None, reason=f"keep-alive failed: {exc.message}", status=exc.status) from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.pool.close()
        finally:
            registry.remove(self)
        logger.info("Closed connection to %s", self.authority)

    def __enter__(self) -> "SFTPFS":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
