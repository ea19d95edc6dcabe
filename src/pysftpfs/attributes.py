
from __future__ import annotations

import enum
import logging
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from operator import attrgetter
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple, Union

import paramiko

from .errors import (
    AttributeTypeError,
    ErrorTranslator,
    RemoteError,
    UnsupportedAttributeError,
    UnsupportedViewError,
)

if TYPE_CHECKING:
    from .path import SFTPPath
    from .session import RemoteSession

logger = logging.getLogger(__name__)

DEFAULT_VIEW = "basic"
WILDCARD = "*"


class FileKind(enum.Enum):
    REGULAR = "regular"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    OTHER = "other"

    @classmethod
    def from_mode(cls, mode: int) -> "FileKind":
        if stat.S_ISREG(mode):
            return cls.REGULAR
        if stat.S_ISDIR(mode):
            return cls.DIRECTORY
        if stat.S_ISLNK(mode):
            return cls.SYMLINK
        return cls.OTHER


def _to_time(seconds: Optional[float]) -> datetime:
    # SFTP v3 times have whole-second resolution
    return datetime.fromtimestamp(int(seconds or 0), tz=timezone.utc)


@dataclass(frozen=True)
class RemoteFileAttributes:
    """Snapshot of one stat/lstat reply. Never cached; fetch again for fresh values."""

    size: int
    kind: FileKind
    uid: int
    gid: int
    permissions: int
    last_modified_time: datetime
    last_access_time: datetime
    creation_time: datetime
    link_target: Optional[str] = None

    @classmethod
    def from_sftp(cls, attrs: paramiko.SFTPAttributes, link_target: Optional[str] = None) -> "RemoteFileAttributes":
        mode = attrs.st_mode or 0
        mtime = _to_time(attrs.st_mtime)
        kind = FileKind.from_mode(mode)
        return cls(
            size=max(attrs.st_size or 0, 0),
            kind=kind,
            uid=attrs.st_uid or 0,
            gid=attrs.st_gid or 0,
            permissions=stat.S_IMODE(mode),
            last_modified_time=mtime,
            last_access_time=_to_time(attrs.st_atime),
            # no creation time in SFTP v3
            creation_time=mtime,
            link_target=link_target if kind is FileKind.SYMLINK else None,
        )

    @property
    def is_regular_file(self) -> bool:
        return self.kind is FileKind.REGULAR

    @property
    def is_directory(self) -> bool:
        return self.kind is FileKind.DIRECTORY

    @property
    def is_symbolic_link(self) -> bool:
        return self.kind is FileKind.SYMLINK

    @property
    def is_other(self) -> bool:
        return self.kind is FileKind.OTHER

    @property
    def file_key(self) -> None:
        # SFTP exposes nothing inode-like that is stable across connections
        return None

    @property
    def owner(self) -> int:
        return self.uid

    @property
    def group(self) -> int:
        return self.gid


Accessor = Callable[[RemoteFileAttributes], Any]

_BASIC: Dict[str, Accessor] = {
    "lastModifiedTime": attrgetter("last_modified_time"),
    "lastAccessTime": attrgetter("last_access_time"),
    "creationTime": attrgetter("creation_time"),
    "size": attrgetter("size"),
    "isRegularFile": attrgetter("is_regular_file"),
    "isDirectory": attrgetter("is_directory"),
    "isSymbolicLink": attrgetter("is_symbolic_link"),
    "isOther": attrgetter("is_other"),
    "fileKey": attrgetter("file_key"),
}

VIEWS: Dict[str, Dict[str, Accessor]] = {
    "basic": _BASIC,
    "posix": {
        **_BASIC,
        "owner": attrgetter("owner"),
        "group": attrgetter("group"),
        "permissions": attrgetter("permissions"),
    },
    "owner": {"owner": attrgetter("owner")},
}

SETTABLE: Dict[str, Tuple[str, ...]] = {
    "basic": ("lastModifiedTime",),
    "posix": ("lastModifiedTime", "owner", "group", "permissions"),
    "owner": ("owner",),
}


@dataclass(frozen=True)
class AttributeRequest:
    """A parsed ``[view:]key[,key...]`` expression. ``*`` adds every key of the view."""

    view: str
    keys: Tuple[str, ...]

    @classmethod
    def parse(cls, expression: str) -> "AttributeRequest":
        view, sep, names = expression.partition(":")
        if not sep:
            view, names = DEFAULT_VIEW, expression
        accessors = VIEWS.get(view)
        if accessors is None:
            raise UnsupportedViewError(view)
        keys: Dict[str, None] = {}
        for name in names.split(","):
            if name == WILDCARD:
                keys.update(dict.fromkeys(accessors))
            elif name in accessors:
                keys[name] = None
            else:
                raise UnsupportedAttributeError(name)
        return cls(view, tuple(keys))

    def qualified(self, key: str) -> str:
        return f"{self.view}:{key}"

    def extract(self, attributes: RemoteFileAttributes) -> Dict[str, Any]:
        accessors = VIEWS[self.view]
        return {self.qualified(key): accessors[key](attributes) for key in self.keys}


def parse_attribute_name(name: str) -> Tuple[str, str]:
    view, sep, key = name.partition(":")
    if not sep:
        view, key = DEFAULT_VIEW, name
    if view not in VIEWS:
        raise UnsupportedViewError(view)
    if key not in SETTABLE[view]:
        raise UnsupportedAttributeError(name)
    return view, key


def _as_id(name: str, value: Union[int, str]) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise AttributeTypeError(f"{name} must be a numeric id, not {type(value).__name__}")
    try:
        return int(value)
    except ValueError as exc:
        raise AttributeTypeError(f"{name} must be a numeric id, got {value!r}") from exc


class AttributeEngine:
    """Reads and writes file attributes over a session, addressing them by view and key."""

    def __init__(self, translator: ErrorTranslator) -> None:
        self.translator = translator

    def read_attributes(self, session: "RemoteSession", path: "SFTPPath", follow_links: bool = True) -> RemoteFileAttributes:
        remote = path.to_absolute().path
        try:
            attrs = session.stat(remote) if follow_links else session.lstat(remote)
        except RemoteError as exc:
            raise self.translator.get_file(str(path), exc) from exc
        return RemoteFileAttributes.from_sftp(attrs)

    def read_attribute_map(
        self,
        session: "RemoteSession",
        path: "SFTPPath",
        expression: str,
        follow_links: bool = True,
    ) -> Dict[str, Any]:
        request = AttributeRequest.parse(expression)
        return request.extract(self.read_attributes(session, path, follow_links))

    def set_attribute(self, session: "RemoteSession", path: "SFTPPath", name: str, value: Any) -> None:
        _, key = parse_attribute_name(name)
        if key == "lastModifiedTime":
            self.set_last_modified_time(session, path, value)
        elif key == "owner":
            self.set_owner(session, path, value)
        elif key == "group":
            self.set_group(session, path, value)
        else:
            self.set_permissions(session, path, value)

    def set_last_modified_time(self, session: "RemoteSession", path: "SFTPPath", when: datetime) -> None:
        if not isinstance(when, datetime):
            raise AttributeTypeError(f"lastModifiedTime must be a datetime, not {type(when).__name__}")
        current = self._stat_for_update(session, path)
        self._update(session, path, mtime=int(when.timestamp()), atime=int(current.st_atime or 0))

    def set_owner(self, session: "RemoteSession", path: "SFTPPath", owner: Union[int, str]) -> None:
        uid = _as_id("owner", owner)
        current = self._stat_for_update(session, path)
        self._update(session, path, uid=uid, gid=current.st_gid or 0)

    def set_group(self, session: "RemoteSession", path: "SFTPPath", group: Union[int, str]) -> None:
        gid = _as_id("group", group)
        current = self._stat_for_update(session, path)
        self._update(session, path, uid=current.st_uid or 0, gid=gid)

    def set_permissions(self, session: "RemoteSession", path: "SFTPPath", permissions: int) -> None:
        if isinstance(permissions, bool) or not isinstance(permissions, int):
            raise AttributeTypeError(f"permissions must be an int, not {type(permissions).__name__}")
        self._update(session, path, perm=stat.S_IMODE(permissions))

    def _stat_for_update(self, session: "RemoteSession", path: "SFTPPath") -> paramiko.SFTPAttributes:
        try:
            return session.stat(path.to_absolute().path)
        except RemoteError as exc:
            raise self.translator.set_attributes(str(path), exc) from exc

    def _update(self, session: "RemoteSession", path: "SFTPPath", **changes: int) -> None:
        logger.debug("Setting %s on %s", ", ".join(sorted(changes)), path)
        try:
            session.set_attrs(path.to_absolute().path, **changes)
        except RemoteError as exc:
            raise self.translator.set_attributes(str(path), exc) from exc
