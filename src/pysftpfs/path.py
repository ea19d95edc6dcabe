
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple
from urllib.parse import quote, unquote, urlparse

from .errors import InvalidPathError

if TYPE_CHECKING:
    from .sftpfs import SFTPFS

SEPARATOR = "/"
ROOT = "/"


def check_path(path: str) -> str:
    if not isinstance(path, str):
        raise TypeError(f"path must be a str, not {type(path).__name__}")
    if "\0" in path:
        raise InvalidPathError(path, "path contains a null character")
    return path


def split_path(path: str) -> List[str]:
    """Split on the separator, dropping the empty segments of repeated separators."""
    return [segment for segment in path.split(SEPARATOR) if segment]


def clean_path(path: str) -> str:
    """Collapse repeated separators and drop a trailing one; keeps ``.`` and ``..``."""
    check_path(path)
    joined = SEPARATOR.join(split_path(path))
    return SEPARATOR + joined if path.startswith(SEPARATOR) else joined


def normalize_path(path: str) -> str:
    """Lexically remove ``.`` and ``..`` segments. Symbolic links are not consulted."""
    check_path(path)
    absolute = path.startswith(SEPARATOR)
    segments: List[str] = []
    for segment in split_path(path):
        if segment == ".":
            continue
        if segment == "..":
            if segments and segments[-1] != "..":
                segments.pop()
            elif not absolute:
                segments.append(segment)
            continue
        segments.append(segment)
    joined = SEPARATOR.join(segments)
    return SEPARATOR + joined if absolute else joined


def resolve_against_home(path: str, home: str) -> str:
    """Anchor a relative path at ``home``; absolute paths are returned untouched."""
    path = clean_path(path)
    if path.startswith(SEPARATOR):
        return path
    home = clean_path(home)
    if not path:
        return home
    return home + path if home == ROOT else f"{home}{SEPARATOR}{path}"


def join_path(base: str, *others: str) -> str:
    result = base
    for other in others:
        check_path(other)
        if other.startswith(SEPARATOR) or not result:
            result = other
        elif other:
            result = f"{result}{SEPARATOR}{other}"
    return clean_path(result)


class SFTPPath:
    """An immutable path on one SFTP connection.

    The string form keeps ``.``/``..`` segments exactly as given; only repeated and
    trailing separators are dropped. Two paths are equal when they belong to the same
    connection and their normalized absolute forms match.
    """

    __slots__ = ("_fs", "_path")

    def __init__(self, fs: "SFTPFS", path: str) -> None:
        self._fs = fs
        self._path = clean_path(path)

    @classmethod
    def from_parts(cls, fs: "SFTPFS", parts: Iterable[str], absolute: bool = True) -> "SFTPPath":
        segments = list(parts)
        for segment in segments:
            check_path(segment)
            if not segment:
                raise InvalidPathError(SEPARATOR.join(segments), "empty path segment")
            if SEPARATOR in segment:
                raise InvalidPathError(segment, "path segment contains a separator")
        joined = SEPARATOR.join(segments)
        return cls(fs, SEPARATOR + joined if absolute else joined)

    @classmethod
    def from_uri(cls, fs: "SFTPFS", uri: str) -> "SFTPPath":
        parsed = urlparse(uri)
        if parsed.query or parsed.fragment:
            raise InvalidPathError(uri, "URI must not have a query or fragment")
        return cls(fs, unquote(parsed.path) or ROOT)

    # ----- identity -----
    @property
    def fs(self) -> "SFTPFS":
        return self._fs

    @property
    def path(self) -> str:
        return self._path

    @property
    def parts(self) -> Tuple[str, ...]:
        return tuple(split_path(self._path))

    @property
    def is_absolute(self) -> bool:
        return self._path.startswith(SEPARATOR)

    @property
    def is_root(self) -> bool:
        return self._path == ROOT

    @property
    def name(self) -> str:
        parts = self.parts
        return parts[-1] if parts else ""

    @property
    def parent(self) -> Optional["SFTPPath"]:
        parts = self.parts
        if not parts:
            return None
        if len(parts) == 1:
            return SFTPPath(self._fs, ROOT) if self.is_absolute else None
        return SFTPPath.from_parts(self._fs, parts[:-1], self.is_absolute)

    # ----- derivation -----
    def joinpath(self, *others: str) -> "SFTPPath":
        return SFTPPath(self._fs, join_path(self._path, *(str(o) for o in others)))

    def __truediv__(self, other: str) -> "SFTPPath":
        return self.joinpath(other)

    def normalize(self) -> "SFTPPath":
        return SFTPPath(self._fs, normalize_path(self._path))

    def to_absolute(self) -> "SFTPPath":
        if self.is_absolute:
            return self
        return SFTPPath(self._fs, resolve_against_home(self._path, self._fs.home))

    def to_uri(self) -> str:
        return f"sftp://{self._fs.authority}{quote(self.to_absolute().path)}"

    def to_real_path(self, follow_links: bool = True) -> "SFTPPath":
        return self._fs.to_real_path(self, follow_links=follow_links)

    def absolute_key(self) -> str:
        """Normalized absolute form used for equality and the same-file fast path."""
        return normalize_path(resolve_against_home(self._path, self._fs.home))

    # ----- dunder -----
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SFTPPath):
            return NotImplemented
        return (
            self._fs.connection_id == other._fs.connection_id
            and self.absolute_key() == other.absolute_key()
        )

    def __hash__(self) -> int:
        return hash((self._fs.connection_id, self.absolute_key()))

    def __str__(self) -> str:
        return self._path

    def __repr__(self) -> str:
        return f"SFTPPath({self._path!r})"
