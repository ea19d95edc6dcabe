"""In-memory SFTP server for tests.

``FakeServer`` holds a POSIX-like tree; ``FakeSFTPClient`` exposes the slice of the
``paramiko.SFTPClient`` surface the sessions use and fails the way paramiko does:
``IOError(errno.ENOENT, ...)``, ``IOError(errno.EACCES, ...)`` or ``IOError("Failure")``.
"""

import errno
import stat
import time
from typing import Dict, List, Optional, Tuple

import paramiko
import pytest

from pysftpfs import SFTPFS
from pysftpfs.session import RemoteSession

MAX_LINK_DEPTH = 40


def _failure() -> IOError:
    return IOError("Failure")


def _missing(path: str) -> IOError:
    return IOError(errno.ENOENT, "No such file", path)


def _split(path: str) -> List[str]:
    return [p for p in path.split("/") if p]


class Node:
    def __init__(self, kind: int, perm: int, data: bytes = b"", target: Optional[str] = None) -> None:
        self.kind = kind
        self.perm = perm
        self.data = bytearray(data)
        self.target = target
        self.uid = 1000
        self.gid = 1000
        self.mtime = int(time.time())
        self.atime = self.mtime

    def attributes(self, filename: Optional[str] = None) -> paramiko.SFTPAttributes:
        attrs = paramiko.SFTPAttributes()
        attrs.st_size = len(self.target or "") if self.kind == stat.S_IFLNK else len(self.data)
        attrs.st_mode = self.kind | self.perm
        attrs.st_uid = self.uid
        attrs.st_gid = self.gid
        attrs.st_mtime = self.mtime
        attrs.st_atime = self.atime
        if filename is not None:
            attrs.filename = filename
        return attrs


class FakeServer:
    def __init__(self, cwd: str = "/home") -> None:
        self.nodes: Dict[str, Node] = {"/": Node(stat.S_IFDIR, 0o755)}
        self.cwd = cwd
        self.denied: set = set()
        self.offline = False
        self.calls: List[Tuple[str, str]] = []
        self.clients: List["FakeSFTPClient"] = []
        self.add_dir(cwd)

    # ----- setup helpers -----
    def add_dir(self, path: str, perm: int = 0o755) -> None:
        current = ""
        for part in _split(path):
            current = f"{current}/{part}"
            self.nodes.setdefault(current, Node(stat.S_IFDIR, perm))

    def add_file(self, path: str, data: bytes = b"", perm: int = 0o644) -> None:
        self.add_dir(self._parent(path))
        self.nodes[path] = Node(stat.S_IFREG, perm, data)

    def add_link(self, path: str, target: str) -> None:
        self.add_dir(self._parent(path))
        self.nodes[path] = Node(stat.S_IFLNK, 0o777, target=target)

    def read(self, path: str) -> bytes:
        return bytes(self.nodes[path].data)

    def exists(self, path: str) -> bool:
        return path in self.nodes

    def is_dir(self, path: str) -> bool:
        return path in self.nodes and self.nodes[path].kind == stat.S_IFDIR

    def is_link(self, path: str) -> bool:
        return path in self.nodes and self.nodes[path].kind == stat.S_IFLNK

    def children(self, path: str) -> List[str]:
        prefix = path.rstrip("/") + "/"
        return sorted(
            p[len(prefix):] for p in self.nodes if p.startswith(prefix) and "/" not in p[len(prefix):] and p != "/"
        )

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    # ----- resolution -----
    @staticmethod
    def _parent(path: str) -> str:
        parent = path.rsplit("/", 1)[0]
        return parent or "/"

    def absolute(self, path: str) -> str:
        if not path.startswith("/"):
            path = f"{self.cwd}/{path}"
        parts: List[str] = []
        for part in _split(path):
            if part == ".":
                continue
            if part == "..":
                if parts:
                    parts.pop()
                continue
            parts.append(part)
        return "/" + "/".join(parts)

    def resolve(self, path: str, follow_final: bool = True, depth: int = 0) -> str:
        """Physical path of ``path``, following links; the final node need not exist."""
        if depth > MAX_LINK_DEPTH:
            raise _failure()
        resolved = "/"
        parts = _split(self.absolute(path))
        for index, part in enumerate(parts):
            candidate = f"{resolved.rstrip('/')}/{part}"
            node = self.nodes.get(candidate)
            final = index == len(parts) - 1
            if node is not None and node.kind == stat.S_IFLNK and (follow_final or not final):
                target = node.target if node.target.startswith("/") else f"{resolved.rstrip('/')}/{node.target}"
                resolved = self.resolve(target, True, depth + 1)
            else:
                if node is None and not final:
                    raise _missing(path)
                resolved = candidate
        return resolved

    def check(self, path: str) -> None:
        if self.offline:
            raise paramiko.SSHException("Server connection dropped")
        if self.absolute(path) in self.denied:
            raise IOError(errno.EACCES, "Permission denied", path)

    def existing(self, path: str, follow: bool = True) -> Tuple[str, Node]:
        physical = self.resolve(path, follow)
        node = self.nodes.get(physical)
        if node is None:
            raise _missing(path)
        return physical, node

    def creatable(self, path: str) -> str:
        physical = self.resolve(path, False)
        parent = self.nodes.get(self._parent(physical))
        if parent is None or parent.kind != stat.S_IFDIR:
            raise _missing(path)
        if physical in self.nodes:
            raise _failure()
        return physical


class FakeChannel:
    def __init__(self) -> None:
        self.closed = False


class FakeSFTPFile:
    def __init__(self, node: Node, mode: str) -> None:
        self.node = node
        self.mode = mode
        self.pos = 0
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        data = self.node.data
        end = len(data) if size is None or size < 0 else self.pos + size
        chunk = bytes(data[self.pos:end])
        self.pos += len(chunk)
        return chunk

    def write(self, data: bytes) -> None:
        if "r" in self.mode and "+" not in self.mode:
            raise IOError("File not open for writing")
        if "a" in self.mode:
            self.pos = len(self.node.data)
        self.node.data[self.pos:self.pos + len(data)] = data
        self.pos += len(data)
        self.node.mtime = int(time.time())

    def seek(self, offset: int, whence: int = 0) -> None:
        if whence == 2:
            self.pos = len(self.node.data) + offset
        elif whence == 1:
            self.pos += offset
        else:
            self.pos = offset

    def tell(self) -> int:
        return self.pos

    def truncate(self, size: int) -> None:
        del self.node.data[size:]

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeSFTPFile":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class FakeSFTPClient:
    def __init__(self, server: FakeServer) -> None:
        self.server = server
        self.channel = FakeChannel()
        server.clients.append(self)

    def _call(self, method: str, path: str) -> None:
        self.server.calls.append((method, path))
        self.server.check(path)

    def get_channel(self) -> FakeChannel:
        return self.channel

    def close(self) -> None:
        self.channel.closed = True

    def stat(self, path: str) -> paramiko.SFTPAttributes:
        self._call("stat", path)
        return self.server.existing(path)[1].attributes()

    def lstat(self, path: str) -> paramiko.SFTPAttributes:
        self._call("lstat", path)
        return self.server.existing(path, follow=False)[1].attributes()

    def readlink(self, path: str) -> Optional[str]:
        self._call("readlink", path)
        node = self.server.existing(path, follow=False)[1]
        if node.kind != stat.S_IFLNK:
            raise _failure()
        return node.target

    def normalize(self, path: str) -> str:
        self._call("normalize", path)
        return self.server.absolute(path)

    def listdir_attr(self, path: str = ".") -> List[paramiko.SFTPAttributes]:
        self._call("listdir_attr", path)
        physical, node = self.server.existing(path)
        if node.kind != stat.S_IFDIR:
            raise _failure()
        prefix = physical.rstrip("/")
        return [self.server.nodes[f"{prefix}/{name}"].attributes(name) for name in self.server.children(physical)]

    def utime(self, path: str, times: Tuple[int, int]) -> None:
        self._call("utime", path)
        node = self.server.existing(path)[1]
        node.atime, node.mtime = times

    def chown(self, path: str, uid: int, gid: int) -> None:
        self._call("chown", path)
        node = self.server.existing(path)[1]
        node.uid, node.gid = uid, gid

    def chmod(self, path: str, mode: int) -> None:
        self._call("chmod", path)
        self.server.existing(path)[1].perm = stat.S_IMODE(mode)

    def mkdir(self, path: str, mode: int = 0o777) -> None:
        self._call("mkdir", path)
        physical = self.server.creatable(path)
        self.server.nodes[physical] = Node(stat.S_IFDIR, 0o755)

    def remove(self, path: str) -> None:
        self._call("remove", path)
        physical, node = self.server.existing(path, follow=False)
        if node.kind == stat.S_IFDIR:
            raise _failure()
        del self.server.nodes[physical]

    def rmdir(self, path: str) -> None:
        self._call("rmdir", path)
        physical, node = self.server.existing(path, follow=False)
        if node.kind != stat.S_IFDIR or physical == "/" or self.server.children(physical):
            raise _failure()
        del self.server.nodes[physical]

    def rename(self, oldpath: str, newpath: str) -> None:
        self._call("rename", oldpath)
        source, _ = self.server.existing(oldpath, follow=False)
        target = self.server.creatable(newpath)
        if target == source or target.startswith(source + "/"):
            raise _failure()
        prefix = source + "/"
        for path in sorted(p for p in self.server.nodes if p == source or p.startswith(prefix)):
            self.server.nodes[target + path[len(source):]] = self.server.nodes.pop(path)

    def symlink(self, source: str, dest: str) -> None:
        self._call("symlink", dest)
        physical = self.server.creatable(dest)
        self.server.nodes[physical] = Node(stat.S_IFLNK, 0o777, target=source)

    def open(self, filename: str, mode: str = "r", bufsize: int = -1) -> FakeSFTPFile:
        self._call("open", filename)
        if "x" in mode:
            physical = self.server.creatable(filename)
            node = self.server.nodes[physical] = Node(stat.S_IFREG, 0o644)
        elif "w" in mode or "a" in mode:
            try:
                node = self.server.existing(filename)[1]
            except IOError:
                physical = self.server.creatable(filename)
                node = self.server.nodes[physical] = Node(stat.S_IFREG, 0o644)
            if node.kind == stat.S_IFDIR:
                raise _failure()
            if "w" in mode:
                del node.data[:]
        else:
            node = self.server.existing(filename)[1]
            if node.kind == stat.S_IFDIR:
                raise _failure()
        return FakeSFTPFile(node, mode)


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def session_factory(server):
    def factory(config):
        return RemoteSession(FakeSFTPClient(server))

    return factory


@pytest.fixture
def make_fs(session_factory):
    created = []

    def factory(uri="sftp://user@example.com", **env):
        env.setdefault("session_factory", session_factory)
        fs = SFTPFS.from_uri(uri, **env)
        created.append(fs)
        return fs

    yield factory
    for fs in created:
        fs.close()


@pytest.fixture
def fs(make_fs):
    return make_fs()


@pytest.fixture
def fs2(make_fs):
    """A second connection to the same server."""
    return make_fs("sftp://user@example.com")


@pytest.fixture
def bare_server():
    """A server whose tree holds nothing but the root directory."""
    return FakeServer(cwd="/")


@pytest.fixture
def bare_fs(bare_server):
    fs = SFTPFS.from_uri(
        "sftp://user@bare.example.com",
        session_factory=lambda config: RemoteSession(FakeSFTPClient(bare_server)),
    )
    yield fs
    fs.close()
