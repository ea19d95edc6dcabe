
from __future__ import annotations

import logging
import stat
from typing import TYPE_CHECKING, List, Set, Tuple

from .errors import ErrorTranslator, RemoteError, TooManyLinksError
from .path import ROOT, SEPARATOR, SFTPPath, split_path

if TYPE_CHECKING:
    from .session import RemoteSession

logger = logging.getLogger(__name__)

# same bound as SYMLOOP_MAX on Linux
MAX_LINK_HOPS = 40


class SymlinkResolver:
    """Resolves paths to their real path by walking them one component at a time.

    Each accumulated prefix is lstat-ed; a symbolic link is replaced by its target
    (relative targets are anchored at the link's parent) and the walk continues. A
    walk that reaches the same link with the same remainder twice is a cycle, and so
    is one that follows more than ``MAX_LINK_HOPS`` links.
    """

    def __init__(self, translator: ErrorTranslator) -> None:
        self.translator = translator

    def to_real_path(self, session: "RemoteSession", path: SFTPPath, follow_links: bool = True) -> SFTPPath:
        start = path.to_absolute().normalize()
        remaining: List[str] = list(start.parts)
        resolved: List[str] = []
        seen: Set[Tuple[str, Tuple[str, ...]]] = set()
        substituted = False
        hops = 0

        while remaining:
            name = remaining.pop(0)
            if name == ".":
                continue
            if name == "..":
                if resolved:
                    resolved.pop()
                continue

            candidate = ROOT + SEPARATOR.join(resolved + [name])
            try:
                attrs = session.lstat(candidate)
            except RemoteError as exc:
                # report the caller's own spelling unless a link took us elsewhere
                missing = str(path) if not substituted and candidate == start.path else candidate
                raise self.translator.get_file(missing, exc) from exc

            is_link = stat.S_ISLNK(attrs.st_mode or 0)
            if is_link and (follow_links or remaining):
                state = (candidate, tuple(remaining))
                if state in seen:
                    raise TooManyLinksError(str(path), reason=f"symbolic link cycle at {candidate}")
                seen.add(state)
                hops += 1
                if hops > MAX_LINK_HOPS:
                    raise TooManyLinksError(str(path), reason=f"more than {MAX_LINK_HOPS} symbolic links")
                target = self._read_link(session, candidate)
                logger.debug("Resolved link %s -> %s", candidate, target)
                if target.startswith(SEPARATOR):
                    resolved = []
                remaining = split_path(target) + remaining
                substituted = True
            else:
                resolved.append(name)

        return SFTPPath(path.fs, ROOT + SEPARATOR.join(resolved))

    def _read_link(self, session: "RemoteSession", link: str) -> str:
        try:
            return session.readlink(link)
        except RemoteError as exc:
            raise self.translator.read_link(link, exc) from exc


class EquivalenceChecker:
    """Decides whether two paths, possibly on different connections, are the same remote file.

    SFTP reports no inode, so the identity of a file is its server plus its real path.
    """

    def __init__(self, resolver: SymlinkResolver) -> None:
        self.resolver = resolver

    @staticmethod
    def lexically_same(first: SFTPPath, second: SFTPPath) -> bool:
        return (
            first.fs.connection_id == second.fs.connection_id
            and first.absolute_key() == second.absolute_key()
        )

    def is_same_file(
        self,
        first_session: "RemoteSession",
        first: SFTPPath,
        second_session: "RemoteSession",
        second: SFTPPath,
    ) -> bool:
        if self.lexically_same(first, second):
            return True
        # left operand first, so its failure is the one reported
        return self.identity(first_session, first) == self.identity(second_session, second)

    def identity(self, session: "RemoteSession", path: SFTPPath) -> Tuple[Tuple[str, int], str]:
        """The server plus the real path of ``path``, following every link."""
        real = self.resolver.to_real_path(session, path, follow_links=True)
        return path.fs.server_identity, real.path
