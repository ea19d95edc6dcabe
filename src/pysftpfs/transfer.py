
from __future__ import annotations

import enum
import logging
import shutil
from dataclasses import dataclass
from typing import TYPE_CHECKING, FrozenSet, Iterable, Optional

from .attributes import AttributeEngine, FileKind, RemoteFileAttributes
from .errors import (
    DirectoryNotEmptyError,
    ErrorTranslator,
    FileAlreadyExistsError,
    FileSystemError,
    InvalidPathError,
    NoSuchFileError,
    RemoteError,
    UnsupportedOptionError,
)
from .path import ROOT, SFTPPath
from .resolver import EquivalenceChecker
from .session import COPY_BUFFER_SIZE, remote_errors

if TYPE_CHECKING:
    from .session import RemoteSession

logger = logging.getLogger(__name__)


class CopyOption(enum.Enum):
    REPLACE_EXISTING = "replace-existing"
    COPY_ATTRIBUTES = "copy-attributes"
    ATOMIC_MOVE = "atomic-move"


@dataclass(frozen=True)
class TransferPlan:
    """Everything one copy or move call decided before touching the target."""

    source: SFTPPath
    target: SFTPPath
    source_attrs: RemoteFileAttributes
    target_attrs: Optional[RemoteFileAttributes]
    options: FrozenSet[CopyOption]
    same_connection: bool

    @property
    def replace_existing(self) -> bool:
        return CopyOption.REPLACE_EXISTING in self.options

    @property
    def target_exists(self) -> bool:
        return self.target_attrs is not None


class CopyMoveEngine:
    """Copies and moves single nodes, within one connection or across two.

    Each call runs plan, validate, execute in order and stops at the first failure.
    Nothing is rolled back: side effects of completed steps stay in place.
    Directories are copied shallowly, as an empty directory at the target.
    """

    def __init__(
        self,
        translator: ErrorTranslator,
        attributes: AttributeEngine,
        equivalence: EquivalenceChecker,
    ) -> None:
        self.translator = translator
        self.attributes = attributes
        self.equivalence = equivalence

    # ----- entry points -----
    def copy(
        self,
        source_session: "RemoteSession",
        source: SFTPPath,
        target_session: "RemoteSession",
        target: SFTPPath,
        options: Iterable[CopyOption] = (),
    ) -> None:
        selected = self._check_options(options, {CopyOption.REPLACE_EXISTING})
        plan = self._plan(source_session, source, target_session, target, selected)
        if self._is_same_file(plan, source_session, target_session, follow_source=True):
            logger.debug("Copy of %s onto itself skipped", source)
            return
        self._validate_target(plan, target_session)
        self._copy_node(plan, source_session, target_session)

    def move(
        self,
        source_session: "RemoteSession",
        source: SFTPPath,
        target_session: "RemoteSession",
        target: SFTPPath,
        options: Iterable[CopyOption] = (),
    ) -> None:
        allowed = {CopyOption.REPLACE_EXISTING}
        if source.fs.connection_id == target.fs.connection_id:
            # a single rename is atomic on the server
            allowed.add(CopyOption.ATOMIC_MOVE)
        selected = self._check_options(options, allowed)
        plan = self._plan(source_session, source, target_session, target, selected)
        if self._is_same_file(plan, source_session, target_session, follow_source=False):
            logger.debug("Move of %s onto itself skipped", source)
            return
        if source.absolute_key() == ROOT:
            self._refuse_root_move(source_session, source)
        self._validate_target(plan, target_session)
        if plan.same_connection:
            self._rename(plan, source_session)
        else:
            self._move_across(plan, source_session, target_session)

    # ----- plan -----
    @staticmethod
    def _check_options(options: Iterable[CopyOption], allowed: set) -> FrozenSet[CopyOption]:
        selected = frozenset(options)
        for option in selected:
            if option not in allowed:
                raise UnsupportedOptionError(option)
        return selected

    def _plan(
        self,
        source_session: "RemoteSession",
        source: SFTPPath,
        target_session: "RemoteSession",
        target: SFTPPath,
        options: FrozenSet[CopyOption],
    ) -> TransferPlan:
        source_attrs = self.attributes.read_attributes(source_session, source, follow_links=False)
        try:
            target_attrs: Optional[RemoteFileAttributes] = self.attributes.read_attributes(
                target_session, target, follow_links=False
            )
        except NoSuchFileError:
            target_attrs = None
        plan = TransferPlan(
            source=source,
            target=target,
            source_attrs=source_attrs,
            target_attrs=target_attrs,
            options=options,
            same_connection=source.fs.connection_id == target.fs.connection_id,
        )
        logger.debug(
            "Planned %s (%s) -> %s (%s), same connection: %s",
            source,
            source_attrs.kind.value,
            target,
            target_attrs.kind.value if target_attrs else "absent",
            plan.same_connection,
        )
        return plan

    # ----- validate -----
    def _is_same_file(
        self,
        plan: TransferPlan,
        source_session: "RemoteSession",
        target_session: "RemoteSession",
        follow_source: bool,
    ) -> bool:
        """Whether source and target name one file.

        A copy reads through the source, so a dangling source link fails here before
        the target is touched. A move acts on the link itself, and a dangling link is
        never the same file as anything.
        """
        if not plan.target_exists:
            return False
        if self.equivalence.lexically_same(plan.source, plan.target):
            return True
        try:
            source_identity = self.equivalence.identity(source_session, plan.source)
        except NoSuchFileError:
            if follow_source:
                raise
            return False
        try:
            target_identity = self.equivalence.identity(target_session, plan.target)
        except NoSuchFileError:
            return False
        return source_identity == target_identity

    def _refuse_root_move(self, session: "RemoteSession", source: SFTPPath) -> None:
        try:
            children = session.listdir_attr(ROOT)
        except RemoteError as exc:
            raise self.translator.list_directory(str(source), exc) from exc
        if children:
            raise DirectoryNotEmptyError(str(source), reason="cannot move the root directory")
        raise InvalidPathError(str(source), "the root directory cannot be moved")

    def _validate_target(self, plan: TransferPlan, target_session: "RemoteSession") -> None:
        if not plan.target_exists:
            return
        if not plan.replace_existing:
            raise FileAlreadyExistsError(str(plan.target))
        self._delete(target_session, plan.target, plan.target_attrs.is_directory)

    def _delete(self, session: "RemoteSession", path: SFTPPath, is_directory: bool) -> None:
        remote = path.to_absolute().path
        logger.debug("Removing %s", path)
        try:
            if is_directory:
                session.rmdir(remote)
            else:
                session.remove(remote)
        except RemoteError as exc:
            raise self.translator.delete(str(path), exc, is_directory) from exc

    # ----- execute -----
    def _copy_node(self, plan: TransferPlan, source_session: "RemoteSession", target_session: "RemoteSession") -> None:
        kind = plan.source_attrs.kind
        if kind is FileKind.SYMLINK:
            kind = self.attributes.read_attributes(source_session, plan.source, follow_links=True).kind
        if kind is FileKind.DIRECTORY:
            self._mkdir(target_session, plan.target)
        else:
            self._copy_content(plan, source_session, target_session)

    def _mkdir(self, session: "RemoteSession", path: SFTPPath) -> None:
        try:
            session.mkdir(path.to_absolute().path)
        except RemoteError as exc:
            raise self.translator.create_directory(str(path), exc) from exc

    def _copy_content(self, plan: TransferPlan, source_session: "RemoteSession", target_session: "RemoteSession") -> None:
        source, target = plan.source, plan.target
        try:
            reader = source_session.open_read(source.to_absolute().path)
        except RemoteError as exc:
            raise self.translator.new_input_stream(str(source), exc) from exc
        try:
            writer = target_session.open_write(target.to_absolute().path)
        except RemoteError as exc:
            reader.close()
            raise self.translator.new_output_stream(str(target), exc) from exc
        try:
            with remote_errors(), reader, writer:
                shutil.copyfileobj(reader, writer, COPY_BUFFER_SIZE)
        except RemoteError as exc:
            raise self.translator.copy(str(source), str(target), exc) from exc

    def _rename(self, plan: TransferPlan, session: "RemoteSession") -> None:
        try:
            session.rename(plan.source.to_absolute().path, plan.target.to_absolute().path)
        except RemoteError as exc:
            raise self.translator.move(str(plan.source), str(plan.target), exc) from exc

    def _move_across(self, plan: TransferPlan, source_session: "RemoteSession", target_session: "RemoteSession") -> None:
        kind = plan.source_attrs.kind
        if kind is FileKind.SYMLINK:
            self._copy_link(plan, source_session, target_session)
        elif kind is FileKind.DIRECTORY:
            self._mkdir(target_session, plan.target)
        else:
            self._copy_content(plan, source_session, target_session)
        try:
            self._delete(source_session, plan.source, kind is FileKind.DIRECTORY)
        except FileSystemError:
            logger.warning("Copied %s to %s but could not remove the source; the copy is kept", plan.source, plan.target)
            raise

    def _copy_link(self, plan: TransferPlan, source_session: "RemoteSession", target_session: "RemoteSession") -> None:
        link = plan.source.to_absolute().path
        try:
            link_target = source_session.readlink(link)
        except RemoteError as exc:
            raise self.translator.read_link(str(plan.source), exc) from exc
        try:
            target_session.symlink(link_target, plan.target.to_absolute().path)
        except RemoteError as exc:
            raise self.translator.create_link(str(plan.target), exc) from exc
