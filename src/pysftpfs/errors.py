
from __future__ import annotations

import enum
import errno
import logging
from typing import Optional

from paramiko.sftp import SFTP_DESC, SFTP_FAILURE, SFTP_NO_SUCH_FILE, SFTP_PERMISSION_DENIED

logger = logging.getLogger(__name__)


class SFTPFSError(Exception):
    """Base exception for all pysftpfs errors."""


class FileSystemError(SFTPFSError, OSError):
    """A failed filesystem operation on one (or two) paths.

    ``path`` and ``other_path`` are the path strings as the caller supplied them.
    ``status`` is the SFTP status code reported by the server, if any.
    """

    default_errno: Optional[int] = errno.EIO
    default_reason = "filesystem error"

    def __init__(
        self,
        path: Optional[str],
        other_path: Optional[str] = None,
        reason: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        self.reason = reason or self.default_reason
        self.status = status
        super().__init__(self.default_errno, self.reason, path, None, other_path)

    @property
    def path(self) -> Optional[str]:
        return self.filename

    @property
    def other_path(self) -> Optional[str]:
        return self.filename2


class NoSuchFileError(FileSystemError, FileNotFoundError):
    """The path, or a named component of it, does not exist."""

    default_errno = errno.ENOENT
    default_reason = "no such file"


class FileAlreadyExistsError(FileSystemError, FileExistsError):
    """The target of a create/copy/move exists and overwriting was not requested."""

    default_errno = errno.EEXIST
    default_reason = "file already exists"


class DirectoryNotEmptyError(FileSystemError):
    """A non-empty directory could not be removed."""

    default_errno = errno.ENOTEMPTY
    default_reason = "directory not empty"


class TooManyLinksError(FileSystemError):
    """Symbolic link resolution ran into a cycle."""

    default_errno = errno.ELOOP
    default_reason = "too many levels of symbolic links"


class AccessDeniedError(FileSystemError, PermissionError):
    """The server refused access to the path."""

    default_errno = errno.EACCES
    default_reason = "permission denied"


class NotDirectoryError(FileSystemError, NotADirectoryError):
    default_errno = errno.ENOTDIR
    default_reason = "not a directory"


class IsDirectoryError(FileSystemError, IsADirectoryError):
    default_errno = errno.EISDIR
    default_reason = "is a directory"


class IOFailureError(FileSystemError):
    """Generic remote failure; ``status`` keeps the SFTP status the server reported."""

    default_errno = errno.EIO
    default_reason = "I/O failure"


class InvalidPathError(SFTPFSError, ValueError):
    """Malformed path input."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path!r}")


class UnsupportedAttributeError(SFTPFSError, ValueError):
    """Attribute name not recognized (or not settable) within its view."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"unsupported file attribute: {name}")


class UnsupportedViewError(SFTPFSError, NotImplementedError):
    """Attribute view not recognized."""

    def __init__(self, view: str) -> None:
        self.view = view
        super().__init__(f"unsupported file attribute view: {view}")


class UnsupportedOptionError(SFTPFSError, NotImplementedError):
    """An operation option that cannot be implemented over SFTP."""

    def __init__(self, option: object) -> None:
        self.option = option
        super().__init__(f"unsupported option: {option}")


class AttributeTypeError(SFTPFSError, TypeError):
    """The value given to ``set_attribute`` has the wrong type for the attribute."""


class FileSystemNotFoundError(SFTPFSError, LookupError):
    """No open filesystem is registered for a URI."""


class RemoteError(SFTPFSError):
    """A single remote call failed. Only raised inside the session layer."""

    def __init__(self, status: int, message: Optional[str] = None) -> None:
        self.status = status
        self.message = message or status_text(status)
        super().__init__(f"{self.message} (status {status})")


def status_text(status: int) -> str:
    if 0 <= status < len(SFTP_DESC):
        return SFTP_DESC[status]
    return "Unknown status"


class Operation(enum.Enum):
    """The façade operation during which a remote call failed."""

    GET_FILE = "get file"
    READ_LINK = "read link"
    LIST_DIRECTORY = "list directory"
    CREATE_DIRECTORY = "create directory"
    DELETE_FILE = "delete file"
    DELETE_DIRECTORY = "delete directory"
    NEW_INPUT_STREAM = "open for reading"
    NEW_OUTPUT_STREAM = "open for writing"
    COPY = "copy"
    MOVE = "move"
    CREATE_LINK = "create link"
    SET_ATTRIBUTES = "set attributes"


class ErrorTranslator:
    """Maps a :class:`RemoteError` raised during an operation onto the error taxonomy.

    Subclass and pass as the ``error_translator`` option to customise the mapping;
    the per-operation methods all funnel through :meth:`translate`.
    """

    def translate(
        self,
        operation: Operation,
        error: RemoteError,
        path: str,
        other_path: Optional[str] = None,
    ) -> FileSystemError:
        status = error.status
        reason = f"{operation.value} failed: {error.message}"
        if status == SFTP_NO_SUCH_FILE:
            result: FileSystemError = NoSuchFileError(path, other_path, reason, status)
        elif status == SFTP_PERMISSION_DENIED:
            result = AccessDeniedError(path, other_path, reason, status)
        elif status == SFTP_FAILURE and operation is Operation.DELETE_DIRECTORY:
            # SFTP v3 has no dedicated status for ENOTEMPTY
            result = DirectoryNotEmptyError(path, other_path, reason, status)
        else:
            result = IOFailureError(path, other_path, reason, status)
        logger.debug("%s on %s: status %s -> %s", operation.value, path, status, type(result).__name__)
        return result

    def get_file(self, path: str, error: RemoteError) -> FileSystemError:
        return self.translate(Operation.GET_FILE, error, path)

    def read_link(self, path: str, error: RemoteError) -> FileSystemError:
        return self.translate(Operation.READ_LINK, error, path)

    def list_directory(self, path: str, error: RemoteError) -> FileSystemError:
        return self.translate(Operation.LIST_DIRECTORY, error, path)

    def create_directory(self, path: str, error: RemoteError) -> FileSystemError:
        return self.translate(Operation.CREATE_DIRECTORY, error, path)

    def delete(self, path: str, error: RemoteError, is_directory: bool) -> FileSystemError:
        operation = Operation.DELETE_DIRECTORY if is_directory else Operation.DELETE_FILE
        return self.translate(operation, error, path)

    def new_input_stream(self, path: str, error: RemoteError) -> FileSystemError:
        return self.translate(Operation.NEW_INPUT_STREAM, error, path)

    def new_output_stream(self, path: str, error: RemoteError) -> FileSystemError:
        return self.translate(Operation.NEW_OUTPUT_STREAM, error, path)

    def copy(self, path: str, other_path: str, error: RemoteError) -> FileSystemError:
        return self.translate(Operation.COPY, error, path, other_path)

    def move(self, path: str, other_path: str, error: RemoteError) -> FileSystemError:
        return self.translate(Operation.MOVE, error, path, other_path)

    def create_link(self, path: str, error: RemoteError) -> FileSystemError:
        return self.translate(Operation.CREATE_LINK, error, path)

    def set_attributes(self, path: str, error: RemoteError) -> FileSystemError:
        return self.translate(Operation.SET_ATTRIBUTES, error, path)
