from .attributes import FileKind, RemoteFileAttributes
from .config import SFTPConfig
from .core import AbstractFS, get_fs, get_path, open_fs
from .errors import (
    AccessDeniedError,
    DirectoryNotEmptyError,
    ErrorTranslator,
    FileAlreadyExistsError,
    FileSystemError,
    FileSystemNotFoundError,
    IOFailureError,
    InvalidPathError,
    NoSuchFileError,
    SFTPFSError,
    TooManyLinksError,
)
from .path import SFTPPath
from .sftpfs import SFTPFS, AccessMode, OpenOption
from .transfer import CopyOption

__all__ = [
    "AbstractFS",
    "open_fs",
    "get_fs",
    "get_path",
    "SFTPFS",
    "SFTPPath",
    "SFTPConfig",
    "RemoteFileAttributes",
    "FileKind",
    "OpenOption",
    "CopyOption",
    "AccessMode",
    "ErrorTranslator",
    "SFTPFSError",
    "FileSystemError",
    "NoSuchFileError",
    "FileAlreadyExistsError",
    "DirectoryNotEmptyError",
    "TooManyLinksError",
    "AccessDeniedError",
    "IOFailureError",
    "InvalidPathError",
    "FileSystemNotFoundError",
]
__version__ = "0.1.0"
