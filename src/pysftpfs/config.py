
from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Mapping, Optional
from urllib.parse import unquote, urlparse

import paramiko
from paramiko.sftp import SFTP_NO_CONNECTION

from .errors import ErrorTranslator, RemoteError
from .session import RemoteSession

logger = logging.getLogger(__name__)

SCHEME = "sftp"
DEFAULT_PORT = 22

_HOST_KEY_POLICIES = {
    "reject": paramiko.RejectPolicy,
    "auto-add": paramiko.AutoAddPolicy,
    "warn": paramiko.WarningPolicy,
}


def uri_key(uri: str) -> str:
    """Registry key of the connection a URI addresses; the path is ignored."""
    parsed = urlparse(uri)
    if parsed.scheme.lower() != SCHEME:
        raise ValueError(f"URI scheme must be {SCHEME!r}: {uri}")
    if not parsed.hostname:
        raise ValueError(f"URI has no host: {uri}")
    user = f"{unquote(parsed.username)}@" if parsed.username else ""
    return f"{SCHEME}://{user}{parsed.hostname.lower()}:{parsed.port or DEFAULT_PORT}"


@dataclass
class SFTPConfig:
    """Connection settings for one SFTP filesystem.

    Built from the connection URI plus the options mapping given to ``open_fs``:

    - host, port, username (and optionally password) come from the URI; the mapping may
      override username and password. A URI path becomes the default directory.
    - default_dir: directory relative paths are resolved against; defaults to the
      server's working directory
    - pool_size: number of channels the filesystem may keep open
    - error_translator: :class:`ErrorTranslator` (sub)class instance mapping remote
      status codes onto errors
    - session_factory: callable returning a connected :class:`RemoteSession`; replaces
      the paramiko connection logic
    """

    host: str
    port: int = DEFAULT_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    key_filename: Optional[str] = None
    pkey: Optional[paramiko.PKey] = None
    default_dir: Optional[str] = None
    pool_size: int = 1
    timeout: Optional[float] = None
    host_key_policy: str = "reject"
    known_hosts: Optional[str] = None
    allow_agent: bool = True
    look_for_keys: bool = True
    error_translator: ErrorTranslator = field(default_factory=ErrorTranslator)
    session_factory: Optional[Callable[["SFTPConfig"], RemoteSession]] = None

    @classmethod
    def from_uri(cls, uri: str, env: Optional[Mapping[str, Any]] = None) -> "SFTPConfig":
        parsed = urlparse(uri)
        if not parsed.scheme:
            raise ValueError(f"URI is not absolute: {uri}")
        if parsed.scheme.lower() != SCHEME:
            raise ValueError(f"URI scheme must be {SCHEME!r}: {uri}")
        if not parsed.hostname:
            raise ValueError(f"URI has no host: {uri}")
        if parsed.query or parsed.fragment:
            raise ValueError(f"URI must not have a query or fragment: {uri}")

        options = dict(env or {})
        known = {f.name for f in fields(cls)} - {"host", "port"}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValueError(f"Unsupported configuration options: {', '.join(unknown)}")

        config = cls(
            host=parsed.hostname,
            port=parsed.port or DEFAULT_PORT,
            username=unquote(parsed.username) if parsed.username else None,
            password=unquote(parsed.password) if parsed.password else None,
        )
        # a path in the URI names the home directory, unless given explicitly
        if parsed.path not in ("", "/"):
            config.default_dir = unquote(parsed.path).rstrip("/")
        for name, value in options.items():
            setattr(config, name, value)
        config.validate()
        return config

    def validate(self) -> None:
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be at least 1, got {self.pool_size}")
        if self.host_key_policy not in _HOST_KEY_POLICIES:
            raise ValueError(f"Unknown host_key_policy: {self.host_key_policy!r}")
        if self.default_dir is not None and not self.default_dir.startswith("/"):
            raise ValueError(f"default_dir must be absolute: {self.default_dir!r}")

    @property
    def authority(self) -> str:
        user = f"{self.username}@" if self.username else ""
        port = f":{self.port}" if self.port != DEFAULT_PORT else ""
        return f"{user}{self.host}{port}"

    @property
    def key(self) -> str:
        """Registry key; always spells out the port."""
        user = f"{self.username}@" if self.username else ""
        return f"{SCHEME}://{user}{self.host.lower()}:{self.port}"

    @property
    def server_identity(self) -> tuple:
        return self.host.lower(), self.port

    def open_session(self) -> RemoteSession:
        if self.session_factory is not None:
            return self.session_factory(self)

        client = paramiko.SSHClient()
        if self.known_hosts:
            client.load_host_keys(self.known_hosts)
        else:
            client.load_system_host_keys()
        client.set_missing_host_key_policy(_HOST_KEY_POLICIES[self.host_key_policy]())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                pkey=self.pkey,
                key_filename=self.key_filename,
                timeout=self.timeout,
                allow_agent=self.allow_agent,
                look_for_keys=self.look_for_keys,
            )
            sftp = client.open_sftp()
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise RemoteError(SFTP_NO_CONNECTION, str(exc) or None) from exc
        logger.info("Connected to %s", self.authority)
        return RemoteSession(sftp, client)
