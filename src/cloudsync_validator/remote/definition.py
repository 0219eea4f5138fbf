"""
Ephemeral Remote Definition

A two-layer rclone remote: a transport section describing how to reach the
storage, and a crypt section layered on top of it that decrypts names and
content.

The secrets inside are obscured, which rclone's config format requires.
Obscuring is reversible encoding with a key that ships with rclone; it is
NOT encryption. Anyone holding the rendered file can recover the passwords,
so the file only exists for the lifetime of one validation run, is created
with owner-only permissions, and is deleted by close().
"""

import configparser
import io
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

TRANSPORT_NAME = "remote"
CRYPT_NAME = "encrypted"


@dataclass
class TransportSection:
    """How to reach the remote storage, independent of encryption"""
    type: str
    options: Dict[str, str] = field(default_factory=dict)
    name: str = TRANSPORT_NAME


@dataclass
class CryptSection:
    """Decryption overlay pointing at a transport section"""
    remote: str
    filename_encryption: str
    password: str
    password2: Optional[str] = None
    name: str = CRYPT_NAME
    type: str = "crypt"

    @property
    def transport_name(self) -> str:
        return self.remote.split(":", 1)[0]

    @property
    def path_prefix(self) -> str:
        return self.remote.split(":", 1)[1] if ":" in self.remote else ""


class RemoteDefinition:
    """
    Scoped handle on one task's rclone remote.

    Use as a context manager. The config file is written on first call to
    config_path() and removed on close(); a closed definition cannot be
    used again.
    """

    def __init__(self, transport: TransportSection, crypt: CryptSection, label: str = ""):
        if crypt.transport_name != transport.name:
            raise ValueError(
                f"Crypt section references '{crypt.transport_name}', "
                f"transport is named '{transport.name}'"
            )
        self.transport = transport
        self.crypt = crypt
        self.label = label
        self._path: Optional[Path] = None
        self._closed = False

    def __enter__(self) -> "RemoteDefinition":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<RemoteDefinition {self.label or self.crypt.remote} ({state})>"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def crypt_remote(self) -> str:
        """Remote path to hand to the engine, e.g. 'encrypted:'"""
        return f"{self.crypt.name}:"

    def render(self) -> str:
        """The INI document rclone reads"""
        self._ensure_open()

        parser = configparser.ConfigParser(interpolation=None)
        parser.optionxform = str

        parser[self.transport.name] = {"type": self.transport.type, **self.transport.options}

        crypt = {
            "type": self.crypt.type,
            "remote": self.crypt.remote,
            "filename_encryption": self.crypt.filename_encryption,
            "password": self.crypt.password,
        }
        if self.crypt.password2:
            crypt["password2"] = self.crypt.password2
        parser[self.crypt.name] = crypt

        buf = io.StringIO()
        parser.write(buf)
        return buf.getvalue()

    def config_path(self) -> Path:
        """Write the definition to a private temp file (once) and return its path"""
        self._ensure_open()
        if self._path is None:
            fd, name = tempfile.mkstemp(prefix="cloudsync-rclone-", suffix=".conf")
            try:
                os.fchmod(fd, 0o600)
                with os.fdopen(fd, "w") as f:
                    f.write(self.render())
            except BaseException:
                Path(name).unlink(missing_ok=True)
                raise
            self._path = Path(name)
            logger.debug(f"Wrote remote definition for {self.label or self.crypt.remote}")
        return self._path

    def close(self) -> None:
        """Delete the config file and drop the secrets"""
        if self._closed:
            return
        self._closed = True
        if self._path is not None:
            try:
                self._path.unlink()
            except FileNotFoundError:
                pass
            self._path = None
        self.transport.options = {
            k: ("" if k in ("pass", "password", "key_pem") else v)
            for k, v in self.transport.options.items()
        }
        self.crypt.password = ""
        self.crypt.password2 = None

    def _ensure_open(self) -> None:
        if self._closed:
            raise ValueError("Remote definition already closed")
