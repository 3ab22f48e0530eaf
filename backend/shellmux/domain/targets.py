"""Connection targets, credentials and terminal geometry."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from shellmux.domain.exceptions import InvalidTargetError

DEFAULT_PORT = 22


@dataclass(slots=True, frozen=True)
class PasswordCredential:
    password: str

    def __repr__(self) -> str:
        return "PasswordCredential(password='***')"


@dataclass(slots=True, frozen=True)
class PrivateKeyCredential:
    """Reference to key material on disk, optionally passphrase-protected."""

    key_path: str
    passphrase: Optional[str] = None

    def __repr__(self) -> str:
        return f"PrivateKeyCredential(key_path={self.key_path!r})"


Credential = Union[PasswordCredential, PrivateKeyCredential]


def parse_port(value: Any) -> int:
    """Return the port as an int, falling back to 22 when absent or unparsable."""
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        return DEFAULT_PORT
    return port or DEFAULT_PORT


def decode_password(encoded: Optional[str]) -> str:
    """Decode a saved password.

    Saved entries keep the password base64-encoded. That is an encoding,
    not encryption: anyone with the config file can read it.
    """
    if not encoded:
        return ""
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise InvalidTargetError("Saved password is not valid base64") from exc


def encode_password(password: str) -> str:
    return base64.b64encode(password.encode("utf-8")).decode("ascii")


@dataclass(slots=True)
class TargetDescriptor:
    """Where to connect and how to authenticate."""

    host: str
    username: str
    credential: Optional[Credential]
    port: int = DEFAULT_PORT
    name: Optional[str] = None

    @classmethod
    def from_saved(cls, entry: Mapping[str, Any]) -> "TargetDescriptor":
        """Build a descriptor from a saved favourite or a connect frame.

        Recognised keys: ``name``, ``user``, ``host``, ``port``, ``password``
        (base64) and ``identityFile``. A non-empty ``identityFile`` wins over
        the password; an entry with neither gets an empty password, which is
        what the desktop client sends for servers using keyboard auth.
        """
        identity_file = (entry.get("identityFile") or "").strip()
        credential: Credential
        if identity_file:
            credential = PrivateKeyCredential(
                key_path=identity_file,
                passphrase=entry.get("passphrase") or None,
            )
        else:
            credential = PasswordCredential(decode_password(entry.get("password")))
        return cls(
            host=(entry.get("host") or "").strip(),
            port=parse_port(entry.get("port")),
            username=(entry.get("user") or entry.get("username") or "").strip(),
            credential=credential,
            name=entry.get("name") or None,
        )

    @property
    def display_name(self) -> str:
        return self.name or f"{self.username}@{self.host}"

    def validate(self) -> None:
        if not self.host:
            raise InvalidTargetError("Target host is required")
        if not isinstance(self.port, int) or not 0 < self.port < 65536:
            raise InvalidTargetError(f"Target port must be between 1 and 65535, got {self.port!r}")
        if not self.username:
            raise InvalidTargetError("Target username is required")
        if not isinstance(self.credential, (PasswordCredential, PrivateKeyCredential)):
            raise InvalidTargetError("Target needs exactly one of a password or a private key")


@dataclass(slots=True)
class Geometry:
    """Terminal size in character cells."""

    columns: int
    rows: int

    @classmethod
    def coerce(
        cls,
        columns: Any,
        rows: Any,
        *,
        default_columns: int = 80,
        default_rows: int = 24,
    ) -> "Geometry":
        """Build a geometry, substituting defaults for missing or non-positive values."""
        return cls(
            columns=_positive_int(columns, default_columns),
            rows=_positive_int(rows, default_rows),
        )


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default
