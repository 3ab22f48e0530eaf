"""Domain layer primitives (targets, value objects, exceptions)."""

from . import exceptions, targets
from .targets import (
    Geometry,
    PasswordCredential,
    PrivateKeyCredential,
    TargetDescriptor,
)

__all__ = [
    "Geometry",
    "PasswordCredential",
    "PrivateKeyCredential",
    "TargetDescriptor",
    "exceptions",
    "targets",
]
