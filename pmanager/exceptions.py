"""
PManager - Error Types

Every failure the engine can report is one of these classes. The storage
layer catches them at its public boundary and turns them into a failed
Response, using `kind` so callers can tell them apart without isinstance.
"""

from typing import List, Optional


class PManagerError(Exception):
    """Base class for all PManager errors."""

    kind = "error"


class NotFoundError(PManagerError):
    """Scope, document index or key chain prefix does not exist."""

    kind = "not_found"


class ConflictError(PManagerError):
    """Target already exists where creation was requested."""

    kind = "conflict"


class ForceRequiredError(PManagerError):
    """Overwriting or deleting an object needs the force flag."""

    kind = "force_required"


class AmbiguousError(PManagerError):
    """Fuzzy matching found several scopes and none was selected."""

    kind = "ambiguous"

    def __init__(self, message: str, candidates: Optional[List[str]] = None):
        super().__init__(message)
        self.candidates = candidates or []


class ValidationError(PManagerError):
    """Data does not satisfy the store's structural rules."""

    kind = "validation"


class AuthenticationError(PManagerError):
    """AES-GCM tag verification failed (wrong key or tampered file)."""

    kind = "authentication"


class StorageError(PManagerError):
    """File, network or JSON parsing failure."""

    kind = "storage"
