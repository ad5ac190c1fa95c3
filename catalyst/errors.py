"""
catalyst.errors — Error taxonomy
=================================

Validation failures are raised as :class:`ValidationError` subclasses (which
are also ``ValueError``, so callers that only care about "bad input" can keep
catching ``ValueError``).  Their message is written for end users and is safe
to echo back into chat.

:class:`InvariantError` marks programmer mistakes.  It is raised before any
state changes and is never shown to users, only logged.

Not-found is not an error here.  Lookups return ``None``.
"""

from __future__ import annotations


class CatalystError(Exception):
    """Base class for all Catalyst errors."""


class ValidationError(CatalystError, ValueError):
    """Input rejected before any write happened."""


class DuplicateNameError(ValidationError):
    """A faction with the same (case-insensitive) name already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f"The name **{name}** is already taken.")
        self.name = name


class MembershipError(ValidationError):
    """Join/leave/transfer violates the one-faction-per-user rules."""


class InvariantError(CatalystError, RuntimeError):
    """Internal contract violated (unknown enum value, resolved event edit)."""
