"""Exception types raised by the Autocall core."""

from __future__ import annotations


class AutocallError(Exception):
    """Base class for Autocall failures."""


class StorageError(AutocallError):
    """The number store could not complete an operation.

    The failed operation is rolled back, so the store keeps its prior state.
    """


class RotationInvariantError(AutocallError):
    """A rotation reset left a non-empty store with nothing to dial."""
