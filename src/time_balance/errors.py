"""Exception hierarchy raised by the account, catalog and event log."""

from __future__ import annotations


class TimeBalanceError(Exception):
    """Base class for every error raised by the time balance core."""


class ValidationError(TimeBalanceError, ValueError):
    """Input has the wrong shape or falls outside an allowed range."""


class RangeError(ValidationError):
    """A meter factor lies outside the permitted interval."""


class FormatError(TimeBalanceError, ValueError):
    """An import payload or stored snapshot could not be parsed."""


class StateError(TimeBalanceError):
    """The operation is not valid for the current state of the target."""


class ConflictError(TimeBalanceError):
    """The operation would break an invariant of the account."""


class CapacityError(TimeBalanceError):
    """The meter catalog is already full."""


class NotFoundError(TimeBalanceError, KeyError):
    """No meter or event exists for the given id."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message instead.
        return str(self.args[0]) if self.args else ""


class ConfigurationError(TimeBalanceError):
    """The default meter configuration is missing or empty."""
