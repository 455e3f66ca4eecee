"""Error taxonomy for the import engine.

Structural failures (empty input, missing required mapping) abort the stage
that raised them. Per-row value problems are collected as
:class:`ValueParseError` warnings and never abort a batch. Failures of the
external collaborators are surfaced as :class:`RemoteOperationError` with the
operation name and every failure that occurred in the step.
"""

from __future__ import annotations

from collections.abc import Sequence


class LedgerImportError(Exception):
    """Base class for all errors raised by ``ledger_import``."""


class EmptyInputError(LedgerImportError):
    """Raised when the raw text yields no parseable rows."""

    def __init__(self, message: str = "no parseable rows in input") -> None:
        super().__init__(message)


class MissingRequiredFieldError(LedgerImportError):
    """Raised when required canonical fields are left unmapped."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing: tuple[str, ...] = tuple(missing)
        super().__init__("missing required field(s): " + ", ".join(self.missing))


class ValueParseError(LedgerImportError):
    """A per-row value that could not be parsed.

    Instances are recorded as warnings on the draft row; the pipeline
    substitutes a fallback value and keeps going.
    """

    def __init__(self, row_index: int, field: str, value: str, message: str | None = None) -> None:
        self.row_index = row_index
        self.field = field
        self.value = value
        super().__init__(message or f"row {row_index}: could not parse {field} from {value!r}")


class RemoteOperationError(LedgerImportError):
    """A persistence or category collaborator call failed.

    Parameters
    ----------
    operation:
        Name of the failing operation, e.g. ``"transactions.insert"``.
    failures:
        The underlying exceptions. Batched steps aggregate all failures here.
    succeeded:
        Number of units (rows or batches, depending on the caller) that did
        complete before or alongside the failures.
    """

    def __init__(
        self,
        operation: str,
        failures: Sequence[BaseException] = (),
        *,
        succeeded: int = 0,
    ) -> None:
        self.operation = operation
        self.failures: tuple[BaseException, ...] = tuple(failures)
        self.succeeded = succeeded
        detail = "; ".join(str(f) for f in self.failures) or "unknown failure"
        super().__init__(f"{operation} failed ({len(self.failures)} failure(s)): {detail}")

    @classmethod
    def combine(cls, operation: str, errors: Sequence[RemoteOperationError]) -> RemoteOperationError:
        """Merge several step errors into one, keeping every underlying failure."""

        failures: list[BaseException] = []
        succeeded = 0
        for err in errors:
            failures.extend(err.failures or (err,))
            succeeded += err.succeeded
        return cls(operation, failures, succeeded=succeeded)


class ImportTimeoutError(LedgerImportError):
    """Raised by the save watchdog; rows already written stay written."""

    def __init__(self, committed: int, total: int, timeout_sec: float) -> None:
        self.committed = committed
        self.total = total
        self.timeout_sec = timeout_sec
        super().__init__(
            f"save timed out after {timeout_sec:g}s with {committed}/{total} records committed"
        )


class ImportCancelledError(LedgerImportError):
    """Raised when a cooperative cancel request is observed between rows."""

    def __init__(self, processed: int, total: int) -> None:
        self.processed = processed
        self.total = total
        super().__init__(f"import cancelled after {processed}/{total} rows")


class StageError(LedgerImportError):
    """Raised when a stage entry point is called from the wrong stage."""


__all__ = [
    "LedgerImportError",
    "EmptyInputError",
    "MissingRequiredFieldError",
    "ValueParseError",
    "RemoteOperationError",
    "ImportTimeoutError",
    "ImportCancelledError",
    "StageError",
]
