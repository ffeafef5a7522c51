"""Error taxonomy for the reconciliation pipeline.

Each class names one failure cause. The workflow maps them to user-facing
messages and decides whether a failure is fatal for the current stage:

- ``InputMissing``: a file or the credential was not provided.
- ``FileUnreadable``: I/O or format failure while reading a spreadsheet.
- ``StructureUnresolved``: no usable name/amount column (or no data rows).
- ``RemoteCallFailed``: network/HTTP/credential failure from the AI provider.
- ``ResponseUnparseable``: AI text could not be converted to the expected shape.
"""

from __future__ import annotations


class ReconcileError(Exception):
    """Base class for all domain errors raised by ``ledger_reconcile``."""


class InputMissing(ReconcileError):
    pass


class FileUnreadable(ReconcileError):
    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class StructureUnresolved(ReconcileError):
    """Raised when the column roles cannot be resolved after every fallback.

    ``found`` maps role names (``"name"``, ``"amount"``) to the resolved column
    header, or ``None`` when missing. ``strategies`` lists the strategies that
    were attempted, in order.
    """

    def __init__(
        self,
        message: str,
        *,
        found: dict[str, str | None] | None = None,
        strategies: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message)
        self.found = dict(found or {})
        self.strategies = strategies


class RemoteCallFailed(ReconcileError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResponseUnparseable(ReconcileError, ValueError):
    pass


__all__ = [
    "FileUnreadable",
    "InputMissing",
    "ReconcileError",
    "RemoteCallFailed",
    "ResponseUnparseable",
    "StructureUnresolved",
]
