"""Public interface for the ``ledger_reconcile`` package.

This module exposes the package's API functions, the workflow and the public
models/types as the stable import surface. There is no runtime logic here,
only symbol re-exports.
"""

from .ai_client import ChatClient, create_client, validate_credential
from .api import (
    FileReport,
    classify_entries,
    generate_summary,
    ingest_classification,
    inspect_file,
    parse_file,
    parse_files,
)
from .errors import (
    FileUnreadable,
    InputMissing,
    ReconcileError,
    RemoteCallFailed,
    ResponseUnparseable,
    StructureUnresolved,
)
from .logging_setup import configure_logging
from .models import (
    Category,
    CategoryMap,
    CategoryStatus,
    ClassificationResult,
    ColumnResolution,
    ColumnRoleAssignment,
    Entry,
    EntrySource,
    Grid,
    HeaderDecision,
    HeaderSource,
    ParsedData,
    RoleSource,
)
from .reconcile import calculate, move_entry
from .settings import Settings
from .workflow import ReconcileWorkflow, Stage, ThreadRunner, WorkflowSnapshot

__all__ = [
    # API
    "calculate",
    "classify_entries",
    "create_client",
    "generate_summary",
    "ingest_classification",
    "inspect_file",
    "move_entry",
    "parse_file",
    "parse_files",
    "validate_credential",
    # Workflow
    "ReconcileWorkflow",
    "Stage",
    "ThreadRunner",
    "WorkflowSnapshot",
    # Errors
    "FileUnreadable",
    "InputMissing",
    "ReconcileError",
    "RemoteCallFailed",
    "ResponseUnparseable",
    "StructureUnresolved",
    # Models / types
    "Category",
    "CategoryMap",
    "CategoryStatus",
    "ChatClient",
    "ClassificationResult",
    "ColumnResolution",
    "ColumnRoleAssignment",
    "Entry",
    "EntrySource",
    "FileReport",
    "Grid",
    "HeaderDecision",
    "HeaderSource",
    "ParsedData",
    "RoleSource",
    "Settings",
    # Logging
    "configure_logging",
]
