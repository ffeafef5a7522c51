"""Reconciliation workflow as an explicit finite-state machine.

Stages run in order::

    upload → parse → display → classify → manual_confirm → calculate → compare → summarize

User actions and task completions are :class:`Event` values processed one at a
time from a queue. :data:`TRANSITIONS` declares where each ``(stage, event)``
pair leads; handlers only update the :class:`WorkflowContext`.

Network-backed stages (parse, classify, summarize) start a task through a
:class:`TaskRunner` on entry. The task's result comes back as a
``task_done``/``task_failed`` event tagged with the run token that started it;
events from a superseded run (the user navigated away, or retried) are
ignored. Calculate runs synchronously and advances to compare on its own.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from os import PathLike
from pathlib import Path
from typing import Any, Protocol

from . import api
from .ai_client import ChatClient, create_client
from .errors import (
    FileUnreadable,
    InputMissing,
    RemoteCallFailed,
    ResponseUnparseable,
    StructureUnresolved,
)
from .logging_setup import get_logger
from .models import Category, CategoryMap, ClassificationResult, Entry, EntrySource, ParsedData
from .reconcile import calculate, move_entry
from .settings import Settings

_logger = get_logger("ledger_reconcile.workflow")


class Stage(StrEnum):
    UPLOAD = "upload"
    PARSE = "parse"
    DISPLAY = "display"
    CLASSIFY = "classify"
    MANUAL_CONFIRM = "manual_confirm"
    CALCULATE = "calculate"
    COMPARE = "compare"
    SUMMARIZE = "summarize"


class EventType(StrEnum):
    SET_FILE = "set_file"
    SET_CREDENTIAL = "set_credential"
    NEXT = "next"
    BACK = "back"
    SKIP = "skip"
    MOVE_ENTRY = "move_entry"
    RETRY = "retry"
    RESTART = "restart"
    TASK_DONE = "task_done"
    TASK_FAILED = "task_failed"


NETWORK_STAGES = frozenset({Stage.PARSE, Stage.CLASSIFY, Stage.SUMMARIZE})

TRANSITIONS: Mapping[tuple[Stage, EventType], Stage] = {
    (Stage.UPLOAD, EventType.NEXT): Stage.PARSE,
    (Stage.PARSE, EventType.TASK_DONE): Stage.DISPLAY,
    (Stage.PARSE, EventType.RETRY): Stage.PARSE,
    (Stage.PARSE, EventType.BACK): Stage.UPLOAD,
    (Stage.DISPLAY, EventType.NEXT): Stage.CLASSIFY,
    (Stage.DISPLAY, EventType.BACK): Stage.UPLOAD,
    (Stage.CLASSIFY, EventType.TASK_DONE): Stage.MANUAL_CONFIRM,
    (Stage.CLASSIFY, EventType.RETRY): Stage.CLASSIFY,
    (Stage.CLASSIFY, EventType.BACK): Stage.DISPLAY,
    (Stage.MANUAL_CONFIRM, EventType.NEXT): Stage.CALCULATE,
    (Stage.MANUAL_CONFIRM, EventType.SKIP): Stage.CALCULATE,
    (Stage.MANUAL_CONFIRM, EventType.BACK): Stage.DISPLAY,
    (Stage.CALCULATE, EventType.TASK_DONE): Stage.COMPARE,
    (Stage.COMPARE, EventType.NEXT): Stage.SUMMARIZE,
    (Stage.COMPARE, EventType.BACK): Stage.MANUAL_CONFIRM,
    (Stage.SUMMARIZE, EventType.RETRY): Stage.SUMMARIZE,
    (Stage.SUMMARIZE, EventType.BACK): Stage.COMPARE,
    (Stage.SUMMARIZE, EventType.RESTART): Stage.UPLOAD,
}
"""``(stage, event) → target stage``."""

IN_STAGE_EVENTS: frozenset[tuple[Stage, EventType]] = frozenset(
    {
        (Stage.UPLOAD, EventType.SET_FILE),
        (Stage.UPLOAD, EventType.SET_CREDENTIAL),
        (Stage.PARSE, EventType.TASK_FAILED),
        (Stage.CLASSIFY, EventType.TASK_FAILED),
        (Stage.MANUAL_CONFIRM, EventType.MOVE_ENTRY),
        (Stage.SUMMARIZE, EventType.TASK_DONE),
        (Stage.SUMMARIZE, EventType.TASK_FAILED),
    }
)
"""Events handled without leaving the current stage."""


@dataclass(frozen=True, slots=True)
class Event:
    type: EventType
    payload: Mapping[str, Any] = field(default_factory=dict)
    token: int | None = None


@dataclass(slots=True)
class WorkflowContext:
    """Mutable state of one reconciliation session."""

    standard_file: Path | None = None
    check_file: Path | None = None
    credential: str = ""
    parsed: ParsedData | None = None
    categories: CategoryMap | None = None
    summary: str | None = None
    stage: Stage = Stage.UPLOAD
    error: str | None = None
    loading: bool = False


@dataclass(frozen=True, slots=True)
class WorkflowSnapshot:
    """Read-only view of the workflow for presentation layers."""

    stage: Stage
    loading: bool
    error: str | None
    standard: tuple[Entry, ...]
    check: tuple[Entry, ...]
    categories: Mapping[str, Category]
    summary: str | None


# ---- Task execution -----------------------------------------------------------


class TaskRunner(Protocol):
    def submit(
        self,
        fn: Callable[[], Any],
        on_done: Callable[[Any], None],
        on_error: Callable[[Exception], None],
    ) -> None: ...


class InlineRunner:
    """Runs tasks synchronously in the caller's thread."""

    def submit(
        self,
        fn: Callable[[], Any],
        on_done: Callable[[Any], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        try:
            result = fn()
        except Exception as e:  # noqa: BLE001 - reported as a task_failed event
            on_error(e)
            return
        on_done(result)


class ThreadRunner:
    """Runs each task on a background daemon thread."""

    def __init__(self) -> None:
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    def submit(
        self,
        fn: Callable[[], Any],
        on_done: Callable[[Any], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        def _run() -> None:
            InlineRunner().submit(fn, on_done, on_error)

        t = threading.Thread(target=_run, name="ledger-reconcile-task", daemon=True)
        with self._lock:
            self._threads = [th for th in self._threads if th.is_alive()]
            self._threads.append(t)
        t.start()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Join in-flight tasks; return ``False`` if any is still running."""

        with self._lock:
            threads = list(self._threads)
        for t in threads:
            t.join(timeout)
        return not any(t.is_alive() for t in threads)


@dataclass(frozen=True, slots=True)
class WorkflowServices:
    """Side-effecting operations the workflow invokes, replaceable in tests."""

    parse: Callable[[Path, Path, ChatClient | None, Settings], ParsedData] = (
        lambda std, chk, client, settings: api.parse_files(
            std, chk, client=client, settings=settings
        )
    )
    classify: Callable[[ChatClient, list[Entry], list[Entry]], ClassificationResult] = (
        api.classify_entries
    )
    summarize: Callable[[ChatClient, CategoryMap], str] = api.generate_summary
    client_factory: Callable[[str | None, Settings], ChatClient | None] = (
        lambda credential, settings: create_client(credential, settings=settings)
    )


def describe_failure(exc: BaseException) -> str:
    """Short user-facing message for a parse failure, by cause."""

    if isinstance(exc, FileUnreadable):
        return f"The file could not be read: {exc}"
    if isinstance(exc, StructureUnresolved):
        return f"The required columns could not be found: {exc}"
    if isinstance(exc, RemoteCallFailed):
        return f"The AI service call failed: {exc}"
    if isinstance(exc, ResponseUnparseable):
        return f"The AI response could not be understood: {exc}"
    if isinstance(exc, InputMissing):
        return f"Input is missing: {exc}"
    return f"Parsing failed unexpectedly: {exc or exc.__class__.__name__}"


def _raw_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


# ---- State machine -------------------------------------------------------------


class ReconcileWorkflow:
    """One reconciliation session.

    Public methods post an event and return whether it was accepted by the
    current stage. Rejected events (guard failures, events the stage does not
    handle) leave the state unchanged.
    """

    def __init__(
        self,
        *,
        runner: TaskRunner | None = None,
        services: WorkflowServices | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._runner: TaskRunner = runner or InlineRunner()
        self._services = services or WorkflowServices()
        self._settings = settings or Settings.from_env()
        self._ctx = WorkflowContext()
        self._lock = threading.RLock()
        self._queue: deque[Event] = deque()
        self._draining = False
        self._token = 0

    # -- Observed state

    @property
    def stage(self) -> Stage:
        return self._ctx.stage

    def snapshot(self) -> WorkflowSnapshot:
        with self._lock:
            ctx = self._ctx
            parsed = ctx.parsed
            return WorkflowSnapshot(
                stage=ctx.stage,
                loading=ctx.loading,
                error=ctx.error,
                standard=tuple(parsed.standard) if parsed else (),
                check=tuple(parsed.check) if parsed else (),
                categories=dict(ctx.categories or {}),
                summary=ctx.summary,
            )

    def missing_inputs(self) -> list[str]:
        ctx = self._ctx
        missing = []
        if ctx.standard_file is None:
            missing.append("standard file")
        if ctx.check_file is None:
            missing.append("check file")
        if not ctx.credential.strip():
            missing.append("credential")
        return missing

    def require_inputs(self) -> None:
        """Raise :class:`InputMissing` naming every input that is not set yet."""

        missing = self.missing_inputs()
        if missing:
            raise InputMissing("missing " + ", ".join(missing))

    # -- External API

    def set_file(self, role: EntrySource | str, path: str | PathLike[str]) -> bool:
        payload = {"role": EntrySource(role), "path": Path(path)}
        return self._post(Event(EventType.SET_FILE, payload))

    def set_credential(self, credential: str) -> bool:
        return self._post(Event(EventType.SET_CREDENTIAL, {"credential": credential or ""}))

    def next(self) -> bool:
        return self._post(Event(EventType.NEXT))

    def back(self) -> bool:
        return self._post(Event(EventType.BACK))

    def skip(self) -> bool:
        return self._post(Event(EventType.SKIP))

    def move_entry(self, entry_id: str, from_category: str, to_category: str) -> bool:
        return self._post(
            Event(
                EventType.MOVE_ENTRY,
                {"entry_id": entry_id, "from": from_category, "to": to_category},
            )
        )

    def retry(self) -> bool:
        return self._post(Event(EventType.RETRY))

    def restart(self) -> bool:
        return self._post(Event(EventType.RESTART))

    # -- Event processing

    def _post(self, event: Event) -> bool:
        with self._lock:
            self._queue.append(event)
            if self._draining:
                return True
            self._draining = True
            first: bool | None = None
            try:
                while self._queue:
                    accepted = self._handle(self._queue.popleft())
                    if first is None:
                        first = accepted
            finally:
                self._draining = False
            return bool(first)

    def _guard(self, stage: Stage, event: Event) -> bool:
        ctx = self._ctx
        if event.type in (EventType.TASK_DONE, EventType.TASK_FAILED):
            if event.token != self._token:
                _logger.info("workflow:stale_result stage=%s event=%s", stage, event.type)
                return False
            return True
        if event.type is EventType.RETRY:
            return not ctx.loading
        if (stage, event.type) == (Stage.UPLOAD, EventType.NEXT):
            missing = self.missing_inputs()
            if missing:
                _logger.info("workflow:guard_blocked stage=upload missing=%s", ",".join(missing))
                return False
            return True
        if (stage, event.type) == (Stage.DISPLAY, EventType.NEXT):
            return ctx.parsed is not None
        if (stage, event.type) == (Stage.COMPARE, EventType.NEXT):
            return ctx.categories is not None
        return True

    def _handle(self, event: Event) -> bool:
        stage = self._ctx.stage
        key = (stage, event.type)
        target = TRANSITIONS.get(key)
        if target is None and key not in IN_STAGE_EVENTS:
            _logger.debug("workflow:ignored stage=%s event=%s", stage, event.type)
            return False
        if not self._guard(stage, event):
            return False
        if not self._apply(stage, event):
            return False
        if target is not None:
            _logger.info("workflow:transition from=%s to=%s event=%s", stage, target, event.type)
            self._enter(target)
        return True

    def _apply(self, stage: Stage, event: Event) -> bool:
        """Context changes carried by ``event`` before any transition."""

        ctx = self._ctx
        p = event.payload
        match event.type:
            case EventType.SET_FILE:
                if p["role"] is EntrySource.STANDARD:
                    ctx.standard_file = p["path"]
                else:
                    ctx.check_file = p["path"]
                ctx.error = None
            case EventType.SET_CREDENTIAL:
                ctx.credential = p["credential"]
            case EventType.BACK if stage in NETWORK_STAGES:
                # Results of the abandoned run must not land in another stage.
                self._token += 1
                ctx.loading = False
            case EventType.TASK_DONE:
                ctx.loading = False
                result = p.get("result")
                if stage is Stage.PARSE:
                    ctx.parsed = result
                elif stage is Stage.CLASSIFY:
                    ctx.categories, ctx.summary = result
                elif stage is Stage.SUMMARIZE:
                    ctx.summary = result
            case EventType.TASK_FAILED:
                ctx.loading = False
                err = p["error"]
                ctx.error = describe_failure(err) if stage is Stage.PARSE else _raw_message(err)
                _logger.warning(
                    "workflow:stage_failed stage=%s error=%s detail=%s",
                    stage,
                    err.__class__.__name__,
                    err,
                )
            case EventType.MOVE_ENTRY:
                try:
                    move_entry(ctx.categories or {}, p["entry_id"], p["from"], p["to"])
                except KeyError as e:
                    _logger.warning("workflow:move_rejected detail=%s", e)
                    return False
            case EventType.RESTART:
                self._token += 1
                self._ctx = WorkflowContext(credential=ctx.credential)
        return True

    def _enter(self, target: Stage) -> None:
        ctx = self._ctx
        ctx.stage = target
        match target:
            case Stage.PARSE:
                assert ctx.standard_file is not None and ctx.check_file is not None
                std, chk = ctx.standard_file, ctx.check_file
                client = self._client()
                self._start_task(
                    lambda: self._services.parse(std, chk, client, self._settings)
                )
            case Stage.CLASSIFY:
                parsed = ctx.parsed
                assert parsed is not None
                self._start_task(
                    lambda: self._services.classify(
                        self._require_client("classification"), parsed.standard, parsed.check
                    )
                )
            case Stage.CALCULATE:
                ctx.categories = calculate(ctx.categories or {})
                self._token += 1
                self._queue.append(Event(EventType.TASK_DONE, token=self._token))
            case Stage.SUMMARIZE:
                categories = ctx.categories or {}
                self._start_task(
                    lambda: self._services.summarize(self._require_client("summary"), categories)
                )

    def _start_task(self, fn: Callable[[], Any]) -> None:
        ctx = self._ctx
        ctx.error = None
        ctx.loading = True
        self._token += 1
        token = self._token
        self._runner.submit(
            fn,
            lambda result: self._post(Event(EventType.TASK_DONE, {"result": result}, token)),
            lambda err: self._post(Event(EventType.TASK_FAILED, {"error": err}, token)),
        )

    def _client(self) -> ChatClient | None:
        return self._services.client_factory(self._ctx.credential, self._settings)

    def _require_client(self, purpose: str) -> ChatClient:
        client = self._client()
        if client is None:
            raise RemoteCallFailed(
                f"The AI credential is missing or malformed; {purpose} needs the AI service."
            )
        return client


__all__ = [
    "IN_STAGE_EVENTS",
    "NETWORK_STAGES",
    "TRANSITIONS",
    "Event",
    "EventType",
    "InlineRunner",
    "ReconcileWorkflow",
    "Stage",
    "TaskRunner",
    "ThreadRunner",
    "WorkflowContext",
    "WorkflowServices",
    "WorkflowSnapshot",
    "describe_failure",
]
