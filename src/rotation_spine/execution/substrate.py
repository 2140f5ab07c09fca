"""
Durable-execution substrate and checkpoint runner.

Manifesto:
    Pipeline code never reads the clock, sleeps, or talks to the network
    on its own.  It asks the substrate.  That is what makes a run
    resumable: a unit of work is a pure function of its checkpoint plus
    whatever the substrate hands back, so it can be re-executed on a
    different worker after a crash with the same outcome.

    Continuation replaces "loop forever in-process".  A workflow that has
    done its bounded share of work calls ``ctx.continue_as_new(state)``;
    the runner persists ``state`` as a versioned checkpoint, throws away
    everything else, and invokes the workflow again from that record.

Architecture:
    ::

        LocalSubstrate.start(name, args) ──► run_checkpoints row (seq 0)
                                               │
        LocalSubstrate.drive(run_id) ◄─────────┘
            loop:
              state  = decode_checkpoint(row.payload)
              ctx    = WorkflowContext(now = clock() at execution start)
              result = workflow(ctx, state)
                 ├─ raises ContinueAsNew(state') → save_checkpoint(seq+1), loop
                 ├─ raises RunCancelledError     → status "cancelled"
                 ├─ raises anything else         → status "failed", re-raise
                 └─ returns                      → status "completed"

Examples:
    >>> registry = WorkflowRegistry()
    >>> registry.register("noop", lambda ctx, state: {"ok": True})
    >>> substrate = LocalSubstrate(store, registry, sleeper=lambda s: None)
    >>> handle = substrate.start("noop", {})
    >>> substrate.drive(handle.run_id).status
    'completed'

Guardrails:
    ❌ DON'T: call ``datetime.now()`` or ``time.sleep()`` inside a workflow
    ✅ DO: use ``ctx.now()`` and ``ctx.sleep()``

    ❌ DON'T: keep state in module globals between executions
    ✅ DO: put everything needed to resume in the continuation state

Tags:
    durable-execution, checkpoint, continue-as-new, resume, rotation-spine
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, NoReturn, Protocol, TypeVar, runtime_checkable

from rotation_spine.core.checkpoint import decode_checkpoint, encode_checkpoint
from rotation_spine.core.errors import (
    DeterminismError,
    InputError,
    RotationError,
    RunCancelledError,
    WorkflowNotFoundError,
)
from rotation_spine.core.logging import LogContext, get_logger
from rotation_spine.core.store import RotationStore
from rotation_spine.core.timestamps import format_cursor, generate_ulid, utc_now
from rotation_spine.execution.retry import RetryContext, RetryPolicy

T = TypeVar("T")

logger = get_logger(__name__)


class ContinueAsNew(Exception):
    """Control-flow signal: end this execution and resume from *state*."""

    def __init__(self, state: dict[str, Any]):
        super().__init__("continue-as-new")
        self.state = state


@dataclass(frozen=True, slots=True)
class RunHandle:
    run_id: str
    execution_id: str


@dataclass(frozen=True)
class RunOutcome:
    """What :meth:`LocalSubstrate.drive` observed."""

    run_id: str
    status: str
    executions: int
    checkpoints: int
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None


@runtime_checkable
class DurableSubstrate(Protocol):
    """Operations the deterministic core is allowed to perform."""

    def now(self) -> datetime: ...

    def sleep(self, seconds: float) -> None: ...

    def retryable_call(self, fn: Callable[[], T], policy: RetryPolicy | None = None) -> T: ...

    def continue_as_new(self, state: dict[str, Any]) -> NoReturn: ...

    def start(self, name: str, args: dict[str, Any]) -> RunHandle: ...


Workflow = Callable[["WorkflowContext", dict[str, Any]], dict[str, Any] | None]


class WorkflowRegistry:
    """Name → workflow function lookup.

    Instances are built explicitly and handed to the substrate, so tests
    get a clean registry without global state.
    """

    def __init__(self) -> None:
        self._workflows: dict[str, Workflow] = {}

    def register(self, name: str, workflow: Workflow) -> Workflow:
        if name in self._workflows:
            raise ValueError(f"Workflow '{name}' is already registered")
        self._workflows[name] = workflow
        logger.debug("workflow.registered", name=name)
        return workflow

    def get(self, name: str) -> Workflow:
        if name not in self._workflows:
            raise WorkflowNotFoundError(name)
        return self._workflows[name]

    def names(self) -> list[str]:
        return sorted(self._workflows)

    def __contains__(self, name: object) -> bool:
        return name in self._workflows


@dataclass
class WorkflowContext:
    """Per-execution view of the substrate handed to workflow code.

    ``now()`` is the time the execution started, fixed for its lifetime.
    Using the context after its execution ended raises
    :class:`DeterminismError`.
    """

    substrate: LocalSubstrate
    workflow: str
    run_id: str
    execution_id: str
    started_at: datetime
    default_policy: RetryPolicy = field(default_factory=RetryPolicy)
    _closed: bool = field(default=False, init=False)

    @property
    def store(self) -> RotationStore:
        return self.substrate.store

    def now(self) -> datetime:
        self._ensure_open("now")
        return self.started_at

    def sleep(self, seconds: float) -> None:
        self._ensure_open("sleep")
        if seconds > 0:
            self.substrate.sleeper(seconds)

    def retryable_call(self, fn: Callable[[], T], policy: RetryPolicy | None = None) -> T:
        self._ensure_open("retryable_call")
        return RetryContext(policy or self.default_policy, sleep=self.substrate.sleeper).run(fn)

    def continue_as_new(self, state: dict[str, Any]) -> NoReturn:
        self._ensure_open("continue_as_new")
        raise ContinueAsNew(state)

    def start(self, name: str, args: dict[str, Any]) -> RunHandle:
        self._ensure_open("start")
        return self.substrate.start(name, args)

    def check_cancelled(self) -> None:
        """Raise :class:`RunCancelledError` if cancellation was requested."""
        self._ensure_open("check_cancelled")
        with self.store.unit_of_work() as repo:
            cancelled = repo.is_cancel_requested(self.run_id)
        if cancelled:
            raise RunCancelledError(f"Run {self.run_id} was cancelled").with_context(
                run_id=self.run_id, workflow=self.workflow
            )

    def close(self) -> None:
        self._closed = True

    def _ensure_open(self, operation: str) -> None:
        if self._closed:
            raise DeterminismError(
                f"{operation}() called after execution {self.execution_id} ended"
            ).with_context(run_id=self.run_id, execution_id=self.execution_id, workflow=self.workflow)


class LocalSubstrate:
    """In-process substrate backed by the run_checkpoints table.

    Args:
        store: Persistent store holding run records.
        registry: Workflows that may be started.
        clock: Wall clock, read once per execution.
        sleeper: Blocking sleep used for ``ctx.sleep`` and retry backoff.
        retry_policy: Default policy for ``retryable_call``.
        id_factory: Run and execution id generator.
    """

    def __init__(
        self,
        store: RotationStore,
        registry: WorkflowRegistry,
        *,
        clock: Callable[[], datetime] = utc_now,
        sleeper: Callable[[float], None] = time.sleep,
        retry_policy: RetryPolicy | None = None,
        id_factory: Callable[[], str] = generate_ulid,
    ) -> None:
        self.store = store
        self.registry = registry
        self.clock = clock
        self.sleeper = sleeper
        self.retry_policy = retry_policy or RetryPolicy()
        self.id_factory = id_factory

    # -- run lifecycle -------------------------------------------------------------

    def start(self, name: str, args: dict[str, Any]) -> RunHandle:
        """Record a new run; nothing executes until :meth:`drive`."""
        self.registry.get(name)
        payload = encode_checkpoint(name, args)
        handle = RunHandle(run_id=self.id_factory(), execution_id=self.id_factory())
        with self.store.unit_of_work() as repo:
            repo.create_run(handle.run_id, name, handle.execution_id, payload, format_cursor(self.clock()))
        logger.info("run.started", workflow=name, run_id=handle.run_id, execution_id=handle.execution_id)
        return handle

    def run(self, name: str, args: dict[str, Any], *, max_executions: int | None = None) -> RunOutcome:
        handle = self.start(name, args)
        return self.drive(handle.run_id, max_executions=max_executions)

    def cancel(self, run_id: str) -> None:
        with self.store.unit_of_work() as repo:
            repo.request_cancel(run_id)
        logger.info("run.cancel_requested", run_id=run_id)

    def resume(self, run_id: str, *, max_executions: int | None = None) -> RunOutcome:
        """Restart a run from its last persisted checkpoint."""
        with self.store.unit_of_work() as repo:
            record = repo.get_run(run_id)
            if record is None:
                raise InputError(f"Unknown run: {run_id}", field_name="run_id")
            if record.status == "completed":
                return RunOutcome(
                    run_id=run_id, status="completed", executions=0, checkpoints=0, result=record.result
                )
            record.cancel_requested = False
        logger.info("run.resumed", run_id=run_id)
        return self.drive(run_id, max_executions=max_executions)

    def drive(self, run_id: str, *, max_executions: int | None = None) -> RunOutcome:
        """Execute *run_id* until it completes, fails, is cancelled or hits *max_executions*."""
        with self.store.unit_of_work() as repo:
            record = repo.get_run(run_id)
            if record is None:
                raise InputError(f"Unknown run: {run_id}", field_name="run_id")
            name = record.workflow
            state = decode_checkpoint(record.payload, workflow=name)
            execution_id = record.execution_id if record.status == "pending" else self.id_factory()
        workflow = self.registry.get(name)

        executions = 0
        checkpoints = 0
        while True:
            if max_executions is not None and executions >= max_executions:
                return RunOutcome(run_id=run_id, status="continued", executions=executions, checkpoints=checkpoints)

            ctx = WorkflowContext(
                substrate=self,
                workflow=name,
                run_id=run_id,
                execution_id=execution_id,
                started_at=self.clock(),
                default_policy=self.retry_policy,
            )
            with self.store.unit_of_work() as repo:
                repo.mark_run(run_id, "running", execution_id=execution_id)
            executions += 1

            try:
                with LogContext(workflow=name, run_id=run_id, execution_id=execution_id):
                    result = workflow(ctx, state)
            except ContinueAsNew as cont:
                payload = encode_checkpoint(name, cont.state)
                with self.store.unit_of_work() as repo:
                    sequence = repo.save_checkpoint(run_id, execution_id, payload)
                checkpoints += 1
                logger.info("run.continued", workflow=name, run_id=run_id, sequence=sequence)
                state = decode_checkpoint(payload, workflow=name)
                execution_id = self.id_factory()
                continue
            except RunCancelledError as exc:
                error = exc.with_context(execution_id=execution_id).to_dict()
                with self.store.unit_of_work() as repo:
                    repo.mark_run(run_id, "cancelled", error=error)
                logger.warning("run.cancelled", workflow=name, run_id=run_id)
                return RunOutcome(
                    run_id=run_id, status="cancelled", executions=executions, checkpoints=checkpoints, error=error
                )
            except RotationError as exc:
                error = exc.with_context(run_id=run_id, execution_id=execution_id, workflow=name).to_dict()
                self._record_failure(run_id, error)
                raise
            except Exception as exc:
                error = {"error_type": type(exc).__name__, "message": str(exc), "category": "INTERNAL"}
                self._record_failure(run_id, error)
                raise
            finally:
                ctx.close()

            summary = dict(result or {})
            with self.store.unit_of_work() as repo:
                repo.mark_run(run_id, "completed", result=summary)
            logger.info("run.completed", workflow=name, run_id=run_id, checkpoints=checkpoints)
            return RunOutcome(
                run_id=run_id, status="completed", executions=executions, checkpoints=checkpoints, result=summary
            )

    def _record_failure(self, run_id: str, error: dict[str, Any]) -> None:
        with self.store.unit_of_work() as repo:
            repo.mark_run(run_id, "failed", error=error)
        logger.error("run.failed", run_id=run_id, **{k: v for k, v in error.items() if k != "context"})


__all__ = [
    "ContinueAsNew",
    "RunHandle",
    "RunOutcome",
    "DurableSubstrate",
    "Workflow",
    "WorkflowRegistry",
    "WorkflowContext",
    "LocalSubstrate",
]
