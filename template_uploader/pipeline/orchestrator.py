"""Task orchestrator: runs a fixed graph of named tasks on asyncio.

Tasks are declared with explicit dependency lists.  A task starts the moment
every dependency has succeeded; independent tasks run concurrently with no
cap.  Each body receives a read-only mapping holding exactly the results of
its declared dependencies, so dependency edges are the only data flow.

A body finishes in one of three ways:

    value            → succeeded
    Abort(reason)    → aborted (voluntary cancellation, e.g. a declined prompt)
    raised exception → failed

Tasks downstream of an aborted, failed or skipped task never start and end
up ``skipped``; unrelated branches keep running to completion.  Tasks
declared with ``always=True`` (cleanup) start once every dependency has
settled, whatever the outcome, and their failures are logged but never
change the run outcome.

Usage::

    orchestrator = TaskOrchestrator()
    orchestrator.declare("fetch", [], fetch)
    orchestrator.declare("parse", ["fetch"], lambda deps: parse(deps["fetch"]))
    outcome = await orchestrator.run()
    if isinstance(outcome, Completed):
        print(outcome.results["parse"])
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Sequence, Union

from template_uploader.errors import GraphError

logger = logging.getLogger(__name__)

TaskBody = Callable[[Mapping[str, Any]], Union[Any, Awaitable[Any]]]


# ---------------------------------------------------------------------------
# Result variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Abort:
    """Returned by a task body to cancel the run voluntarily."""
    reason: str


@dataclass(frozen=True)
class Completed:
    """Every non-cleanup task succeeded."""
    results: Mapping[str, Any]


@dataclass(frozen=True)
class Aborted:
    """A task returned Abort; downstream tasks were skipped."""
    task: str
    reason: str


@dataclass(frozen=True)
class Failed:
    """At least one task raised.  ``task``/``cause`` name the first by declaration."""
    task: str
    cause: BaseException
    failures: Mapping[str, BaseException] = field(default_factory=dict)


Outcome = Union[Completed, Aborted, Failed]


# ---------------------------------------------------------------------------
# Task bookkeeping
# ---------------------------------------------------------------------------

class TaskState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    ABORTED = "aborted"
    FAILED = "failed"
    SKIPPED = "skipped"      # A dependency did not succeed; never started


_SETTLED = {TaskState.SUCCEEDED, TaskState.ABORTED, TaskState.FAILED, TaskState.SKIPPED}
_BLOCKING = {TaskState.ABORTED, TaskState.FAILED, TaskState.SKIPPED}


class RunState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass
class TaskSpec:
    name: str
    depends_on: tuple[str, ...]
    body: TaskBody
    always: bool = False


@dataclass
class TaskRecord:
    state: TaskState = TaskState.PENDING
    value: Any = None
    abort: Abort | None = None
    error: BaseException | None = None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class TaskOrchestrator:
    """Single-shot DAG executor for a small, fixed set of tasks."""

    def __init__(self):
        self._specs: dict[str, TaskSpec] = {}
        self._records: dict[str, TaskRecord] = {}
        self._run_state = RunState.IDLE

    @property
    def run_state(self) -> RunState:
        return self._run_state

    def declare(
        self,
        name: str,
        depends_on: Sequence[str],
        body: TaskBody,
        *,
        always: bool = False,
    ) -> None:
        """Add a task. Coroutine bodies are awaited; plain bodies run in a thread."""
        if self._run_state is not RunState.IDLE:
            raise GraphError("Cannot declare tasks after the run has started")
        if name in self._specs:
            raise GraphError(f"Task {name!r} is already declared")
        if name in depends_on:
            raise GraphError(f"Task {name!r} depends on itself")
        self._specs[name] = TaskSpec(name, tuple(depends_on), body, always)
        self._records[name] = TaskRecord()

    def state(self, name: str) -> TaskState:
        return self._records[name].state

    def states(self) -> dict[str, TaskState]:
        return {name: rec.state for name, rec in self._records.items()}

    # -- Validation ----------------------------------------------------------

    def validate(self) -> None:
        """Reject unknown dependencies and cycles."""
        for spec in self._specs.values():
            unknown = [d for d in spec.depends_on if d not in self._specs]
            if unknown:
                raise GraphError(f"Task {spec.name!r} depends on unknown task(s): "
                                 f"{', '.join(unknown)}")

        visiting: set[str] = set()
        done: set[str] = set()

        def visit(name: str, path: list[str]) -> None:
            if name in done:
                return
            if name in visiting:
                cycle = path[path.index(name):] + [name]
                raise GraphError(f"Dependency cycle: {' -> '.join(cycle)}")
            visiting.add(name)
            for dep in self._specs[name].depends_on:
                visit(dep, path + [name])
            visiting.discard(name)
            done.add(name)

        for name in self._specs:
            visit(name, [])

    # -- Execution -----------------------------------------------------------

    async def run(self) -> Outcome:
        """Execute the graph and return its terminal outcome."""
        if self._run_state is not RunState.IDLE:
            raise RuntimeError("TaskOrchestrator.run() may only be called once")
        self.validate()
        self._run_state = RunState.RUNNING

        running: dict[asyncio.Task, str] = {}
        try:
            while True:
                self._skip_blocked()
                for name in self._eligible():
                    self._records[name].state = TaskState.RUNNING
                    logger.info("Task %s started", name)
                    task = asyncio.create_task(self._execute(self._specs[name]), name=name)
                    running[task] = name
                if not running:
                    break
                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    self._settle(running.pop(task), task.result())
        finally:
            if running:
                for task in running:
                    task.cancel()
                await asyncio.gather(*running, return_exceptions=True)

        outcome = self._outcome()
        self._run_state = {
            Completed: RunState.COMPLETED,
            Aborted: RunState.ABORTED,
            Failed: RunState.FAILED,
        }[type(outcome)]
        return outcome

    def _eligible(self) -> list[str]:
        eligible = []
        for name, spec in self._specs.items():
            if self._records[name].state is not TaskState.PENDING:
                continue
            dep_states = [self._records[d].state for d in spec.depends_on]
            if spec.always:
                ready = all(s in _SETTLED for s in dep_states)
            else:
                ready = all(s is TaskState.SUCCEEDED for s in dep_states)
            if ready:
                eligible.append(name)
        return eligible

    def _skip_blocked(self) -> None:
        """Mark pending tasks behind a non-succeeded dependency as skipped."""
        changed = True
        while changed:
            changed = False
            for name, spec in self._specs.items():
                record = self._records[name]
                if spec.always or record.state is not TaskState.PENDING:
                    continue
                blocked = [d for d in spec.depends_on
                           if self._records[d].state in _BLOCKING]
                if blocked:
                    record.state = TaskState.SKIPPED
                    logger.info("Task %s skipped (blocked by %s)", name, ", ".join(blocked))
                    changed = True

    async def _execute(self, spec: TaskSpec) -> tuple[TaskState, Any]:
        deps = MappingProxyType({
            d: self._records[d].value
            for d in spec.depends_on
            if self._records[d].state is TaskState.SUCCEEDED
        })
        try:
            if inspect.iscoroutinefunction(spec.body):
                value = await spec.body(deps)
            else:
                value = await asyncio.to_thread(spec.body, deps)
                if inspect.isawaitable(value):
                    value = await value
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return TaskState.FAILED, exc
        if isinstance(value, Abort):
            return TaskState.ABORTED, value
        return TaskState.SUCCEEDED, value

    def _settle(self, name: str, result: tuple[TaskState, Any]) -> None:
        state, payload = result
        record = self._records[name]
        record.state = state
        if state is TaskState.SUCCEEDED:
            record.value = payload
            logger.info("Task %s succeeded", name)
        elif state is TaskState.ABORTED:
            record.abort = payload
            logger.info("Task %s aborted: %s", name, payload.reason)
        else:
            record.error = payload
            if self._specs[name].always:
                logger.warning("Cleanup task %s failed: %s", name, payload)
            else:
                logger.error("Task %s failed: %s", name, payload)

    def _outcome(self) -> Outcome:
        counted = [n for n, s in self._specs.items() if not s.always]

        for name in counted:
            record = self._records[name]
            if record.state is TaskState.ABORTED:
                return Aborted(task=name, reason=record.abort.reason)

        failures = {
            name: self._records[name].error
            for name in counted
            if self._records[name].state is TaskState.FAILED
        }
        if failures:
            first = next(iter(failures))
            return Failed(task=first, cause=failures[first], failures=failures)

        return Completed(results=MappingProxyType({
            name: rec.value for name, rec in self._records.items()
            if rec.state is TaskState.SUCCEEDED
        }))
