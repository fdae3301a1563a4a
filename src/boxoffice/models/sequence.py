"""Sequence models — stages, runs, and progress events.

Run lifecycle:
    IDLE → RUNNING → COMPLETED
    IDLE → RUNNING → FAILED
    IDLE → FAILED              (pre-submission validation at stage 0)

COMPLETED and FAILED are terminal. A finished run is never resumed;
resuming a failed publish creates a fresh run seeded with the handles
the failed run already produced (see SequenceRun.resume_from).
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional

from boxoffice.models.ledger import LogicalType, ObjectHandle, Operation, Receipt

HandleMap = Mapping[str, ObjectHandle]


class RunState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


RUN_TRANSITIONS: dict[RunState, frozenset] = {
    RunState.IDLE: frozenset({RunState.RUNNING, RunState.FAILED}),
    RunState.RUNNING: frozenset({RunState.COMPLETED, RunState.FAILED}),
    RunState.COMPLETED: frozenset(),
    RunState.FAILED: frozenset(),
}


class StageStatus(str, enum.Enum):
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class HandleSpec:
    """A handle a stage must produce: map key and expected logical type."""
    key: str
    logical_type: LogicalType


@dataclass(frozen=True)
class Stage:
    """One named step of a run.

    Exactly one of ``build`` or ``resolve`` is set:
    - ``build`` turns the handles produced so far into an Operation that
      the Sequencer submits; the produced handles are read from its Receipt.
    - ``resolve`` is a coroutine returning the produced handles directly,
      for stages backed by a resolver (find-or-create container).

    ``validate`` runs before anything is built. It raises ValidationError
    for preconditions the caller should have checked; nothing is
    submitted when it fails.

    ``inspect`` is handed the successful Receipt of a ``build`` stage
    once, before it is discarded (e.g. to check balance deltas).
    """
    stage_id: str
    produces: tuple[HandleSpec, ...] = ()
    build: Optional[Callable[[HandleMap], Operation]] = None
    resolve: Optional[Callable[[HandleMap], Awaitable[HandleMap]]] = None
    validate: Optional[Callable[[HandleMap], None]] = None
    inspect: Optional[Callable[[Receipt], None]] = None
    await_finality: bool = False

    def __post_init__(self) -> None:
        if (self.build is None) == (self.resolve is None):
            raise ValueError(
                f"Stage {self.stage_id} needs exactly one of build or resolve"
            )


@dataclass(frozen=True)
class ProgressEvent:
    """Stage-level progress notification emitted by the Sequencer."""
    run_id: str
    stage_index: int
    stage_id: str
    status: StageStatus
    handles: dict[str, ObjectHandle] = field(default_factory=dict)
    digest: Optional[str] = None
    error: Optional[str] = None


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class SequenceRun:
    """Runtime state of one orchestration.

    Mutable — the Sequencer advances ``next_index`` and fills ``handles``
    as stages complete. All state changes go through ``transition_to``.
    """
    intent: str
    stages: list[Stage]
    run_id: str = field(default_factory=lambda: f"run_{uuid.uuid4().hex[:12]}")
    state: RunState = RunState.IDLE
    next_index: int = 0
    handles: dict[str, ObjectHandle] = field(default_factory=dict)
    digests: dict[str, str] = field(default_factory=dict)
    failed_index: Optional[int] = None
    error: Optional[BaseException] = None
    resumed_from: Optional[str] = None
    context: dict[str, Any] = field(default_factory=dict)

    def transition_to(self, new_state: RunState) -> None:
        """Transition to a new state, validating the transition is legal."""
        allowed = RUN_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid run transition: {self.state.value} → {new_state.value}. "
                f"Allowed: {', '.join(s.value for s in allowed) or 'none'}"
            )
        self.state = new_state

    @property
    def is_terminal(self) -> bool:
        return self.state in (RunState.COMPLETED, RunState.FAILED)

    @property
    def failed_stage_id(self) -> Optional[str]:
        if self.failed_index is None:
            return None
        return self.stages[self.failed_index].stage_id

    def completed_stage_ids(self) -> list[str]:
        upto = self.failed_index if self.failed_index is not None else self.next_index
        return [s.stage_id for s in self.stages[:upto]]

    @staticmethod
    def resume_from(
        failed: SequenceRun,
        stages: Optional[list[Stage]] = None,
    ) -> SequenceRun:
        """Create a fresh run that continues where ``failed`` stopped.

        The new run starts at the failed stage with every handle the
        failed run produced. ``stages`` may replace the stage list (e.g.
        rebuilt after a restart); it must have the same stage ids.
        """
        if failed.state != RunState.FAILED or failed.failed_index is None:
            raise ValueError(f"Run {failed.run_id} is not a failed run")
        new_stages = list(stages) if stages is not None else list(failed.stages)
        if [s.stage_id for s in new_stages] != [s.stage_id for s in failed.stages]:
            raise ValueError("Resumed run must keep the same stage ids")
        return SequenceRun(
            intent=failed.intent,
            stages=new_stages,
            next_index=failed.failed_index,
            handles=dict(failed.handles),
            digests=dict(failed.digests),
            resumed_from=failed.run_id,
            context=dict(failed.context),
        )
