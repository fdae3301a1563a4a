"""Sequencer — executes a run's stages in order against the ledger.

Run lifecycle (see boxoffice.models.sequence):
    IDLE → RUNNING(i) → COMPLETED
                      → FAILED(i, error)

For each stage i, starting at ``run.next_index``:
1. validate against the handles produced so far; a ValidationError or
   InvalidConfiguration fails the run before anything is submitted.
2. build the Operation (or call the stage's resolver).
3. submit, decode, and extract exactly the handles the stage declares.
4. record the handles, journal the stage, emit progress.
5. optionally wait until the produced handles are queryable.

Stage i+1 is never built before stage i's receipt is observed. The
first failure is terminal: no later stage is built and nothing earlier
is undone. Any other exception raised by a stage's own callables
becomes a StageError at that stage, so run() always ends terminal.
Retrying means a new run (SequenceRun.resume_from or
SagaJournal.rebuild_run); compensation means running retract stages.
"""

from __future__ import annotations

from typing import Optional

import structlog

from boxoffice.errors import (
    BoxOfficeError,
    LedgerError,
    MalformedReceipt,
    PartialSequenceFailure,
    StageError,
)
from boxoffice.ledger.client import LedgerClient
from boxoffice.ledger.finality import FinalityWaiter
from boxoffice.ledger.receipts import extract_handles, raise_for_status
from boxoffice.models.ledger import ObjectHandle
from boxoffice.models.sequence import (
    ProgressCallback,
    ProgressEvent,
    RunState,
    SequenceRun,
    Stage,
    StageStatus,
)
from boxoffice.orchestration.journal import SagaJournal

logger = structlog.get_logger(__name__)


class Sequencer:
    """Drives SequenceRuns to a terminal state.

    Usage:
        sequencer = Sequencer(ledger, finality=waiter, journal=journal)
        run = SequenceRun(intent="publish", stages=publish_stages(...))
        await sequencer.execute(run)
    """

    def __init__(
        self,
        ledger: LedgerClient,
        finality: Optional[FinalityWaiter] = None,
        journal: Optional[SagaJournal] = None,
    ) -> None:
        self._ledger = ledger
        self._finality = finality
        self._journal = journal

    async def run(
        self,
        run: SequenceRun,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SequenceRun:
        """Run every remaining stage; return the run in a terminal state.

        Stage failures are recorded on the run (``failed_index``,
        ``error``) rather than raised.

        Raises:
            ValueError: if the run has already been started.
        """
        if run.state != RunState.IDLE:
            raise ValueError(
                f"Run {run.run_id} is {run.state.value}; start a new run instead"
            )
        log = logger.bind(run_id=run.run_id, intent=run.intent)
        log.info(
            "run_started",
            stages=len(run.stages),
            start_index=run.next_index,
            resumed_from=run.resumed_from,
        )

        pending: list[ObjectHandle] = []
        while run.next_index < len(run.stages):
            index = run.next_index
            stage = run.stages[index]
            try:
                if pending:
                    await self._await_visible(pending, stage)
                    pending = []
                pending = await self._run_stage(run, index, stage, on_progress)
            except BoxOfficeError as exc:
                self._fail(run, index, stage, exc, on_progress)
                log.warning(
                    "run_failed",
                    stage_index=index,
                    stage_id=stage.stage_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    handles=sorted(run.handles),
                )
                return run

        if run.state == RunState.IDLE:
            # Nothing left to run (e.g. a resumed run whose stages all completed).
            run.transition_to(RunState.RUNNING)
        run.transition_to(RunState.COMPLETED)
        if self._journal is not None:
            self._journal.run_completed(run)
        log.info("run_completed", handles=sorted(run.handles))
        return run

    async def execute(
        self,
        run: SequenceRun,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SequenceRun:
        """Like run(), but raise when the run fails.

        Raises:
            ValidationError, InvalidConfiguration: local precondition
                failures at the first stage of the run.
            LedgerError: ledger-side failure at the first stage of the
                run (tagged with the stage id).
            StageError: a stage's own callable raised at the first stage.
            PartialSequenceFailure: any failure after earlier stages
                took effect on the ledger.
        """
        await self.run(run, on_progress)
        if run.state == RunState.COMPLETED:
            return run
        assert run.failed_index is not None and run.error is not None
        if run.failed_index == 0:
            raise run.error
        raise PartialSequenceFailure(
            run_id=run.run_id,
            stage_index=run.failed_index,
            stage_id=run.failed_stage_id or "",
            handles=run.handles,
            cause=run.error,
        ) from run.error

    async def _run_stage(
        self,
        run: SequenceRun,
        index: int,
        stage: Stage,
        on_progress: Optional[ProgressCallback],
    ) -> list[ObjectHandle]:
        """Run one stage; return the handles to wait on before the next."""
        if stage.validate is not None:
            try:
                stage.validate(dict(run.handles))
            except BoxOfficeError:
                raise
            except Exception as exc:
                raise StageError(stage.stage_id, exc) from exc

        if run.state == RunState.IDLE:
            run.transition_to(RunState.RUNNING)
            if self._journal is not None:
                self._journal.run_started(run)
        _emit(on_progress, ProgressEvent(
            run_id=run.run_id,
            stage_index=index,
            stage_id=stage.stage_id,
            status=StageStatus.STARTED,
        ))

        digest: Optional[str] = None
        try:
            if stage.build is not None:
                operation = stage.build(dict(run.handles))
                logger.debug(
                    "stage_submitting",
                    run_id=run.run_id,
                    stage_id=stage.stage_id,
                    target=operation.action,
                    budget=operation.budget,
                )
                receipt = raise_for_status(await self._ledger.submit(operation))
                digest = receipt.digest
                produced = extract_handles(receipt, stage.produces)
                if stage.inspect is not None:
                    stage.inspect(receipt)
            else:
                produced = _check_resolved(stage, await stage.resolve(dict(run.handles)))
        except LedgerError as exc:
            raise exc.at_stage(stage.stage_id)
        except BoxOfficeError:
            raise
        except Exception as exc:
            raise StageError(stage.stage_id, exc) from exc

        for key, handle in produced.items():
            run.handles[key] = handle
        if digest is not None:
            run.digests[stage.stage_id] = digest
        if self._journal is not None:
            self._journal.stage_completed(run, index, produced, digest)
        run.next_index = index + 1

        logger.info(
            "stage_succeeded",
            run_id=run.run_id,
            stage_index=index,
            stage_id=stage.stage_id,
            digest=digest,
            produced={k: h.object_id for k, h in produced.items()},
        )
        _emit(on_progress, ProgressEvent(
            run_id=run.run_id,
            stage_index=index,
            stage_id=stage.stage_id,
            status=StageStatus.SUCCEEDED,
            handles=dict(produced),
            digest=digest,
        ))

        if stage.await_finality and self._finality is not None:
            return list(produced.values())
        return []

    async def _await_visible(self, handles: list[ObjectHandle], next_stage: Stage) -> None:
        # Failure is charged to the stage that could not start.
        try:
            await self._finality.wait_for(handles)
        except LedgerError as exc:
            raise exc.at_stage(next_stage.stage_id)

    def _fail(
        self,
        run: SequenceRun,
        index: int,
        stage: Stage,
        exc: BoxOfficeError,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        started = run.state == RunState.RUNNING
        run.failed_index = index
        run.error = exc
        run.transition_to(RunState.FAILED)
        if self._journal is not None and started:
            self._journal.run_failed(run)
        _emit(on_progress, ProgressEvent(
            run_id=run.run_id,
            stage_index=index,
            stage_id=stage.stage_id,
            status=StageStatus.FAILED,
            error=str(exc),
        ))


def _check_resolved(stage: Stage, resolved) -> dict[str, ObjectHandle]:
    produced: dict[str, ObjectHandle] = {}
    for spec in stage.produces:
        handle = resolved.get(spec.key)
        if handle is None or handle.logical_type != spec.logical_type:
            raise MalformedReceipt(
                f"Stage {stage.stage_id} did not resolve a "
                f"{spec.logical_type.value} handle for '{spec.key}'"
            )
        produced[spec.key] = handle
    return produced


def _emit(on_progress: Optional[ProgressCallback], event: ProgressEvent) -> None:
    if on_progress is not None:
        on_progress(event)
