"""Error taxonomy for the orchestrator and the economics engine.

Three families, distinguished by how they propagate:

- Local errors (InvalidConfiguration, ValidationError) are raised before
  any Operation is built. They never reach the ledger and leave no
  partial side effects.
- Ledger errors (LedgerRejection, LedgerTransportError and its
  TransientLookupError, MalformedReceipt, FinalityTimeout) describe
  what happened at or after submission. A ledger error at stage i > 0 of
  a multi-stage run is wrapped in PartialSequenceFailure, because stages
  0..i-1 have already taken permanent effect.
- StageError wraps anything else a stage's own callables raise, so a
  bug in a builder still ends the run in a failed state.

There is no automatic retry and no rollback anywhere in this package.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Mapping, Optional

if TYPE_CHECKING:
    from boxoffice.models.ledger import ObjectHandle


class BoxOfficeError(Exception):
    """Root of every error raised by boxoffice."""


class InvalidConfiguration(BoxOfficeError, ValueError):
    """A SplitConfig, TaxConfig or marketplace parameter is malformed."""


class ValidationError(BoxOfficeError, ValueError):
    """A caller-side precondition failed (non-positive price, zero supply...)."""


class LedgerError(BoxOfficeError):
    """Base for failures reported by, or while talking to, the ledger."""

    stage_id: Optional[str] = None

    def at_stage(self, stage_id: str) -> LedgerError:
        """Tag the error with the stage that produced it and return it."""
        self.stage_id = stage_id
        return self


class LedgerRejection(LedgerError):
    """The ledger executed the Operation and rejected it.

    Carries the ledger-native abort code and module so callers can map
    it to a user-facing message (see boxoffice.ledger.aborts).
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        module: Optional[str] = None,
        digest: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.module = module
        self.digest = digest

    @property
    def user_message(self) -> str:
        from boxoffice.ledger.aborts import describe_abort

        if self.code is None or self.module is None:
            return str(self)
        return describe_abort(self.module, self.code)


class LedgerTransportError(LedgerError):
    """The ledger could not be reached; the outcome is unknown."""


class TransientLookupError(LedgerTransportError):
    """A read-only query failed transiently (retrying may succeed)."""


class MalformedReceipt(LedgerError):
    """A ledger response did not match the receipt schema."""


class FinalityTimeout(LedgerError):
    """Produced objects did not become queryable within the retry budget."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class StageError(BoxOfficeError):
    """A stage's own code (validate, build, resolve or inspect) raised.

    Wraps the unexpected exception so the run still fails at that stage.
    """

    def __init__(self, stage_id: str, cause: BaseException) -> None:
        super().__init__(f"Stage {stage_id} raised {type(cause).__name__}: {cause}")
        self.stage_id = stage_id
        self.cause = cause


class PartialSequenceFailure(BoxOfficeError):
    """A multi-stage run failed after at least one stage took effect.

    Attributes:
        run_id: The failed run.
        stage_index: Index of the failing stage (always > 0).
        stage_id: Name of the failing stage.
        handles: Handles already produced by stages 0..stage_index-1.
            These objects exist on the ledger and must be dealt with.
        cause: The underlying ledger error.
    """

    def __init__(
        self,
        run_id: str,
        stage_index: int,
        stage_id: str,
        handles: Mapping[str, ObjectHandle],
        cause: BaseException,
    ) -> None:
        super().__init__(
            f"Run {run_id} failed at stage {stage_index} ({stage_id}) after "
            f"{len(handles)} handle(s) were created: {cause}"
        )
        self.run_id = run_id
        self.stage_index = stage_index
        self.stage_id = stage_id
        self.handles = dict(handles)
        self.cause = cause
