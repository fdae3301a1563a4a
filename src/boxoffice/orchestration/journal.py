"""Saga journal — durable record of what each run has already done.

The ledger has no cross-operation atomicity, so a publish that fails
at stage 3 leaves the event, the ticket classes and the minted ticket
on the ledger. The journal records every completed stage together
with the handles it produced, so that after a crash or a failed stage
a new run can continue from the first incomplete stage instead of
re-running stage 0.

Records are immutable and hash-sealed. The journal can be persisted to
a JSONL file (one JSON object per line) and loaded back; loading
rejects tampered lines (hash mismatch) and duplicate record ids
(replay protection).
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

from boxoffice.models.ledger import LogicalType, ObjectHandle
from boxoffice.models.sequence import SequenceRun, Stage


class JournalKind(str, enum.Enum):
    RUN_STARTED = "run_started"
    STAGE_COMPLETED = "stage_completed"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"


def _canonical_hash(
    record_id: str,
    run_id: str,
    kind: str,
    timestamp_utc: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "record_id": record_id,
            "run_id": run_id,
            "kind": kind,
            "timestamp_utc": timestamp_utc,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class JournalRecord:
    """One immutable journal entry."""
    record_id: str
    run_id: str
    kind: JournalKind
    timestamp_utc: str
    payload: dict[str, Any]
    record_hash: str

    @staticmethod
    def create(
        record_id: str,
        run_id: str,
        kind: JournalKind,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> JournalRecord:
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return JournalRecord(
            record_id=record_id,
            run_id=run_id,
            kind=kind,
            timestamp_utc=ts_str,
            payload=payload,
            record_hash=_canonical_hash(record_id, run_id, kind.value, ts_str, payload),
        )


def _encode_handles(handles: Mapping[str, ObjectHandle]) -> dict[str, dict[str, str]]:
    return {
        key: {"object_id": h.object_id, "logical_type": h.logical_type.value}
        for key, h in handles.items()
    }


def _decode_handles(data: Mapping[str, Mapping[str, str]]) -> dict[str, ObjectHandle]:
    return {
        key: ObjectHandle(h["object_id"], LogicalType(h["logical_type"]))
        for key, h in data.items()
    }


class SagaJournal:
    """Append-only journal of run progress with optional file persistence.

    Usage:
        journal = SagaJournal(Path("runs.jsonl"))
        sequencer = Sequencer(ledger, journal=journal)
        ...
        resumed = journal.rebuild_run(run_id, publish_stages(...))
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._records: list[JournalRecord] = []
        self._record_ids: set[str] = set()
        self._storage_path = storage_path

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    # ---- writing ----

    def append(self, record: JournalRecord) -> None:
        """Append a record.

        Raises ValueError if record_id is a duplicate (replay protection).
        """
        if record.record_id in self._record_ids:
            raise ValueError(f"Duplicate journal record ID: {record.record_id}")
        self._records.append(record)
        self._record_ids.add(record.record_id)
        if self._storage_path:
            self._append_to_file(record)

    def run_started(self, run: SequenceRun) -> None:
        self.append(JournalRecord.create(
            record_id=f"{run.run_id}:started",
            run_id=run.run_id,
            kind=JournalKind.RUN_STARTED,
            payload={
                "intent": run.intent,
                "stages": [s.stage_id for s in run.stages],
                "start_index": run.next_index,
                "handles": _encode_handles(run.handles),
                "digests": dict(run.digests),
                "resumed_from": run.resumed_from,
            },
        ))

    def stage_completed(
        self,
        run: SequenceRun,
        stage_index: int,
        produced: Mapping[str, ObjectHandle],
        digest: Optional[str],
    ) -> None:
        self.append(JournalRecord.create(
            record_id=f"{run.run_id}:stage:{stage_index}",
            run_id=run.run_id,
            kind=JournalKind.STAGE_COMPLETED,
            payload={
                "stage_index": stage_index,
                "stage_id": run.stages[stage_index].stage_id,
                "handles": _encode_handles(produced),
                "digest": digest,
            },
        ))

    def run_completed(self, run: SequenceRun) -> None:
        self.append(JournalRecord.create(
            record_id=f"{run.run_id}:completed",
            run_id=run.run_id,
            kind=JournalKind.RUN_COMPLETED,
            payload={"stage_count": len(run.stages)},
        ))

    def run_failed(self, run: SequenceRun) -> None:
        self.append(JournalRecord.create(
            record_id=f"{run.run_id}:failed",
            run_id=run.run_id,
            kind=JournalKind.RUN_FAILED,
            payload={
                "stage_index": run.failed_index,
                "stage_id": run.failed_stage_id,
                "error": str(run.error) if run.error is not None else None,
                "error_type": type(run.error).__name__ if run.error is not None else None,
            },
        ))

    # ---- reading ----

    def records(self, run_id: Optional[str] = None) -> list[JournalRecord]:
        if run_id is None:
            return list(self._records)
        return [r for r in self._records if r.run_id == run_id]

    @property
    def count(self) -> int:
        return len(self._records)

    def run_ids(self) -> list[str]:
        return [r.run_id for r in self._records if r.kind == JournalKind.RUN_STARTED]

    def is_finished(self, run_id: str) -> bool:
        return any(
            r.kind in (JournalKind.RUN_COMPLETED, JournalKind.RUN_FAILED)
            for r in self.records(run_id)
        )

    def is_completed(self, run_id: str) -> bool:
        return any(r.kind == JournalKind.RUN_COMPLETED for r in self.records(run_id))

    def handles_for(self, run_id: str) -> dict[str, ObjectHandle]:
        """Every handle the run holds: seeded ones plus those it produced."""
        handles: dict[str, ObjectHandle] = {}
        digests: dict[str, str] = {}
        self._replay(run_id, handles, digests)
        return handles

    def rebuild_run(self, run_id: str, stages: list[Stage]) -> SequenceRun:
        """Build a fresh run that continues a journaled, unfinished-or-failed run.

        The new run starts at the first stage the journal has no
        completion record for, seeded with every handle produced so far.

        Raises:
            KeyError: if the journal has no such run.
            ValueError: if the run completed, or ``stages`` do not match
                the journaled stage ids.
        """
        started = self._started_record(run_id)
        if self.is_completed(run_id):
            raise ValueError(f"Run {run_id} completed; nothing to resume")
        if [s.stage_id for s in stages] != started.payload["stages"]:
            raise ValueError(
                f"Stage ids {[s.stage_id for s in stages]} do not match "
                f"journaled run {run_id}: {started.payload['stages']}"
            )
        handles: dict[str, ObjectHandle] = {}
        digests: dict[str, str] = {}
        next_index = self._replay(run_id, handles, digests)
        return SequenceRun(
            intent=started.payload["intent"],
            stages=list(stages),
            next_index=next_index,
            handles=handles,
            digests=digests,
            resumed_from=run_id,
        )

    def _started_record(self, run_id: str) -> JournalRecord:
        for record in self.records(run_id):
            if record.kind == JournalKind.RUN_STARTED:
                return record
        raise KeyError(f"No journaled run: {run_id}")

    def _replay(
        self,
        run_id: str,
        handles: dict[str, ObjectHandle],
        digests: dict[str, str],
    ) -> int:
        started = self._started_record(run_id)
        handles.update(_decode_handles(started.payload["handles"]))
        digests.update(started.payload["digests"])
        next_index = started.payload["start_index"]
        for record in self.records(run_id):
            if record.kind != JournalKind.STAGE_COMPLETED:
                continue
            handles.update(_decode_handles(record.payload["handles"]))
            if record.payload["digest"]:
                digests[record.payload["stage_id"]] = record.payload["digest"]
            next_index = max(next_index, record.payload["stage_index"] + 1)
        return next_index

    # ---- persistence ----

    def _append_to_file(self, record: JournalRecord) -> None:
        data = {
            "record_id": record.record_id,
            "run_id": record.run_id,
            "kind": record.kind.value,
            "timestamp_utc": record.timestamp_utc,
            "payload": record.payload,
            "record_hash": record.record_hash,
        }
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(data, sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load records with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate record IDs.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                record_id = data["record_id"]

                if record_id in self._record_ids:
                    raise ValueError(
                        f"Duplicate journal record ID on recovery "
                        f"(line {line_num}): {record_id}"
                    )

                expected_hash = _canonical_hash(
                    record_id,
                    data["run_id"],
                    data["kind"],
                    data["timestamp_utc"],
                    data["payload"],
                )
                if data["record_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): record {record_id} "
                        f"stored hash {data['record_hash']} != computed {expected_hash}"
                    )

                record = JournalRecord(
                    record_id=record_id,
                    run_id=data["run_id"],
                    kind=JournalKind(data["kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    payload=data["payload"],
                    record_hash=data["record_hash"],
                )
                self._records.append(record)
                self._record_ids.add(record_id)
