"""Receipt decoding — typed, schema-validated ledger responses.

Raw ledger responses are validated against RECEIPT_SCHEMA (JSON Schema
draft 2020-12) before anything is read out of them. A response that
does not match fails with MalformedReceipt; nothing falls through as a
missing handle.

Raw shape:
    {
      "digest": "0x…",
      "status": "success" | "failure",
      "error": {"message": "...", "code": 2, "module": "class"},   # failure only
      "created": [{"object_id": "0x…", "object_type": "ticket"}, …],
      "balance_changes": [{"owner": "0x…", "amount": -250000000}, …]
    }
"""

from __future__ import annotations

from typing import Any, Mapping

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from boxoffice.errors import LedgerRejection, MalformedReceipt
from boxoffice.models.ledger import (
    BalanceDelta,
    LedgerErrorDetail,
    LogicalType,
    ObjectHandle,
    Receipt,
    ReceiptStatus,
)
from boxoffice.models.sequence import HandleSpec

RECEIPT_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["digest", "status"],
    "properties": {
        "digest": {"type": "string", "minLength": 1},
        "status": {"enum": [s.value for s in ReceiptStatus]},
        "error": {
            "type": ["object", "null"],
            "required": ["message"],
            "properties": {
                "message": {"type": "string"},
                "code": {"type": ["integer", "null"]},
                "module": {"type": ["string", "null"]},
            },
        },
        "created": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["object_id", "object_type"],
                "properties": {
                    "object_id": {"type": "string", "minLength": 1},
                    "object_type": {"enum": [t.value for t in LogicalType]},
                },
            },
        },
        "balance_changes": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["owner", "amount"],
                "properties": {
                    "owner": {"type": "string", "minLength": 1},
                    "amount": {"type": "integer"},
                },
            },
        },
    },
    "if": {"properties": {"status": {"const": "failure"}}},
    "then": {"required": ["error"], "properties": {"error": {"type": "object"}}},
}

Draft202012Validator.check_schema(RECEIPT_SCHEMA)
_VALIDATOR = Draft202012Validator(RECEIPT_SCHEMA)


def decode_receipt(raw: Mapping[str, Any]) -> Receipt:
    """Validate and decode a raw ledger response.

    Raises:
        MalformedReceipt: if ``raw`` does not match RECEIPT_SCHEMA.
    """
    if not isinstance(raw, Mapping):
        raise MalformedReceipt(f"Receipt must be an object, got {type(raw).__name__}")
    error = best_match(_VALIDATOR.iter_errors(dict(raw)))
    if error is not None:
        path = "/".join(str(p) for p in error.absolute_path) or "<root>"
        raise MalformedReceipt(f"Malformed receipt at {path}: {error.message}")

    detail = None
    if raw.get("error"):
        err = raw["error"]
        detail = LedgerErrorDetail(
            message=err["message"],
            code=err.get("code"),
            module=err.get("module"),
        )

    return Receipt(
        digest=raw["digest"],
        status=ReceiptStatus(raw["status"]),
        created=tuple(
            ObjectHandle(c["object_id"], LogicalType(c["object_type"]))
            for c in raw.get("created", [])
        ),
        balance_deltas=tuple(
            BalanceDelta(b["owner"], b["amount"])
            for b in raw.get("balance_changes", [])
        ),
        error=detail,
    )


def extract_handles(
    receipt: Receipt,
    produces: tuple[HandleSpec, ...],
) -> dict[str, ObjectHandle]:
    """Match declared handle specs against a successful receipt.

    Specs of the same logical type consume created objects of that type
    in ledger order.

    Raises:
        MalformedReceipt: if the receipt created fewer objects of a type
            than the specs require.
    """
    by_type: dict[LogicalType, list[ObjectHandle]] = {}
    for handle in receipt.created:
        by_type.setdefault(handle.logical_type, []).append(handle)

    produced: dict[str, ObjectHandle] = {}
    cursor: dict[LogicalType, int] = {}
    for spec in produces:
        index = cursor.get(spec.logical_type, 0)
        candidates = by_type.get(spec.logical_type, [])
        if index >= len(candidates):
            raise MalformedReceipt(
                f"Receipt {receipt.digest} created {len(candidates)} "
                f"{spec.logical_type.value} object(s); handle '{spec.key}' "
                f"needs at least {index + 1}"
            )
        produced[spec.key] = candidates[index]
        cursor[spec.logical_type] = index + 1
    return produced


def raise_for_status(receipt: Receipt) -> Receipt:
    """Return a successful receipt unchanged; raise for a failed one.

    Raises:
        LedgerRejection: carrying the ledger-native code, module and digest.
    """
    if receipt.ok:
        return receipt
    detail = receipt.error
    raise LedgerRejection(
        detail.message if detail else "Operation rejected by the ledger",
        code=detail.code if detail else None,
        module=detail.module if detail else None,
        digest=receipt.digest,
    )
