"""Ledger abort codes and their user-facing messages.

Abort codes are ledger-native: (module, code) pairs raised by the
on-ledger modules. Unknown pairs fall back to a generic message that
still names the module and code.
"""

from __future__ import annotations

# event
E_INVALID_WINDOW = ("event", 1)
# class
E_ZERO_SUPPLY = ("class", 2)
E_SOLD_OUT = ("class", 3)
# ticket
E_ALREADY_USED = ("ticket", 1)
E_NOT_HOLDER = ("ticket", 2)
E_TICKET_LISTED = ("ticket", 3)
# container
E_NOT_OWNER = ("container", 1)
E_NOT_LISTED = ("container", 2)
E_INCORRECT_AMOUNT = ("container", 3)
E_ALREADY_LISTED = ("container", 4)
# settlement policy
E_POLICY_MISMATCH = ("policy", 1)
E_RULE_NOT_SATISFIED = ("policy", 2)
# balances
E_INSUFFICIENT_FUNDS = ("balance", 1)

ABORT_MESSAGES: dict[tuple[str, int], str] = {
    E_INVALID_WINDOW: "Invalid time window",
    E_ZERO_SUPPLY: "Supply cannot be zero",
    E_SOLD_OUT: "Ticket class is sold out",
    E_ALREADY_USED: "Ticket already used",
    E_NOT_HOLDER: "Only the ticket holder can do that",
    E_TICKET_LISTED: "Ticket is listed for sale",
    E_NOT_OWNER: "Only the container owner can do that",
    E_NOT_LISTED: "Ticket is not listed",
    E_INCORRECT_AMOUNT: "Payment does not match the asking price",
    E_ALREADY_LISTED: "Ticket is already listed",
    E_POLICY_MISMATCH: "Settlement policy does not match the ticket class",
    E_RULE_NOT_SATISFIED: "Royalty split was not honoured",
    E_INSUFFICIENT_FUNDS: "Insufficient funds",
}


def describe_abort(module: str, code: int) -> str:
    """Map a ledger abort to a message a buyer or seller can act on."""
    message = ABORT_MESSAGES.get((module, code))
    if message is not None:
        return message
    return f"Ledger error in {module} (code {code})"
