"""Shareable links — listing URLs and explorer URLs.

Purely informational; nothing in the orchestrator consumes them.
"""

from __future__ import annotations

from urllib.parse import urlencode

from boxoffice.models.ledger import ObjectHandle

EXPLORER_URLS: dict[str, str] = {
    "testnet": "https://suiscan.xyz/testnet",
    "mainnet": "https://suiscan.xyz/mainnet",
    "devnet": "https://suiscan.xyz/devnet",
    "localnet": "http://localhost:3000",
}


def listing_url(origin: str, container: ObjectHandle, ticket: ObjectHandle) -> str:
    """``{origin}/buyer?container={container}&listing={ticket}``"""
    query = urlencode({"container": container.object_id, "listing": ticket.object_id})
    return f"{origin.rstrip('/')}/buyer?{query}"


class Explorer:
    """Builds block-explorer URLs for one network."""

    def __init__(self, network: str, base_url: str = "") -> None:
        if not base_url and network not in EXPLORER_URLS:
            raise ValueError(f"No explorer known for network {network!r}")
        self.network = network
        self.base_url = (base_url or EXPLORER_URLS[network]).rstrip("/")

    def object_url(self, object_id: str) -> str:
        return f"{self.base_url}/object/{object_id}?network={self.network}"

    def tx_url(self, digest: str) -> str:
        return f"{self.base_url}/tx/{digest}?network={self.network}"

    def address_url(self, address: str) -> str:
        return f"{self.base_url}/account/{address}?network={self.network}"


def shorten_id(value: str, chars: int = 4) -> str:
    """Shorten an id or digest for display: 0x1234...5678."""
    if not value:
        return ""
    if len(value) <= chars * 2 + 2:
        return value
    return f"{value[:chars + 2]}...{value[-chars:]}"
