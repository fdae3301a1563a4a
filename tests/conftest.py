"""Shared fixtures: marketplace config, in-memory ledger, addresses."""

from __future__ import annotations

from pathlib import Path

import pytest

from boxoffice.config.resolver import MarketplaceConfig
from boxoffice.ledger.finality import FinalityMode, FinalitySettings
from boxoffice.ledger.memory import InMemoryLedger

ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"

ORGANIZER = "0x" + "0a" * 32
ARTIST = "0x" + "0b" * 32
BUYER = "0x" + "0c" * 32
RESELLER = "0x" + "0d" * 32
PLATFORM = "0x" + "00" * 31 + "fe"


async def no_sleep(seconds: float) -> None:
    return None


class RecordingSleep:
    """Async sleep double that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def config_dir() -> Path:
    return CONFIG_DIR


@pytest.fixture
def config() -> MarketplaceConfig:
    return MarketplaceConfig.from_config_dir(CONFIG_DIR, use_env=False)


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def fast_finality() -> FinalitySettings:
    return FinalitySettings(mode=FinalityMode.POLL, poll_interval=0.0, max_attempts=5)


@pytest.fixture
def recipients() -> dict[str, str]:
    return {"artist": ARTIST, "organizer": ORGANIZER}
