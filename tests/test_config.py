"""Tests for marketplace configuration loading and validation."""

from __future__ import annotations

import copy
import json
import os
from pathlib import Path

import pytest

from boxoffice.config.resolver import ENV_NETWORK, ENV_ORIGIN, ENV_POLICY_ID, MarketplaceConfig
from boxoffice.errors import InvalidConfiguration
from boxoffice.ledger.finality import FinalityMode
from boxoffice.models.economics import BaselineSource

from conftest import ARTIST, CONFIG_DIR, ORGANIZER, PLATFORM


@pytest.fixture
def raw() -> dict:
    with (CONFIG_DIR / MarketplaceConfig.PARAMS_FILENAME).open() as f:
        return json.load(f)


class TestLoading:
    def test_loads_shipped_params(self, config: MarketplaceConfig) -> None:
        assert config.origin == "http://localhost:5173"
        assert config.network == "testnet"
        assert config.policy_id is None
        assert config.platform_address == PLATFORM
        assert config.split_basis_points == {"artist": 9000, "organizer": 800, "platform": 200}
        assert config.remainder_role == "platform"
        assert config.finality.mode == FinalityMode.POLL
        assert config.finality.max_attempts == 20
        assert config.tax.baseline_source == BaselineSource.MSRP
        assert config.tax.minimum_tax_amount == 100
        assert config.budgets.purchase == 20_000_000
        assert config.journal_path is None

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            MarketplaceConfig.from_config_dir(tmp_path, use_env=False)

    def test_env_file_overrides(self, tmp_path: Path, raw: dict, monkeypatch) -> None:
        (tmp_path / MarketplaceConfig.PARAMS_FILENAME).write_text(json.dumps(raw))
        (tmp_path / ".env").write_text(f"{ENV_NETWORK}=devnet\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv(ENV_NETWORK, raising=False)
        monkeypatch.delenv(ENV_ORIGIN, raising=False)
        monkeypatch.delenv(ENV_POLICY_ID, raising=False)
        try:
            config = MarketplaceConfig.from_config_dir(tmp_path)
        finally:
            os.environ.pop(ENV_NETWORK, None)
        assert config.network == "devnet"
        assert config.origin == "http://localhost:5173"


class TestEnvOverrides:
    def test_overrides(self, config: MarketplaceConfig) -> None:
        updated = config.with_env({
            ENV_ORIGIN: "https://tickets.example",
            ENV_NETWORK: "mainnet",
            ENV_POLICY_ID: "0xpolicy",
        })
        assert updated.origin == "https://tickets.example"
        assert updated.network == "mainnet"
        assert updated.policy_id == "0xpolicy"

    def test_empty_values_ignored(self, config: MarketplaceConfig) -> None:
        assert config.with_env({ENV_ORIGIN: ""}) is config


class TestValidation:
    @pytest.mark.parametrize("section", ["marketplace", "royalty_split", "anti_scalp"])
    def test_missing_section(self, raw: dict, section: str) -> None:
        del raw[section]
        with pytest.raises(InvalidConfiguration, match=section):
            MarketplaceConfig.from_dict(raw)

    def test_split_must_sum_to_10000(self, raw: dict) -> None:
        raw["royalty_split"]["basis_points"]["artist"] = 8000
        with pytest.raises(InvalidConfiguration, match="10000"):
            MarketplaceConfig.from_dict(raw)

    def test_unknown_remainder_role(self, raw: dict) -> None:
        raw["royalty_split"]["remainder_role"] = "promoter"
        with pytest.raises(InvalidConfiguration, match="promoter"):
            MarketplaceConfig.from_dict(raw)

    def test_descending_tiers(self, raw: dict) -> None:
        raw["anti_scalp"]["tiers"].reverse()
        with pytest.raises(InvalidConfiguration):
            MarketplaceConfig.from_dict(raw)

    def test_bad_finality_mode(self, raw: dict) -> None:
        raw["finality"]["mode"] = "hope"
        with pytest.raises(InvalidConfiguration):
            MarketplaceConfig.from_dict(raw)

    def test_zero_attempts(self, raw: dict) -> None:
        raw["finality"]["max_attempts"] = 0
        with pytest.raises(InvalidConfiguration):
            MarketplaceConfig.from_dict(raw)

    def test_non_positive_budget(self, raw: dict) -> None:
        raw["budgets"]["purchase"] = -1
        with pytest.raises(InvalidConfiguration):
            MarketplaceConfig.from_dict(raw)

    def test_missing_origin(self, raw: dict) -> None:
        raw["marketplace"]["origin"] = ""
        with pytest.raises(InvalidConfiguration, match="origin"):
            MarketplaceConfig.from_dict(raw)

    def test_journal_path(self, raw: dict) -> None:
        data = copy.deepcopy(raw)
        data["journal"]["path"] = "data/runs.jsonl"
        assert MarketplaceConfig.from_dict(data).journal_path == Path("data/runs.jsonl")


class TestSplitFor:
    def test_binds_roles_to_addresses(self, config: MarketplaceConfig) -> None:
        split = config.split_for({"artist": ARTIST, "organizer": ORGANIZER})
        assert [(s.recipient, s.basis_points) for s in split.shares] == [
            (ARTIST, 9000), (ORGANIZER, 800), (PLATFORM, 200)
        ]
        assert split.remainder_recipient == PLATFORM

    def test_shared_address_is_merged(self, config: MarketplaceConfig) -> None:
        split = config.split_for({"artist": ORGANIZER, "organizer": ORGANIZER})
        assert [(s.recipient, s.basis_points) for s in split.shares] == [
            (ORGANIZER, 9800), (PLATFORM, 200)
        ]

    def test_missing_role(self, config: MarketplaceConfig) -> None:
        with pytest.raises(InvalidConfiguration, match="artist"):
            config.split_for({"organizer": ORGANIZER})

    def test_tax_recipient(self, config: MarketplaceConfig) -> None:
        assert config.tax_recipient_for({"artist": ARTIST}) == PLATFORM
