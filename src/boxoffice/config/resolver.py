"""Marketplace configuration — loads and validates marketplace_params.json.

Usage:
    config = MarketplaceConfig.from_config_dir(Path("config"))
    split = config.split_for({"artist": "0xa", "organizer": "0xo", "platform": "0xp"})

Environment overrides (read after load_dotenv, so a .env file at the
working directory works too):
    BOXOFFICE_ORIGIN      listing URL origin
    BOXOFFICE_NETWORK     explorer network
    BOXOFFICE_POLICY_ID   pre-existing settlement policy id
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from boxoffice.errors import InvalidConfiguration
from boxoffice.ledger.finality import FinalityMode, FinalitySettings
from boxoffice.models.economics import SplitConfig, TaxConfig
from boxoffice.orchestration.intents import OperationBudgets

DEFAULT_CONFIG_DIR = Path(__file__).parent.parent.parent.parent / "config"

ENV_ORIGIN = "BOXOFFICE_ORIGIN"
ENV_NETWORK = "BOXOFFICE_NETWORK"
ENV_POLICY_ID = "BOXOFFICE_POLICY_ID"


@dataclass(frozen=True)
class MarketplaceConfig:
    """Validated marketplace parameters."""

    origin: str
    network: str
    explorer_base_url: str
    policy_id: Optional[str]
    platform_address: str
    budgets: OperationBudgets
    finality: FinalitySettings
    split_basis_points: dict[str, int]
    remainder_role: str
    tax_recipient_role: str
    tax: TaxConfig
    serialize_containers: bool = True
    journal_path: Optional[Path] = None

    PARAMS_FILENAME = "marketplace_params.json"

    @classmethod
    def from_config_dir(
        cls,
        config_dir: Path = DEFAULT_CONFIG_DIR,
        use_env: bool = True,
    ) -> MarketplaceConfig:
        """Load from ``config_dir/marketplace_params.json``.

        Raises:
            FileNotFoundError: if the params file does not exist.
            InvalidConfiguration: if any value is malformed.
        """
        path = config_dir / cls.PARAMS_FILENAME
        if not path.exists():
            raise FileNotFoundError(f"Marketplace params not found: {path}")
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        config = cls.from_dict(data)
        if use_env:
            load_dotenv(find_dotenv(usecwd=True))
            config = config.with_env(os.environ)
        return config

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MarketplaceConfig:
        for section in ("marketplace", "royalty_split", "anti_scalp"):
            if section not in data:
                raise InvalidConfiguration(f"Marketplace params missing '{section}'")

        market = data["marketplace"]
        origin = market.get("origin", "")
        if not origin:
            raise InvalidConfiguration("marketplace.origin is required")
        platform = market.get("platform_address", "")
        if not platform:
            raise InvalidConfiguration("marketplace.platform_address is required")

        split = data["royalty_split"]
        basis_points = {str(k): int(v) for k, v in split.get("basis_points", {}).items()}
        # Validate the role split with the same rules a real split gets.
        SplitConfig.from_mapping(basis_points)
        remainder_role = split.get("remainder_role") or list(basis_points)[-1]
        tax_role = split.get("tax_recipient_role") or remainder_role
        for role in (remainder_role, tax_role):
            if role not in basis_points:
                raise InvalidConfiguration(f"Unknown royalty role: {role}")

        finality_data = data.get("finality", {})
        try:
            finality = FinalitySettings(
                mode=FinalityMode(finality_data.get("mode", "poll")),
                poll_interval=float(finality_data.get("poll_interval_seconds", 0.5)),
                max_attempts=int(finality_data.get("max_attempts", 20)),
                fixed_delay=float(finality_data.get("fixed_delay_seconds", 2.0)),
            )
        except ValueError as exc:
            raise InvalidConfiguration(f"Malformed finality settings: {exc}") from exc
        if finality.max_attempts < 1 or finality.poll_interval < 0 or finality.fixed_delay < 0:
            raise InvalidConfiguration(f"Out-of-range finality settings: {finality}")

        journal_path = data.get("journal", {}).get("path")
        return cls(
            origin=origin,
            network=market.get("network", "testnet"),
            explorer_base_url=market.get("explorer_base_url", ""),
            policy_id=market.get("policy_id") or None,
            platform_address=platform,
            budgets=OperationBudgets.from_dict(data.get("budgets", {})),
            finality=finality,
            split_basis_points=basis_points,
            remainder_role=remainder_role,
            tax_recipient_role=tax_role,
            tax=TaxConfig.from_dict(data["anti_scalp"]),
            serialize_containers=bool(
                data.get("containers", {}).get("serialize_per_actor", True)
            ),
            journal_path=Path(journal_path) if journal_path else None,
        )

    def with_env(self, environ: Mapping[str, str]) -> MarketplaceConfig:
        """Apply BOXOFFICE_* overrides from ``environ``."""
        overrides: dict[str, Any] = {}
        if environ.get(ENV_ORIGIN):
            overrides["origin"] = environ[ENV_ORIGIN]
        if environ.get(ENV_NETWORK):
            overrides["network"] = environ[ENV_NETWORK]
        if environ.get(ENV_POLICY_ID):
            overrides["policy_id"] = environ[ENV_POLICY_ID]
        return replace(self, **overrides) if overrides else self

    def split_for(
        self,
        recipients: Mapping[str, str],
        policy_id: Optional[str] = None,
    ) -> SplitConfig:
        """Bind the role split to concrete recipient addresses.

        ``recipients`` maps role (artist, organizer, platform) to address;
        the platform role defaults to ``platform_address``. Roles sharing
        an address are merged.

        Raises:
            InvalidConfiguration: if a role has no address.
        """
        addresses = {"platform": self.platform_address, **recipients}
        merged: dict[str, int] = {}
        for role, bp in self.split_basis_points.items():
            address = addresses.get(role)
            if not address:
                raise InvalidConfiguration(f"No address for royalty role: {role}")
            merged[address] = merged.get(address, 0) + bp
        return SplitConfig.from_mapping(
            merged,
            remainder_recipient=addresses[self.remainder_role],
            policy_id=policy_id,
        )

    def tax_recipient_for(self, recipients: Mapping[str, str]) -> str:
        addresses = {"platform": self.platform_address, **recipients}
        return addresses[self.tax_recipient_role]
