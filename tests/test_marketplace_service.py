"""Tests for MarketplaceService — results, failure reporting, resume, retract."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path

from boxoffice.ledger.memory import InMemoryLedger
from boxoffice.models.economics import BaselineSource
from boxoffice.models.ledger import LogicalType, ObjectHandle, Target
from boxoffice.models.sequence import StageStatus
from boxoffice.orchestration.intents import PublishRequest, TicketVariant
from boxoffice.orchestration.journal import SagaJournal
from boxoffice.service import MarketplaceService

from conftest import ARTIST, BUYER, ORGANIZER, PLATFORM, RESELLER, no_sleep


def _request(price: int = 500_000_000) -> PublishRequest:
    return PublishRequest(
        organizer=ORGANIZER,
        name="Night Market",
        starts_at=1_760_000_000,
        ends_at=1_760_010_000,
        variants=(TicketVariant("GA", price, 100),),
    )


def _service(config, ledger, journal=None) -> MarketplaceService:
    return MarketplaceService(config, ledger, journal=journal, sleep=no_sleep)


class TestPublish:
    def test_success_data(self, config, ledger) -> None:
        events = []
        result = asyncio.run(_service(config, ledger).publish(_request(), events.append))
        assert result.success
        handles = result.data["handles"]
        assert set(handles) == {
            "event_id", "class_id", "instance_id", "container_id", "listing_id"
        }
        assert result.data["listing_url"] == (
            f"http://localhost:5173/buyer?container={handles['container_id']}"
            f"&listing={handles['instance_id']}"
        )
        assert result.data["links"]["event_id"] == (
            f"https://suiscan.xyz/testnet/object/{handles['event_id']}?network=testnet"
        )
        assert set(result.data["transactions"]) == {
            "create_event", "create_classes", "mint_ticket", "list_ticket"
        }
        succeeded = [e.stage_id for e in events if e.status == StageStatus.SUCCEEDED]
        assert len(succeeded) == 5

    def test_invalid_request(self, config, ledger) -> None:
        bad = PublishRequest(ORGANIZER, "Night Market", 10, 5, (TicketVariant("GA", 1, 1),))
        result = asyncio.run(_service(config, ledger).publish(bad))
        assert not result.success
        assert "start before" in result.errors[0]
        assert ledger.submitted == []

    def test_negative_start_returns_failed_result(self, config, ledger) -> None:
        bad = PublishRequest(ORGANIZER, "Show", -5, 10, (TicketVariant("GA", 500, 100),))
        result = asyncio.run(_service(config, ledger).publish(bad))
        assert not result.success
        assert "negative" in result.errors[0]
        assert ledger.submitted == []

    def test_failure_reports_partial_state(self, config, ledger) -> None:
        ledger.reject_next(Target.TICKET_MINT, ("class", 3))
        result = asyncio.run(_service(config, ledger).publish(_request()))
        assert not result.success
        assert result.errors == ["Ticket class is sold out"]
        data = result.data
        assert data["failed_stage"] == "mint_ticket"
        assert data["failed_index"] == 2
        assert data["completed_stages"] == ["create_event", "create_classes"]
        assert set(data["handles"]) == {"event_id", "class_id"}
        assert data["abort"] == {"module": "class", "code": 3}
        assert data["error_type"] == "LedgerRejection"
        assert "failed_transaction" in data

    def test_transport_failure_marks_outcome_unknown(self, config, ledger) -> None:
        ledger.drop_ack(Target.PLACE_AND_LIST)
        result = asyncio.run(_service(config, ledger).publish(_request()))
        assert not result.success
        assert result.data["outcome_unknown"] is True
        assert result.data["failed_stage"] == "list_ticket"


class TestResume:
    def test_resume_continues_from_failed_stage(self, config, ledger) -> None:
        service = _service(config, ledger)
        ledger.fail_transport(Target.TICKET_MINT)

        async def scenario():
            failed = await service.publish(_request())
            resumed = await service.resume_publish(failed.data["run_id"])
            return failed, resumed

        failed, resumed = asyncio.run(scenario())
        assert not failed.success
        assert resumed.success
        assert resumed.data["resumed_from"] == failed.data["run_id"]
        assert resumed.data["handles"]["event_id"] == failed.data["handles"]["event_id"]
        assert len(ledger.objects_of(LogicalType.EVENT)) == 1
        assert service.get_run(failed.data["run_id"]) is None

    def test_resume_unknown_run(self, config, ledger) -> None:
        result = asyncio.run(_service(config, ledger).resume_publish("run_missing"))
        assert not result.success
        assert "No resumable run" in result.errors[0]

    def test_resume_after_restart_uses_journal(
        self, config, ledger, tmp_path: Path
    ) -> None:
        path = tmp_path / "runs.jsonl"
        ledger.fail_transport(Target.CONTAINER_CREATE)
        failed = asyncio.run(_service(config, ledger, SagaJournal(path)).publish(_request()))
        assert failed.data["failed_stage"] == "resolve_container"

        restarted = _service(config, ledger, SagaJournal(path))
        resumed = asyncio.run(
            restarted.resume_publish(failed.data["run_id"], request=_request())
        )
        assert resumed.success
        assert resumed.data["handles"]["instance_id"] == failed.data["handles"]["instance_id"]
        assert ledger.submitted_targets()[-2:] == [
            "container::create", "container::place_and_list"
        ]

    def test_configured_journal_path_survives_restart(
        self, config, ledger, tmp_path: Path
    ) -> None:
        configured = replace(config, journal_path=tmp_path / "data" / "runs.jsonl")
        ledger.fail_transport(Target.CONTAINER_CREATE)
        failed = asyncio.run(_service(configured, ledger).publish(_request()))
        assert configured.journal_path.exists()

        restarted = _service(configured, ledger)
        resumed = asyncio.run(
            restarted.resume_publish(failed.data["run_id"], request=_request())
        )
        assert resumed.success
        assert resumed.data["resumed_from"] == failed.data["run_id"]
        assert len(ledger.objects_of(LogicalType.TICKET)) == 1

    def test_no_journal_without_path(self, config, ledger) -> None:
        ledger.fail_transport(Target.CONTAINER_CREATE)
        failed = asyncio.run(_service(config, ledger).publish(_request()))
        result = asyncio.run(
            _service(config, ledger).resume_publish(failed.data["run_id"], request=_request())
        )
        assert not result.success
        assert "No resumable run" in result.errors[0]


class TestRetract:
    def test_retract_burns_minted_ticket(self, config, ledger) -> None:
        service = _service(config, ledger)
        ledger.fail_transport(Target.CONTAINER_CREATE)

        async def scenario():
            failed = await service.publish(_request())
            return failed, await service.retract_publish(failed.data["run_id"])

        failed, retracted = asyncio.run(scenario())
        assert retracted.success
        assert retracted.data["retracted"] == ["burn_ticket"]
        assert set(retracted.data["permanent"]) == {"event_id", "class_id"}
        assert ledger.objects_of(LogicalType.TICKET) == []
        assert service.get_run(failed.data["run_id"]) is None

    def test_nothing_to_retract(self, config, ledger) -> None:
        service = _service(config, ledger)
        ledger.reject_next(Target.TICKET_MINT, ("class", 3))

        async def scenario():
            failed = await service.publish(_request())
            return await service.retract_publish(failed.data["run_id"])

        result = asyncio.run(scenario())
        assert result.success
        assert result.data["retracted"] == []

    def test_unknown_run(self, config, ledger) -> None:
        result = asyncio.run(_service(config, ledger).retract_publish("run_missing"))
        assert not result.success


class TestPurchase:
    def _listed(self, service) -> dict:
        result = asyncio.run(service.publish(_request(price=250_000_000)))
        assert result.success
        return result.data["handles"]

    def test_purchase_settles_split(self, config, ledger, recipients) -> None:
        service = _service(config, ledger)
        handles = self._listed(service)
        ledger.fund(BUYER, 250_000_000)

        result = asyncio.run(service.purchase(
            BUYER,
            ObjectHandle(handles["container_id"], LogicalType.CONTAINER),
            ObjectHandle(handles["instance_id"], LogicalType.TICKET),
            250_000_000,
            recipients,
        ))
        assert result.success, result.errors
        assert result.data["verified"] is True
        assert result.data["tax_amount"] == 0
        assert result.data["shares"] == {
            ARTIST: 225_000_000, ORGANIZER: 20_000_000, PLATFORM: 5_000_000
        }
        assert ledger.balance(BUYER) == 0
        assert ledger.balance(ARTIST) == 225_000_000

    def test_policy_created_once_across_purchases(self, config, ledger, recipients) -> None:
        service = _service(config, ledger)
        first = self._listed(service)
        second = self._listed(service)
        ledger.fund(BUYER, 500_000_000)

        async def buy(handles):
            return await service.purchase(
                BUYER,
                ObjectHandle(handles["container_id"], LogicalType.CONTAINER),
                ObjectHandle(handles["instance_id"], LogicalType.TICKET),
                250_000_000,
                recipients,
            )

        assert asyncio.run(buy(first)).success
        assert asyncio.run(buy(second)).success
        assert ledger.submitted_targets().count("policy::create") == 1

    def test_rejected_purchase(self, config, ledger, recipients) -> None:
        service = _service(config, ledger)
        handles = self._listed(service)
        result = asyncio.run(service.purchase(
            BUYER,
            ObjectHandle(handles["container_id"], LogicalType.CONTAINER),
            ObjectHandle(handles["instance_id"], LogicalType.TICKET),
            250_000_000,
            recipients,
        ))
        assert not result.success
        assert result.errors == ["Insufficient funds"]
        assert result.data["failed_stage"] == "purchase_and_settle"

    def test_invalid_amount(self, config, ledger, recipients) -> None:
        result = asyncio.run(_service(config, ledger).purchase(
            BUYER,
            ObjectHandle("0xc", LogicalType.CONTAINER),
            ObjectHandle("0xt", LogicalType.TICKET),
            0,
            recipients,
        ))
        assert not result.success
        assert "positive" in result.errors[0]

    def test_quote_resale_withholds_tax(self, config, ledger, recipients) -> None:
        result = _service(config, ledger).quote_purchase(
            1_200_000, recipients, msrp=1_000_000
        )
        assert result.success
        assert result.data["tax_amount"] == 24_000
        assert result.data["tax_recipient"] == PLATFORM
        assert sum(result.data["shares"].values()) + 24_000 == 1_200_000

    def test_quote_missing_role(self, config, ledger) -> None:
        result = _service(config, ledger).quote_purchase(1_000, {"artist": ARTIST})
        assert not result.success
        assert "organizer" in result.errors[0]


class TestCheckIn:
    def test_check_in_once(self, config, ledger, recipients) -> None:
        service = _service(config, ledger)
        published = asyncio.run(service.publish(_request(price=1_000)))
        handles = published.data["handles"]
        ticket = ObjectHandle(handles["instance_id"], LogicalType.TICKET)
        ledger.fund(RESELLER, 1_000)
        bought = asyncio.run(service.purchase(
            RESELLER,
            ObjectHandle(handles["container_id"], LogicalType.CONTAINER),
            ticket,
            1_000,
            recipients,
        ))
        assert bought.success

        first = asyncio.run(service.check_in(RESELLER, ticket))
        second = asyncio.run(service.check_in(RESELLER, ticket))
        assert first.success
        assert not second.success
        assert second.errors == ["Ticket already used"]

    def test_check_in_rejects_non_ticket(self, config, ledger) -> None:
        result = asyncio.run(
            _service(config, ledger).check_in(BUYER, ObjectHandle("0x1", LogicalType.EVENT))
        )
        assert not result.success


class TestQuotes:
    def test_quote_resale_tax(self, config) -> None:
        result = _service(config, InMemoryLedger()).quote_resale_tax(1_200_000, 1_000_000)
        assert result.success
        assert result.data["tax_amount"] == 24_000
        assert result.data["percent_over_bp"] == 2_000
        assert result.data["seller_receives"] == 1_176_000

    def test_negative_asking(self, config) -> None:
        result = _service(config, InMemoryLedger()).quote_resale_tax(-1, 1_000)
        assert not result.success

    def test_listing_url(self, config) -> None:
        service = _service(config, InMemoryLedger())
        url = service.listing_url(
            ObjectHandle("0xc", LogicalType.CONTAINER),
            ObjectHandle("0xt", LogicalType.TICKET),
        )
        assert url == "http://localhost:5173/buyer?container=0xc&listing=0xt"

    def test_minimum_tax_applies_to_small_markup(self, config) -> None:
        result = _service(config, InMemoryLedger()).quote_resale_tax(1_200, 1_000)
        assert result.data["tax_amount"] == config.tax.minimum_tax_amount


def _first_sale_config(config):
    return replace(config, tax=replace(config.tax, baseline_source=BaselineSource.FIRST_SALE))


class TestBaselineSource:
    def test_quote_measures_markup_against_configured_baseline(self, config) -> None:
        msrp_quote = _service(config, InMemoryLedger()).quote_resale_tax(
            1_200_000, msrp=1_000_000, first_sale=1_100_000
        )
        first_sale_quote = _service(_first_sale_config(config), InMemoryLedger()).quote_resale_tax(
            1_200_000, msrp=1_000_000, first_sale=1_100_000
        )
        assert msrp_quote.data["baseline_amount"] == 1_000_000
        assert msrp_quote.data["tax_amount"] == 24_000
        assert first_sale_quote.data["baseline_amount"] == 1_100_000
        assert first_sale_quote.data["baseline_source"] == "first_sale"
        # 100_000 over a 1_100_000 baseline is 909 bp: the 5% tier.
        assert first_sale_quote.data["tax_amount"] == 5_000

    def test_first_sale_falls_back_to_msrp_when_unknown(self, config) -> None:
        result = _service(_first_sale_config(config), InMemoryLedger()).quote_resale_tax(
            1_200_000, msrp=1_000_000
        )
        assert result.data["tax_amount"] == 24_000

    def test_resale_purchase_withholds_first_sale_tax(self, config, ledger, recipients) -> None:
        service = _service(_first_sale_config(config), ledger)
        published = asyncio.run(service.publish(_request(price=1_200_000)))
        handles = published.data["handles"]
        ledger.fund(BUYER, 1_200_000)

        result = asyncio.run(service.purchase(
            BUYER,
            ObjectHandle(handles["container_id"], LogicalType.CONTAINER),
            ObjectHandle(handles["instance_id"], LogicalType.TICKET),
            1_200_000,
            recipients,
            msrp=1_000_000,
            first_sale=1_100_000,
        ))
        assert result.success, result.errors
        assert result.data["tax_amount"] == 5_000
        assert result.data["verified"] is True
        # Platform share of the 1_195_000 split plus the withheld tax.
        assert ledger.balance(PLATFORM) == 23_900 + 5_000
        assert ledger.balance(ARTIST) == 1_075_500
