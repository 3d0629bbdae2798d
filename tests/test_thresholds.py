"""Tests for low-ammo threshold evaluation."""

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from homestead.change_stream import INSERT, MODIFY, ChangeEvent, change_stream
from homestead.database.crud import consume_rounds, create_person, create_threshold, update_person
from homestead.notifier import NotificationResult
from homestead.thresholds import (
    calibers_in_batch,
    evaluate_caliber,
    low_ammo_message,
    register_threshold_evaluator,
)


@pytest.fixture
def mock_send() -> Any:
    """Replace the notifier so nothing leaves the process."""
    with patch("homestead.notifier.send_to_person", new=AsyncMock(return_value=NotificationResult(ok=True))) as send:
        yield send


@pytest.fixture
def evaluator(mock_session_factory: Any) -> Any:
    return register_threshold_evaluator(change_stream, mock_session_factory)


def _messages(send: AsyncMock) -> list[str]:
    return [call.args[2] for call in send.await_args_list]


class TestMessage:
    def test_low_ammo_message(self) -> None:
        assert low_ammo_message("9mm Luger", 240, 300) == (
            "⚠️ Low ammo alert: 9mm Luger is down to 240 rounds (threshold: 300 rds)."
        )

    def test_thousands_are_grouped(self) -> None:
        assert "1,240 rounds (threshold: 1,500 rds)" in low_ammo_message(".22 LR", 1240, 1500)

    def test_calibers_in_batch(self) -> None:
        changes = [
            ChangeEvent(MODIFY, "ammo_details", {"id": 1}, {"caliber": "9mm Luger"}),
            ChangeEvent(MODIFY, "ammo_details", {"id": 2}, {"caliber": ".223 Remington"}),
            ChangeEvent(MODIFY, "ammo_details", {"id": 3}, {"caliber": "9mm Luger"}),
        ]
        assert calibers_in_batch(changes) == ["9mm Luger", ".223 Remington"]


class TestRegistration:
    def test_subscribes_to_ammo_modifications(self, evaluator: Any) -> None:
        assert evaluator.table == "ammo_details"
        assert evaluator.event_names == frozenset({MODIFY})
        assert evaluator.batch_size == 10
        assert evaluator.max_retries == 2
        assert evaluator.timeout == 60.0
        assert evaluator.name == "threshold_evaluator"


class TestEvaluator:
    """Consumption that drops a caliber below its minimum notifies the person."""

    @pytest.mark.asyncio
    async def test_fires_on_every_qualifying_modification(
        self, db_session: AsyncSession, make_ammo_lot: Any, evaluator: Any, mock_send: AsyncMock
    ) -> None:
        lot = await make_ammo_lot("9mm Luger", 150, name="Lot A")
        await make_ammo_lot("9mm Luger", 100, name="Lot B")
        person = await create_person(db_session, "Sam", phone="+15125551234")
        await create_threshold(db_session, "9mm Luger", 300, person.id)

        await consume_rounds(db_session, lot.item_id, 10)
        await change_stream.process_pending()
        assert mock_send.await_count == 1
        assert mock_send.await_args.args[1] == person.id
        assert _messages(mock_send) == [
            "⚠️ Low ammo alert: 9mm Luger is down to 240 rounds (threshold: 300 rds).",
        ]

        # No suppression: the next modification fires again
        await consume_rounds(db_session, lot.item_id, 10)
        await change_stream.process_pending()
        assert mock_send.await_count == 2
        assert "230 rounds" in _messages(mock_send)[1]

    @pytest.mark.asyncio
    async def test_at_or_above_minimum_is_quiet(
        self, db_session: AsyncSession, make_ammo_lot: Any, evaluator: Any, mock_send: AsyncMock
    ) -> None:
        lot = await make_ammo_lot("9mm Luger", 250)
        person = await create_person(db_session, "Sam", phone="+15125551234")
        await create_threshold(db_session, "9mm Luger", 240, person.id)

        await consume_rounds(db_session, lot.item_id, 10)
        await change_stream.process_pending()
        mock_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_creating_a_lot_does_not_evaluate(
        self, db_session: AsyncSession, make_ammo_lot: Any, evaluator: Any, mock_send: AsyncMock
    ) -> None:
        person = await create_person(db_session, "Sam", phone="+15125551234")
        await create_threshold(db_session, "9mm Luger", 300, person.id)

        await make_ammo_lot("9mm Luger", 50)
        await change_stream.process_pending()
        mock_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_threshold_is_skipped(
        self, db_session: AsyncSession, make_ammo_lot: Any, evaluator: Any, mock_send: AsyncMock
    ) -> None:
        lot = await make_ammo_lot("9mm Luger", 150)
        person = await create_person(db_session, "Sam", phone="+15125551234")
        await create_threshold(db_session, "9mm Luger", 300, person.id, enabled=False)

        await consume_rounds(db_session, lot.item_id, 10)
        await change_stream.process_pending()
        mock_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_caliber_is_skipped(
        self, db_session: AsyncSession, make_ammo_lot: Any, evaluator: Any, mock_send: AsyncMock
    ) -> None:
        lot = await make_ammo_lot("9mm Luger", 150)
        person = await create_person(db_session, "Sam", phone="+15125551234")
        await create_threshold(db_session, ".223 Remington", 1000, person.id)

        await consume_rounds(db_session, lot.item_id, 10)
        await change_stream.process_pending()
        mock_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inactive_person_is_skipped(
        self, db_session: AsyncSession, make_ammo_lot: Any, evaluator: Any, mock_send: AsyncMock
    ) -> None:
        lot = await make_ammo_lot("9mm Luger", 150)
        person = await create_person(db_session, "Sam", phone="+15125551234")
        await create_threshold(db_session, "9mm Luger", 300, person.id)
        await update_person(db_session, person.id, active=False)

        await consume_rounds(db_session, lot.item_id, 10)
        await change_stream.process_pending()
        mock_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_one_message_per_breached_threshold(
        self, db_session: AsyncSession, make_ammo_lot: Any, evaluator: Any, mock_send: AsyncMock
    ) -> None:
        lot = await make_ammo_lot("9mm Luger", 150)
        sam = await create_person(db_session, "Sam", phone="+15125551234")
        kim = await create_person(db_session, "Kim", email="kim@example.com", preferred_channel="EMAIL")
        await create_threshold(db_session, "9mm Luger", 300, sam.id)
        await create_threshold(db_session, "9mm Luger", 500, kim.id)
        await create_threshold(db_session, "9mm Luger", 100, kim.id)

        await consume_rounds(db_session, lot.item_id, 10)
        await change_stream.process_pending()

        assert sorted(call.args[1] for call in mock_send.await_args_list) == sorted([sam.id, kim.id])

    @pytest.mark.asyncio
    async def test_caliber_evaluated_once_per_batch(
        self, db_session: AsyncSession, make_ammo_lot: Any, evaluator: Any, mock_send: AsyncMock
    ) -> None:
        lot = await make_ammo_lot("9mm Luger", 150)
        person = await create_person(db_session, "Sam", phone="+15125551234")
        await create_threshold(db_session, "9mm Luger", 300, person.id)

        await consume_rounds(db_session, lot.item_id, 10)
        await consume_rounds(db_session, lot.item_id, 10)
        await change_stream.process_pending()

        assert _messages(mock_send) == [
            "⚠️ Low ammo alert: 9mm Luger is down to 130 rounds (threshold: 300 rds).",
        ]

    @pytest.mark.asyncio
    async def test_failing_notifier_is_retried(
        self, db_session: AsyncSession, make_ammo_lot: Any, evaluator: Any
    ) -> None:
        lot = await make_ammo_lot("9mm Luger", 150)
        person = await create_person(db_session, "Sam", phone="+15125551234")
        await create_threshold(db_session, "9mm Luger", 300, person.id)

        with patch("homestead.notifier.send_to_person", new=AsyncMock(side_effect=RuntimeError("down"))) as send:
            await consume_rounds(db_session, lot.item_id, 10)
            await change_stream.process_pending()

        # First attempt plus two retries
        assert send.await_count == 3


class TestEvaluateCaliber:
    @pytest.mark.asyncio
    async def test_reports_delivery_outcome(
        self, db_session: AsyncSession, make_ammo_lot: Any
    ) -> None:
        await make_ammo_lot("9mm Luger", 50)
        person = await create_person(db_session, "Sam", phone="+15125551234")
        threshold = await create_threshold(db_session, "9mm Luger", 300, person.id)

        failed = NotificationResult(ok=False, error="Twilio rejected the number")
        with patch("homestead.notifier.send_to_person", new=AsyncMock(return_value=failed)):
            fired = await evaluate_caliber(db_session, "9mm Luger")

        assert fired == [
            {
                "threshold_id": threshold.id,
                "person_id": person.id,
                "caliber": "9mm Luger",
                "total": 50,
                "min_rounds": 300,
                "ok": False,
                "error": "Twilio rejected the number",
            }
        ]

    @pytest.mark.asyncio
    async def test_insert_only_batch_is_ignored(self, mock_session_factory: Any, mock_send: AsyncMock) -> None:
        subscription = register_threshold_evaluator(change_stream, mock_session_factory)
        fired = await subscription.handler(
            [ChangeEvent(INSERT, "ammo_details", {"id": 1}, {"caliber": "9mm Luger"})]
        )
        assert fired == []
        mock_send.assert_not_awaited()
