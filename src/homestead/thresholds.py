"""Low-ammo threshold evaluation.

Subscribed to MODIFY changes of ``ammo_details``. For every caliber touched
by a batch, the available rounds are summed across all lots and compared
with the enabled thresholds for that caliber; each breached threshold sends
one message to its person. Nothing records that a person was already
notified, so every qualifying modification fires again.
"""

import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from . import notifier
from .change_stream import MODIFY, ChangeEvent, ChangeStream, Subscription
from .config import settings
from .database.crud import get_person, list_thresholds, total_available_for_caliber

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def low_ammo_message(caliber: str, total: int, min_rounds: int) -> str:
    return f"⚠️ Low ammo alert: {caliber} is down to {total:,} rounds (threshold: {min_rounds:,} rds)."


def calibers_in_batch(changes: list[ChangeEvent]) -> list[str]:
    """Distinct calibers of modified ammo rows, in first-seen order."""
    seen: list[str] = []
    for change in changes:
        caliber = change.new_image.get("caliber")
        if caliber and caliber not in seen:
            seen.append(caliber)
    return seen


async def evaluate_caliber(session: AsyncSession, caliber: str) -> list[dict]:
    """Check every enabled threshold for ``caliber`` and notify breached ones.

    Returns:
        One entry per breached threshold with the notifier outcome
    """
    total = await total_available_for_caliber(session, caliber)
    thresholds = await list_thresholds(session, caliber=caliber, enabled_only=True)

    fired: list[dict] = []
    for threshold in thresholds:
        if total >= threshold.min_rounds:
            continue

        person = await get_person(session, threshold.person_id)
        if person is None:
            logger.warning("Threshold id=%d points at missing person id=%d", threshold.id, threshold.person_id)
            continue
        if not person.active:
            logger.info("Skipping inactive person %s for threshold id=%d", person.name, threshold.id)
            continue

        message = low_ammo_message(caliber, total, threshold.min_rounds)
        logger.info("Notifying %s via %s: %s", person.name, person.preferred_channel, message)
        result = await notifier.send_to_person(session, person.id, message)
        if not result.ok:
            logger.error("Low ammo notification to %s failed: %s", person.name, result.error)
        fired.append(
            {
                "threshold_id": threshold.id,
                "person_id": person.id,
                "caliber": caliber,
                "total": total,
                "min_rounds": threshold.min_rounds,
                "ok": result.ok,
                "error": result.error,
            }
        )
    return fired


def make_threshold_handler(session_factory: SessionFactory) -> Callable[[list[ChangeEvent]], Awaitable[list[dict]]]:
    """Build a change-stream handler that opens its own session per batch."""

    async def evaluate_ammo_changes(changes: list[ChangeEvent]) -> list[dict]:
        if not any(change.event_name == MODIFY for change in changes):
            return []
        fired: list[dict] = []
        async with session_factory() as session:
            for caliber in calibers_in_batch(changes):
                fired.extend(await evaluate_caliber(session, caliber))
        return fired

    return evaluate_ammo_changes


def register_threshold_evaluator(
    stream: ChangeStream,
    session_factory: SessionFactory,
    timeout: Optional[float] = None,
) -> Subscription:
    """Subscribe the evaluator to ammo lot modifications."""
    return stream.subscribe(
        "ammo_details",
        make_threshold_handler(session_factory),
        event_names=(MODIFY,),
        batch_size=settings.threshold_batch_size,
        max_retries=settings.threshold_max_retries,
        timeout=timeout if timeout is not None else settings.threshold_timeout_seconds,
        name="threshold_evaluator",
    )
