"""CRUD operations for the household inventory, ammo ledger, alerts and calendar."""

import json
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..constants import CATEGORIES, CHANNELS
from ..ledger import (
    ConsumeResult,
    compute_consumption,
    effective_available,
    initial_rounds_available,
    recompute_available,
)
from .models import (
    AmmoDetail,
    AmmoThreshold,
    Base,
    Day,
    Event,
    FilamentDetail,
    FirearmDetail,
    InstrumentDetail,
    InventoryItem,
    NotificationPerson,
    TransactionLog,
    Trip,
    User,
)

logger = logging.getLogger(__name__)

# Category -> detail table. OTHER items have no detail row.
DETAIL_MODELS: dict[str, type[Base]] = {
    "AMMO": AmmoDetail,
    "FIREARM": FirearmDetail,
    "FILAMENT": FilamentDetail,
    "INSTRUMENT": InstrumentDetail,
}

ITEM_FIELDS = (
    "name",
    "brand",
    "description",
    "date_purchased",
    "vendor",
    "url",
    "price_paid",
    "currency",
    "notes",
    "image_keys",
)

# Ledger-managed; never written directly from a form
_PROTECTED_DETAIL_FIELDS = {"id", "item_id", "rounds_available"}

# Explicit nulls mean "reset to 1" for these
_NULL_DEFAULTS = {"rounds_per_unit"}


def _required_columns(model: type[Base]) -> set[str]:
    """Writable columns that cannot hold NULL."""
    return {
        column.key
        for column in model.__table__.columns
        if not column.nullable and not column.primary_key
    } - _PROTECTED_DETAIL_FIELDS - _NULL_DEFAULTS


def _reject_nulls(model: type[Base], fields: dict[str, Any]) -> None:
    for key in sorted(_required_columns(model)):
        if key in fields and fields[key] is None:
            raise ValueError(f"{key.replace('_', ' ').capitalize()} cannot be empty")


def _pick(model: type[Base], fields: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Keep only keys that are writable columns of ``model``."""
    if not fields:
        return {}
    columns = {attr.key for attr in model.__mapper__.column_attrs}
    return {k: v for k, v in fields.items() if k in columns and k not in _PROTECTED_DETAIL_FIELDS}


def _pick_item(fields: Optional[dict[str, Any]]) -> dict[str, Any]:
    if not fields:
        return {}
    return {k: v for k, v in fields.items() if k in ITEM_FIELDS}


def _record(
    session: AsyncSession,
    operation: str,
    item_id: Optional[int] = None,
    data: Optional[dict[str, Any]] = None,
) -> None:
    """Stage a transaction log row in the caller's transaction."""
    session.add(
        TransactionLog(
            operation=operation,
            item_id=item_id,
            data=json.dumps(data, default=str) if data else None,
            status="CONFIRMED",
        )
    )


def validate_item_fields(
    category: str,
    item_fields: dict[str, Any],
    detail_fields: dict[str, Any],
    creating: bool = True,
) -> None:
    """Refuse a catalog write before anything reaches the database.

    Raises:
        ValueError: With a user-facing message describing the first problem found.
    """
    if category not in CATEGORIES:
        raise ValueError(f"Unknown category: {category}")

    if creating or "name" in item_fields:
        name = item_fields.get("name")
        if not name or not str(name).strip():
            raise ValueError("Name is required")

    if item_fields.get("price_paid") is not None and item_fields["price_paid"] < 0:
        raise ValueError("Price paid cannot be negative")

    if category == "AMMO":
        if creating or "caliber" in detail_fields:
            caliber = detail_fields.get("caliber")
            if not caliber or not str(caliber).strip():
                raise ValueError("Caliber is required")
        quantity = detail_fields.get("quantity")
        if quantity is not None and quantity < 0:
            raise ValueError("Quantity cannot be negative")
        rounds_per_unit = detail_fields.get("rounds_per_unit")
        if rounds_per_unit is not None and rounds_per_unit < 1:
            raise ValueError("Rounds per unit must be at least 1")

    if category == "FILAMENT":
        weight = detail_fields.get("weight_g")
        if weight is not None and weight < 0:
            raise ValueError("Weight cannot be negative")

    checked_item_fields = dict(item_fields)
    if creating:
        # Defaulted to USD on create
        checked_item_fields.pop("currency", None)
    _reject_nulls(InventoryItem, checked_item_fields)
    model = DETAIL_MODELS.get(category)
    if model is not None:
        _reject_nulls(model, detail_fields)


def _build_detail(category: str, item_id: int, detail_fields: dict[str, Any]) -> Optional[Base]:
    model = DETAIL_MODELS.get(category)
    if model is None:
        return None
    values = _pick(model, detail_fields)
    if model is AmmoDetail:
        values.setdefault("rounds_per_unit", 1)
        if values["rounds_per_unit"] is None:
            values["rounds_per_unit"] = 1
        values.setdefault("quantity", 0)
        values["rounds_available"] = initial_rounds_available(values["quantity"], values["rounds_per_unit"])
    return model(item_id=item_id, **values)


# ===== Transaction Log =====


async def log_transaction(
    session: AsyncSession,
    operation: str,
    item_id: Optional[int] = None,
    data: Optional[dict[str, Any]] = None,
    status: str = "CONFIRMED",
) -> TransactionLog:
    """Log an operation to the transaction log.

    Args:
        session: Database session
        operation: Operation type (CREATE, UPDATE, DELETE, CONSUME, NOTIFY)
        item_id: Optional ID of the affected item
        data: Optional additional data as dictionary
        status: Status of the transaction

    Returns:
        The created transaction log entry
    """
    log_entry = TransactionLog(
        operation=operation,
        item_id=item_id,
        data=json.dumps(data, default=str) if data else None,
        status=status,
    )
    session.add(log_entry)
    await session.commit()
    await session.refresh(log_entry)
    logger.info(f"Logged transaction: {operation} (id={log_entry.id})")
    return log_entry


async def get_transaction_logs(
    session: AsyncSession,
    limit: int = 100,
    item_id: Optional[int] = None,
    operation: Optional[str] = None,
) -> list[TransactionLog]:
    """Get transaction logs, newest first, optionally filtered by item or operation."""
    query = select(TransactionLog)

    if item_id is not None:
        query = query.where(TransactionLog.item_id == item_id)
    if operation:
        query = query.where(TransactionLog.operation == operation)

    query = query.order_by(TransactionLog.timestamp.desc(), TransactionLog.id.desc()).limit(limit)

    result = await session.execute(query)
    return list(result.scalars().all())


# ===== User Operations =====


async def create_user(
    session: AsyncSession,
    email: str,
    hashed_password: str,
    is_admin: bool = False,
) -> User:
    """Create a new user.

    Args:
        session: Database session
        email: User's email address
        hashed_password: Pre-hashed password
        is_admin: Whether the user belongs to the admin group

    Returns:
        The created user
    """
    user = User(email=email, hashed_password=hashed_password, is_admin=is_admin)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info(f"Created user: {user.email} (id={user.id}, admin={user.is_admin})")
    return user


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    """Get a user by email address.

    Args:
        session: Database session
        email: Email address to look up

    Returns:
        The user if found, None otherwise
    """
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def set_user_password(session: AsyncSession, user: User, hashed_password: str) -> User:
    user.hashed_password = hashed_password
    await session.commit()
    await session.refresh(user)
    logger.info(f"Changed password for user id={user.id}")
    return user


async def set_user_admin(session: AsyncSession, user: User, is_admin: bool) -> User:
    user.is_admin = is_admin
    await session.commit()
    await session.refresh(user)
    logger.info(f"Set admin={is_admin} for user id={user.id}")
    return user


# ===== Catalog & Detail Operations =====


async def create_item_with_detail(
    session: AsyncSession,
    category: str,
    item_fields: dict[str, Any],
    detail_fields: Optional[dict[str, Any]] = None,
) -> tuple[InventoryItem, Optional[Base]]:
    """Create a catalog item and its category detail in one transaction.

    The item is flushed to obtain its id, the detail row is added, and both
    are committed together. Any database failure rolls back both rows.

    Args:
        session: Database session
        category: One of FIREARM, AMMO, FILAMENT, INSTRUMENT, OTHER
        item_fields: Catalog fields (name, brand, vendor, ...)
        detail_fields: Category-specific fields (ignored for OTHER)

    Returns:
        Tuple of (item, detail); detail is None for OTHER

    Raises:
        ValueError: If the fields fail validation
    """
    detail_fields = detail_fields or {}
    validate_item_fields(category, item_fields, detail_fields, creating=True)

    values = _pick_item(item_fields)
    values.setdefault("image_keys", [])
    if not values.get("currency"):
        values["currency"] = "USD"

    try:
        item = InventoryItem(category=category, **values)
        session.add(item)
        await session.flush()

        detail = _build_detail(category, item.id, detail_fields)
        if detail is not None:
            session.add(detail)
        _record(session, "CREATE", item.id, {"category": category, "name": item.name})
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(f"Failed to create {category} item '{item_fields.get('name')}', rolled back")
        raise

    await session.refresh(item)
    if detail is not None:
        await session.refresh(detail)
    logger.info(f"Created item: {item.name} (id={item.id}, category={category})")
    return item, detail


async def get_item(session: AsyncSession, item_id: int) -> Optional[InventoryItem]:
    result = await session.execute(select(InventoryItem).where(InventoryItem.id == item_id))
    return result.scalar_one_or_none()


async def get_detail(session: AsyncSession, category: str, item_id: int) -> Optional[Base]:
    """Get the category detail row for an item, or None for OTHER / missing."""
    model = DETAIL_MODELS.get(category)
    if model is None:
        return None
    result = await session.execute(select(model).where(model.item_id == item_id))
    return result.scalar_one_or_none()


async def get_item_with_detail(
    session: AsyncSession,
    item_id: int,
) -> Optional[tuple[InventoryItem, Optional[Base]]]:
    """Get an item and its detail row.

    Returns:
        Tuple of (item, detail) if the item exists, None otherwise
    """
    item = await get_item(session, item_id)
    if item is None:
        return None
    detail = await get_detail(session, item.category, item.id)
    return item, detail


async def list_items(
    session: AsyncSession,
    category: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[InventoryItem], int]:
    """List catalog items with optional filtering and pagination.

    Args:
        session: Database session
        category: Optional category filter
        search: Optional case-insensitive name/brand substring
        limit: Maximum number of items to return
        offset: Number of items to skip

    Returns:
        Tuple of (list of items, total count matching filters)
    """
    base_filter = select(InventoryItem)

    if category:
        base_filter = base_filter.where(InventoryItem.category == category)

    if search:
        pattern = f"%{search}%"
        base_filter = base_filter.where(
            InventoryItem.name.ilike(pattern) | InventoryItem.brand.ilike(pattern)
        )

    count_q = select(func.count()).select_from(base_filter.subquery())
    total = (await session.execute(count_q)).scalar() or 0

    query = base_filter.order_by(InventoryItem.name, InventoryItem.id).limit(limit).offset(offset)
    result = await session.execute(query)
    return list(result.scalars().all()), total


async def list_details(
    session: AsyncSession,
    category: str,
    caliber: Optional[str] = None,
) -> list[tuple[InventoryItem, Base]]:
    """List (item, detail) pairs for a category, ordered by item name.

    Raises:
        ValueError: If the category has no detail table
    """
    model = DETAIL_MODELS.get(category)
    if model is None:
        raise ValueError(f"Category {category} has no detail records")

    query = (
        select(InventoryItem, model)
        .join(model, model.item_id == InventoryItem.id)
        .where(InventoryItem.category == category)
    )
    if caliber and hasattr(model, "caliber"):
        query = query.where(model.caliber == caliber)
    query = query.order_by(InventoryItem.name, InventoryItem.id)

    result = await session.execute(query)
    return [(item, detail) for item, detail in result.all()]


def _apply_ammo_edit(detail: AmmoDetail, values: dict[str, Any]) -> None:
    """Apply form values to an ammo lot, carrying rounds already used across a total change."""
    prev_total = detail.total_rounds
    prev_available = effective_available(detail.rounds_available, detail.quantity, detail.rounds_per_unit)

    if "rounds_per_unit" in values and values["rounds_per_unit"] is None:
        values["rounds_per_unit"] = 1
    for key, value in values.items():
        setattr(detail, key, value)

    new_total = detail.total_rounds
    if new_total != prev_total:
        detail.rounds_available = recompute_available(prev_total, prev_available, new_total)
        if new_total < prev_total - prev_available:
            logger.warning(
                f"Ammo lot item_id={detail.item_id}: new total {new_total} is below rounds already used "
                f"({prev_total - prev_available}); available clamped to 0"
            )
    elif detail.rounds_available is None:
        detail.rounds_available = prev_available


async def update_item_with_detail(
    session: AsyncSession,
    item_id: int,
    item_fields: Optional[dict[str, Any]] = None,
    detail_fields: Optional[dict[str, Any]] = None,
) -> Optional[tuple[InventoryItem, Optional[Base]]]:
    """Update an item and its detail in one transaction.

    Only keys present in the dicts are written. For AMMO, a change to
    quantity or rounds per unit recomputes ``rounds_available`` so that rounds
    already consumed stay consumed.

    Returns:
        Tuple of (item, detail) if found, None otherwise

    Raises:
        ValueError: If the fields fail validation
    """
    item_fields = item_fields or {}
    detail_fields = detail_fields or {}

    found = await get_item_with_detail(session, item_id)
    if found is None:
        return None
    item, detail = found

    validate_item_fields(item.category, item_fields, detail_fields, creating=False)

    try:
        for key, value in _pick_item(item_fields).items():
            setattr(item, key, value)

        model = DETAIL_MODELS.get(item.category)
        if model is not None:
            values = _pick(model, detail_fields)
            if detail is None:
                # Legacy items created without a detail row
                detail = _build_detail(item.category, item.id, values)
                session.add(detail)
            elif isinstance(detail, AmmoDetail):
                _apply_ammo_edit(detail, values)
            else:
                for key, value in values.items():
                    setattr(detail, key, value)

        _record(session, "UPDATE", item.id, {"item": item_fields, "detail": detail_fields})
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(f"Failed to update item id={item_id}, rolled back")
        raise

    await session.refresh(item)
    if detail is not None:
        await session.refresh(detail)
    logger.info(f"Updated item: {item.name} (id={item.id})")
    return item, detail


async def delete_item_with_detail(session: AsyncSession, item_id: int) -> bool:
    """Delete the detail row and then the item, in one transaction.

    Returns:
        True if the item was deleted, False if not found
    """
    found = await get_item_with_detail(session, item_id)
    if found is None:
        return False
    item, detail = found

    try:
        if detail is not None:
            await session.delete(detail)
            await session.flush()
        await session.delete(item)
        _record(session, "DELETE", item_id, {"category": item.category, "name": item.name})
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(f"Failed to delete item id={item_id}, rolled back")
        raise

    logger.info(f"Deleted item: {item.name} (id={item_id})")
    return True


async def add_image_key(session: AsyncSession, item_id: int, key: str) -> Optional[InventoryItem]:
    """Append a photo key to an item. The first key is the cover photo."""
    item = await get_item(session, item_id)
    if item is None:
        return None
    item.image_keys = [*(item.image_keys or []), key]
    await session.commit()
    await session.refresh(item)
    logger.info(f"Added photo {key} to item id={item_id}")
    return item


async def remove_image_key(session: AsyncSession, item_id: int, key: str) -> Optional[InventoryItem]:
    item = await get_item(session, item_id)
    if item is None:
        return None
    item.image_keys = [k for k in (item.image_keys or []) if k != key]
    await session.commit()
    await session.refresh(item)
    logger.info(f"Removed photo {key} from item id={item_id}")
    return item


# ===== Ammo Ledger =====


def _available_expr():
    return func.coalesce(
        AmmoDetail.rounds_available,
        AmmoDetail.quantity * func.coalesce(AmmoDetail.rounds_per_unit, 1),
    )


async def get_ammo_detail_by_item(session: AsyncSession, item_id: int) -> Optional[AmmoDetail]:
    result = await session.execute(select(AmmoDetail).where(AmmoDetail.item_id == item_id))
    return result.scalar_one_or_none()


async def consume_rounds(session: AsyncSession, item_id: int, rounds: int) -> ConsumeResult:
    """Take rounds from a single ammo lot.

    Takes ``min(available, rounds)``; the rest is reported as a shortfall and
    is never drawn from another lot. Calling twice deducts twice.

    Args:
        session: Database session
        item_id: Catalog id of the ammo item
        rounds: Rounds fired

    Returns:
        The consumption result

    Raises:
        ValueError: If the item has no ammo record or ``rounds`` is negative
    """
    detail = await get_ammo_detail_by_item(session, item_id)
    if detail is None:
        raise ValueError(f"Ammo record for item {item_id} not found")

    available = effective_available(detail.rounds_available, detail.quantity, detail.rounds_per_unit)
    take, shortfall = compute_consumption(available, rounds)

    if take > 0 or detail.rounds_available is None:
        detail.rounds_available = available - take
        _record(
            session,
            "CONSUME",
            item_id,
            {"caliber": detail.caliber, "requested": rounds, "consumed": take, "shortfall": shortfall},
        )
        await session.commit()
        await session.refresh(detail)

    logger.info(
        f"Consumed {take} of {rounds} rounds from item id={item_id} "
        f"({detail.caliber}, {detail.rounds_available} left, shortfall={shortfall})"
    )
    return ConsumeResult(
        item_id=item_id,
        requested=rounds,
        consumed=take,
        shortfall=shortfall,
        rounds_available=detail.rounds_available,
        caliber=detail.caliber,
    )


async def log_use(session: AsyncSession, entries: Iterable[tuple[int, int]]) -> list[ConsumeResult]:
    """Apply a range session's entries in order, each independently.

    A failing entry produces a result carrying an error message and does not
    stop the remaining entries.
    """
    results: list[ConsumeResult] = []
    for item_id, rounds in entries:
        try:
            results.append(await consume_rounds(session, item_id, rounds))
        except ValueError as e:
            logger.warning(f"Log use entry for item id={item_id} failed: {e}")
            results.append(
                ConsumeResult(
                    item_id=item_id,
                    requested=rounds,
                    consumed=0,
                    shortfall=0,
                    rounds_available=0,
                    error=str(e),
                )
            )
    return results


async def total_available_for_caliber(session: AsyncSession, caliber: str) -> int:
    """Rounds on hand across every lot of ``caliber``."""
    result = await session.execute(
        select(func.coalesce(func.sum(_available_expr()), 0)).where(AmmoDetail.caliber == caliber)
    )
    return int(result.scalar() or 0)


async def caliber_totals(session: AsyncSession) -> list[dict[str, Any]]:
    """Purchased and available rounds per caliber, ordered by caliber."""
    purchased = AmmoDetail.quantity * func.coalesce(AmmoDetail.rounds_per_unit, 1)
    result = await session.execute(
        select(
            AmmoDetail.caliber,
            func.count(AmmoDetail.id),
            func.coalesce(func.sum(purchased), 0),
            func.coalesce(func.sum(_available_expr()), 0),
        )
        .group_by(AmmoDetail.caliber)
        .order_by(AmmoDetail.caliber)
    )
    return [
        {"caliber": caliber, "lots": lots, "total_rounds": int(total), "rounds_available": int(available)}
        for caliber, lots, total, available in result.all()
    ]


# ===== Notification People =====


def _validate_channel(channel: Optional[str]) -> None:
    if channel is not None and channel not in CHANNELS:
        raise ValueError(f"Unknown channel: {channel}")


async def create_person(
    session: AsyncSession,
    name: str,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    preferred_channel: str = "WHATSAPP",
    active: bool = True,
) -> NotificationPerson:
    """Create a notification recipient.

    Raises:
        ValueError: If the name is empty or the channel is unknown
    """
    if not name or not name.strip():
        raise ValueError("Name is required")
    _validate_channel(preferred_channel)

    person = NotificationPerson(
        name=name.strip(),
        phone=phone or None,
        email=email or None,
        preferred_channel=preferred_channel,
        active=active,
    )
    session.add(person)
    await session.commit()
    await session.refresh(person)
    logger.info(f"Created notification person: {person.name} (id={person.id})")
    return person


async def get_person(session: AsyncSession, person_id: int) -> Optional[NotificationPerson]:
    result = await session.execute(select(NotificationPerson).where(NotificationPerson.id == person_id))
    return result.scalar_one_or_none()


async def list_people(session: AsyncSession, active_only: bool = False) -> list[NotificationPerson]:
    query = select(NotificationPerson)
    if active_only:
        query = query.where(NotificationPerson.active.is_(True))
    result = await session.execute(query.order_by(NotificationPerson.name))
    return list(result.scalars().all())


async def update_person(
    session: AsyncSession,
    person_id: int,
    **fields: Any,
) -> Optional[NotificationPerson]:
    """Update a notification person with the given fields.

    Returns:
        The updated person if found, None otherwise
    """
    person = await get_person(session, person_id)
    if person is None:
        return None

    if "name" in fields and (not fields["name"] or not fields["name"].strip()):
        raise ValueError("Name is required")
    _validate_channel(fields.get("preferred_channel"))

    for key in ("name", "phone", "email", "preferred_channel", "active"):
        if key in fields:
            setattr(person, key, fields[key])

    await session.commit()
    await session.refresh(person)
    logger.info(f"Updated notification person: {person.name} (id={person.id})")
    return person


async def delete_person(session: AsyncSession, person_id: int) -> bool:
    """Delete a person together with the thresholds that alert them."""
    person = await get_person(session, person_id)
    if person is None:
        return False

    await session.execute(delete(AmmoThreshold).where(AmmoThreshold.person_id == person_id))
    await session.delete(person)
    await session.commit()
    logger.info(f"Deleted notification person id={person_id}")
    return True


# ===== Ammo Thresholds =====


async def create_threshold(
    session: AsyncSession,
    caliber: str,
    min_rounds: int,
    person_id: int,
    enabled: bool = True,
) -> AmmoThreshold:
    """Create an alert rule for a caliber.

    Raises:
        ValueError: If the caliber is empty, min_rounds is not positive, or the person does not exist
    """
    if not caliber or not caliber.strip():
        raise ValueError("Caliber is required")
    if min_rounds is None or min_rounds < 1:
        raise ValueError("Minimum rounds must be a positive number")
    if await get_person(session, person_id) is None:
        raise ValueError(f"Person with id={person_id} not found")

    threshold = AmmoThreshold(caliber=caliber, min_rounds=min_rounds, person_id=person_id, enabled=enabled)
    session.add(threshold)
    await session.commit()
    await session.refresh(threshold)
    logger.info(f"Created threshold id={threshold.id}: {caliber} < {min_rounds} -> person {person_id}")
    return threshold


async def get_threshold(session: AsyncSession, threshold_id: int) -> Optional[AmmoThreshold]:
    result = await session.execute(select(AmmoThreshold).where(AmmoThreshold.id == threshold_id))
    return result.scalar_one_or_none()


async def list_thresholds(
    session: AsyncSession,
    caliber: Optional[str] = None,
    enabled_only: bool = False,
) -> list[AmmoThreshold]:
    query = select(AmmoThreshold)
    if caliber is not None:
        query = query.where(AmmoThreshold.caliber == caliber)
    if enabled_only:
        query = query.where(AmmoThreshold.enabled.is_(True))
    result = await session.execute(query.order_by(AmmoThreshold.caliber, AmmoThreshold.id))
    return list(result.scalars().all())


async def update_threshold(
    session: AsyncSession,
    threshold_id: int,
    **fields: Any,
) -> Optional[AmmoThreshold]:
    threshold = await get_threshold(session, threshold_id)
    if threshold is None:
        return None

    if "min_rounds" in fields and (fields["min_rounds"] is None or fields["min_rounds"] < 1):
        raise ValueError("Minimum rounds must be a positive number")
    if "person_id" in fields and await get_person(session, fields["person_id"]) is None:
        raise ValueError(f"Person with id={fields['person_id']} not found")

    for key in ("caliber", "min_rounds", "person_id", "enabled"):
        if key in fields:
            setattr(threshold, key, fields[key])

    await session.commit()
    await session.refresh(threshold)
    logger.info(f"Updated threshold id={threshold.id}")
    return threshold


async def toggle_threshold(session: AsyncSession, threshold_id: int) -> Optional[AmmoThreshold]:
    """Flip a threshold's enabled flag."""
    threshold = await get_threshold(session, threshold_id)
    if threshold is None:
        return None
    threshold.enabled = not threshold.enabled
    await session.commit()
    await session.refresh(threshold)
    logger.info(f"Toggled threshold id={threshold.id} (enabled={threshold.enabled})")
    return threshold


async def delete_threshold(session: AsyncSession, threshold_id: int) -> bool:
    threshold = await get_threshold(session, threshold_id)
    if threshold is None:
        return False
    await session.delete(threshold)
    await session.commit()
    logger.info(f"Deleted threshold id={threshold_id}")
    return True


# ===== Calendar: Trips =====


async def create_trip(
    session: AsyncSession,
    name: str,
    start_date: date,
    end_date: date,
    type: str = "LEISURE",
    **fields: Any,
) -> Trip:
    """Create a trip.

    Raises:
        ValueError: If the name is empty or the end date is before the start date
    """
    if not name or not name.strip():
        raise ValueError("Name is required")
    if end_date < start_date:
        raise ValueError("Trip end date cannot be before its start date")

    trip = Trip(name=name, start_date=start_date, end_date=end_date, type=type, **fields)
    session.add(trip)
    await session.commit()
    await session.refresh(trip)
    logger.info(f"Created trip: {trip.name} (id={trip.id}, {start_date}..{end_date})")
    return trip


async def get_trip(session: AsyncSession, trip_id: int) -> Optional[Trip]:
    result = await session.execute(select(Trip).where(Trip.id == trip_id))
    return result.scalar_one_or_none()


async def list_trips(
    session: AsyncSession,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> list[Trip]:
    """List trips overlapping the inclusive range [start, end]."""
    query = select(Trip)
    if start is not None:
        query = query.where(Trip.end_date >= start)
    if end is not None:
        query = query.where(Trip.start_date <= end)
    result = await session.execute(query.order_by(Trip.start_date, Trip.name))
    return list(result.scalars().all())


async def update_trip(session: AsyncSession, trip_id: int, **fields: Any) -> Optional[Trip]:
    trip = await get_trip(session, trip_id)
    if trip is None:
        return None

    start_date = fields.get("start_date", trip.start_date)
    end_date = fields.get("end_date", trip.end_date)
    if end_date < start_date:
        raise ValueError("Trip end date cannot be before its start date")

    columns = {attr.key for attr in Trip.__mapper__.column_attrs} - {"id"}
    for key, value in fields.items():
        if key in columns:
            setattr(trip, key, value)

    if "name" in fields:
        await session.execute(update(Day).where(Day.trip_id == trip_id).values(trip_name=trip.name))

    await session.commit()
    await session.refresh(trip)
    logger.info(f"Updated trip: {trip.name} (id={trip.id})")
    return trip


async def delete_trip(session: AsyncSession, trip_id: int) -> bool:
    """Delete a trip; days and events that referenced it are unlinked, not deleted."""
    trip = await get_trip(session, trip_id)
    if trip is None:
        return False

    await session.execute(update(Day).where(Day.trip_id == trip_id).values(trip_id=None, trip_name=None))
    await session.execute(update(Event).where(Event.trip_id == trip_id).values(trip_id=None))
    await session.delete(trip)
    await session.commit()
    logger.info(f"Deleted trip id={trip_id}")
    return True


# ===== Calendar: Events =====


def _to_utc(value: datetime, tz_name: str) -> datetime:
    """Normalize an event timestamp to UTC. Naive values are wall time in ``tz_name``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=ZoneInfo(tz_name))
    return value.astimezone(timezone.utc)


def _check_timezone(tz_name: str) -> None:
    try:
        ZoneInfo(tz_name)
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {tz_name}") from e


async def create_event(
    session: AsyncSession,
    title: str,
    start_at: datetime,
    end_at: Optional[datetime] = None,
    tz_name: str = "UTC",
    **fields: Any,
) -> Event:
    """Create a calendar event. Times are stored in UTC alongside the event's own zone.

    Raises:
        ValueError: If the title is empty, the zone is unknown, or the end precedes the start
    """
    if not title or not title.strip():
        raise ValueError("Title is required")
    _check_timezone(tz_name)

    start_utc = _to_utc(start_at, tz_name)
    end_utc = _to_utc(end_at, tz_name) if end_at is not None else None
    if end_utc is not None and end_utc < start_utc:
        raise ValueError("Event end cannot be before its start")

    event = Event(title=title, start_at=start_utc, end_at=end_utc, timezone=tz_name, **fields)
    session.add(event)
    await session.commit()
    await session.refresh(event)
    logger.info(f"Created event: {event.title} (id={event.id})")
    return event


async def get_event(session: AsyncSession, event_id: int) -> Optional[Event]:
    result = await session.execute(select(Event).where(Event.id == event_id))
    return result.scalar_one_or_none()


async def list_events(
    session: AsyncSession,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> list[Event]:
    """List events overlapping the inclusive date range [start, end] (UTC days)."""
    query = select(Event)
    if start is not None:
        range_start = datetime.combine(start, datetime.min.time(), tzinfo=timezone.utc)
        query = query.where(func.coalesce(Event.end_at, Event.start_at) >= range_start)
    if end is not None:
        range_end = datetime.combine(end + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
        query = query.where(Event.start_at < range_end)
    result = await session.execute(query.order_by(Event.start_at, Event.title))
    return list(result.scalars().all())


async def update_event(session: AsyncSession, event_id: int, **fields: Any) -> Optional[Event]:
    event = await get_event(session, event_id)
    if event is None:
        return None

    tz_name = fields.get("tz_name") or event.timezone
    _check_timezone(tz_name)
    if "title" in fields and (not fields["title"] or not fields["title"].strip()):
        raise ValueError("Title is required")

    # Stored values come back naive from some drivers; they are UTC
    start_utc = _to_utc(fields["start_at"], tz_name) if fields.get("start_at") else _to_utc(event.start_at, "UTC")
    if "end_at" in fields:
        end_utc = _to_utc(fields["end_at"], tz_name) if fields["end_at"] is not None else None
    else:
        end_utc = _to_utc(event.end_at, "UTC") if event.end_at is not None else None
    if end_utc is not None and end_utc < start_utc:
        raise ValueError("Event end cannot be before its start")

    event.timezone = tz_name
    event.start_at = start_utc
    event.end_at = end_utc
    for key in ("title", "is_all_day", "trip_id", "location", "url"):
        if key in fields:
            setattr(event, key, fields[key])

    await session.commit()
    await session.refresh(event)
    logger.info(f"Updated event: {event.title} (id={event.id})")
    return event


async def delete_event(session: AsyncSession, event_id: int) -> bool:
    event = await get_event(session, event_id)
    if event is None:
        return False
    await session.delete(event)
    await session.commit()
    logger.info(f"Deleted event id={event_id}")
    return True


# ===== Calendar: Days =====


async def get_day(session: AsyncSession, day_date: date) -> Optional[Day]:
    result = await session.execute(select(Day).where(Day.date == day_date))
    return result.scalar_one_or_none()


async def list_days(session: AsyncSession, start: date, end: date) -> list[Day]:
    """Stored day records in the inclusive range, ordered by date."""
    result = await session.execute(
        select(Day).where(Day.date >= start, Day.date <= end).order_by(Day.date)
    )
    return list(result.scalars().all())


async def upsert_day(session: AsyncSession, day_date: date, status: str, **fields: Any) -> Day:
    """Create or replace the stored record for a date.

    Raises:
        ValueError: If pto_fraction is outside [0, 1] or the trip does not exist
    """
    pto_fraction = fields.get("pto_fraction")
    if pto_fraction is not None and not 0 <= pto_fraction <= 1:
        raise ValueError("PTO fraction must be between 0 and 1")

    trip_id = fields.get("trip_id")
    if trip_id is not None:
        trip = await get_trip(session, trip_id)
        if trip is None:
            raise ValueError(f"Trip with id={trip_id} not found")
        fields.setdefault("trip_name", trip.name)
    elif "trip_id" in fields:
        # Unlinked from its trip
        fields["trip_name"] = None

    day = await get_day(session, day_date)
    if day is None:
        day = Day(date=day_date, status=status)
        session.add(day)
    day.status = status

    for key in (
        "notes",
        "trip_id",
        "trip_name",
        "pto_fraction",
        "location_city",
        "location_country",
        "location_lat",
        "location_lon",
    ):
        if key in fields:
            setattr(day, key, fields[key])
    if day.pto_fraction is None:
        day.pto_fraction = 0.0

    await session.commit()
    await session.refresh(day)
    logger.info(f"Saved day {day_date} (status={status})")
    return day


async def delete_day(session: AsyncSession, day_date: date) -> bool:
    """Remove a stored day so it falls back to the computed default."""
    day = await get_day(session, day_date)
    if day is None:
        return False
    await session.delete(day)
    await session.commit()
    logger.info(f"Cleared day {day_date}")
    return True
