"""SQLAlchemy database models."""

import datetime as dt
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    event,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.orm.attributes import set_committed_value


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """Model for admin user accounts."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False, index=True)
    hashed_password: Mapped[str] = mapped_column(String, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', is_admin={self.is_admin})>"


# ===== Inventory =====


class InventoryItem(Base):
    """Catalog row shared by every inventory category."""

    __tablename__ = "inventory_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    brand: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String, nullable=False, index=True)
    date_purchased: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    vendor: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    price_paid: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Ordered storage keys; the first one is the cover photo
    image_keys: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return f"<InventoryItem(id={self.id}, name='{self.name}', category='{self.category}')>"


class AmmoDetail(Base):
    """Ammunition lot linked 1:1 to a catalog item; carries the stock ledger."""

    __tablename__ = "ammo_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    caliber: Mapped[str] = mapped_column(String, nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit: Mapped[str] = mapped_column(String, nullable=False, default="ROUNDS")
    rounds_per_unit: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    rounds_available: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    grain: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bullet_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    velocity_fps: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    if TYPE_CHECKING:
        item: Mapped["InventoryItem"]
    else:
        item = relationship("InventoryItem")

    @property
    def total_rounds(self) -> int:
        """Rounds purchased for this lot (quantity x rounds per unit)."""
        return (self.quantity or 0) * (self.rounds_per_unit or 1)

    def __repr__(self) -> str:
        return (
            f"<AmmoDetail(id={self.id}, caliber='{self.caliber}', "
            f"rounds_available={self.rounds_available})>"
        )


class FirearmDetail(Base):
    """Firearm-specific fields."""

    __tablename__ = "firearm_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    type: Mapped[str] = mapped_column(String, nullable=False, default="OTHER")
    serial_number: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    caliber: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    action: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    finish: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    barrel_length: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    parts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<FirearmDetail(id={self.id}, item_id={self.item_id}, type='{self.type}')>"


class FilamentDetail(Base):
    """3D-printer filament spool fields."""

    __tablename__ = "filament_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    material: Mapped[str] = mapped_column(String, nullable=False, default="PLA")
    color: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    weight_g: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    diameter: Mapped[str] = mapped_column(String, nullable=False, default="1.75")

    def __repr__(self) -> str:
        return f"<FilamentDetail(id={self.id}, material='{self.material}', color='{self.color}')>"


class InstrumentDetail(Base):
    """Musical instrument / gear fields."""

    __tablename__ = "instrument_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    type: Mapped[str] = mapped_column(String, nullable=False, default="OTHER")
    color: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    strings: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tuning: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    body_material: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    finish: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    def __repr__(self) -> str:
        return f"<InstrumentDetail(id={self.id}, type='{self.type}')>"


# ===== Notifications =====


class NotificationPerson(Base):
    """A recipient of ammo threshold alerts."""

    __tablename__ = "notification_people"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String, nullable=True)  # E.164
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    preferred_channel: Mapped[str] = mapped_column(String, nullable=False, default="WHATSAPP")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<NotificationPerson(id={self.id}, name='{self.name}', channel='{self.preferred_channel}')>"


class AmmoThreshold(Base):
    """Alert rule: notify person when a caliber's available rounds drop below min_rounds."""

    __tablename__ = "ammo_thresholds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    caliber: Mapped[str] = mapped_column(String, nullable=False, index=True)
    min_rounds: Mapped[int] = mapped_column(Integer, nullable=False)
    person_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("notification_people.id", ondelete="CASCADE"), nullable=False, index=True
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    if TYPE_CHECKING:
        person: Mapped["NotificationPerson"]
    else:
        person = relationship("NotificationPerson")

    def __repr__(self) -> str:
        return (
            f"<AmmoThreshold(id={self.id}, caliber='{self.caliber}', "
            f"min_rounds={self.min_rounds}, enabled={self.enabled})>"
        )


# ===== Calendar =====


class Trip(Base):
    """A trip spanning one or more calendar days."""

    __tablename__ = "trips"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, default="LEISURE")
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    destination_city: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    destination_country: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    destination_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    destination_lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    destination_tz: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Trip(id={self.id}, name='{self.name}', {self.start_date}..{self.end_date})>"


class Day(Base):
    """Stored status for a single calendar date. Absent dates use a computed default."""

    __tablename__ = "days"

    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    trip_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("trips.id", ondelete="SET NULL"), nullable=True
    )
    trip_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    pto_fraction: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    location_city: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    location_country: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    location_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<Day(date={self.date}, status='{self.status}')>"


class Event(Base):
    """A time-bounded calendar event stored with its own IANA timezone."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    timezone: Mapped[str] = mapped_column(String, nullable=False, default="UTC")
    is_all_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    trip_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("trips.id", ondelete="SET NULL"), nullable=True
    )
    location: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title='{self.title}', start_at={self.start_at})>"


class TransactionLog(Base):
    """Audit log of admin and ledger operations."""

    __tablename__ = "transaction_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    operation: Mapped[str] = mapped_column(String, nullable=False)
    item_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="CONFIRMED")
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<TransactionLog(id={self.id}, operation='{self.operation}', status='{self.status}')>"


def _ensure_aware_timestamp(value: datetime | None) -> datetime | None:
    """Normalize timestamps to UTC when timezone info is missing."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@event.listens_for(Event, "load")
@event.listens_for(Event, "refresh")
def _normalize_event_on_load(target: Event, _context: object, _attrs: object = None) -> None:
    """Ensure loaded event timestamps retain timezone awareness."""
    for key in ("start_at", "end_at"):
        if key in target.__dict__:
            set_committed_value(target, key, _ensure_aware_timestamp(target.__dict__[key]))
