"""FastAPI REST API for the homestead inventory, ammo alerts and calendar."""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Annotated, Any, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Query, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

# Load environment variables from .env file (find it relative to this file)
_env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(_env_path)

from . import notifier, storage
from .auth import (
    DUMMY_HASH,
    AccessTokenResponse,
    NotAuthorizedException,
    RefreshTokenRequest,
    Token,
    TokenData,
    UserNotConfirmedException,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    describe_auth_error,
    hash_password,
    validate_password,
    verify_password,
)
from .calendar_view import day_cells, merge_calendar
from .change_stream import change_stream
from .config import settings
from .constants import (
    CALIBER_GROUPS,
    CATEGORIES,
    CHANNELS,
    CURRENCIES,
    DAY_STATUS_LABELS,
    AmmoUnit,
    Category,
    Channel,
    DayStatus,
    FilamentDiameter,
    FilamentMaterial,
    FirearmType,
    InstrumentType,
    TripType,
)
from .database.crud import (
    add_image_key,
    caliber_totals,
    consume_rounds,
    create_event,
    create_item_with_detail,
    create_person,
    create_threshold,
    create_trip,
    delete_day,
    delete_event,
    delete_item_with_detail,
    delete_person,
    delete_threshold,
    delete_trip,
    get_event,
    get_item,
    get_item_with_detail,
    get_transaction_logs,
    get_trip,
    get_user,
    get_user_by_email,
    list_days,
    list_details,
    list_events,
    list_items,
    list_people,
    list_thresholds,
    list_trips,
    log_use,
    remove_image_key,
    set_user_password,
    toggle_threshold,
    total_available_for_caliber,
    update_event,
    update_item_with_detail,
    update_person,
    update_threshold,
    update_trip,
    upsert_day,
)
from .database.engine import AsyncSessionLocal, close_db, init_db
from .thresholds import evaluate_caliber, register_threshold_evaluator
from .utils import parse_date_range

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MAX_PHOTO_BYTES = 10 * 1024 * 1024


# ===== Request models =====


class ItemFields(BaseModel):
    name: Optional[str] = Field(None, description="Display name")
    brand: Optional[str] = None
    description: Optional[str] = None
    date_purchased: Optional[date] = None
    vendor: Optional[str] = None
    url: Optional[str] = None
    price_paid: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    notes: Optional[str] = None


class ItemCreate(ItemFields):
    name: str = Field(..., min_length=1, description="Display name")
    category: Category
    detail: dict[str, Any] = Field(default_factory=dict, description="Category-specific fields")


class ItemUpdate(ItemFields):
    detail: Optional[dict[str, Any]] = None


class AmmoDetailFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    caliber: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)
    unit: Optional[AmmoUnit] = None
    rounds_per_unit: Optional[int] = Field(None, ge=1)
    grain: Optional[int] = Field(None, ge=0)
    bullet_type: Optional[str] = None
    velocity_fps: Optional[int] = Field(None, ge=0)


class FirearmDetailFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[FirearmType] = None
    serial_number: Optional[str] = None
    caliber: Optional[str] = None
    action: Optional[str] = None
    finish: Optional[str] = None
    barrel_length: Optional[float] = Field(None, ge=0)
    parts: Optional[list[dict[str, Any]]] = None


class FilamentDetailFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    material: Optional[FilamentMaterial] = None
    color: Optional[str] = None
    weight_g: Optional[int] = Field(None, ge=0)
    diameter: Optional[FilamentDiameter] = None


class InstrumentDetailFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[InstrumentType] = None
    color: Optional[str] = None
    strings: Optional[int] = Field(None, ge=0)
    tuning: Optional[str] = None
    body_material: Optional[str] = None
    finish: Optional[str] = None


DETAIL_SCHEMAS: dict[str, type[BaseModel]] = {
    "AMMO": AmmoDetailFields,
    "FIREARM": FirearmDetailFields,
    "FILAMENT": FilamentDetailFields,
    "INSTRUMENT": InstrumentDetailFields,
}


class ConsumeRequest(BaseModel):
    rounds: int = Field(..., ge=0, description="Rounds fired")


class LogUseEntry(BaseModel):
    item_id: int
    rounds: int = Field(..., ge=0)


class LogUseRequest(BaseModel):
    entries: list[LogUseEntry] = Field(..., min_length=1)


class PersonFields(BaseModel):
    phone: Optional[str] = Field(None, description="E.164 phone number, e.g. +15125551234")
    email: Optional[EmailStr] = None

    @field_validator("phone")
    @classmethod
    def _phone_is_e164(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        if not notifier.is_e164(value):
            raise ValueError("Phone number must be in E.164 format (e.g. +15125551234)")
        return value

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email(cls, value: Any) -> Any:
        return None if value == "" else value


class PersonCreate(PersonFields):
    name: str = Field(..., min_length=1)
    preferred_channel: Channel = "WHATSAPP"
    active: bool = True


class PersonUpdate(PersonFields):
    name: Optional[str] = Field(None, min_length=1)
    preferred_channel: Optional[Channel] = None
    active: Optional[bool] = None


class ThresholdCreate(BaseModel):
    caliber: str = Field(..., min_length=1)
    min_rounds: int = Field(..., ge=1)
    person_id: int
    enabled: bool = True


class ThresholdUpdate(BaseModel):
    caliber: Optional[str] = Field(None, min_length=1)
    min_rounds: Optional[int] = Field(None, ge=1)
    person_id: Optional[int] = None
    enabled: Optional[bool] = None


class EvaluateRequest(BaseModel):
    caliber: str = Field(..., min_length=1)


class SendTestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    person_id: int = Field(..., alias="personId")
    message: Optional[str] = None
    subject: Optional[str] = None


class TripFields(BaseModel):
    destination_city: Optional[str] = None
    destination_country: Optional[str] = None
    destination_lat: Optional[float] = Field(None, ge=-90, le=90)
    destination_lon: Optional[float] = Field(None, ge=-180, le=180)
    destination_tz: Optional[str] = None
    notes: Optional[str] = None


class TripCreate(TripFields):
    name: str = Field(..., min_length=1)
    type: TripType = "LEISURE"
    start_date: date
    end_date: date


class TripUpdate(TripFields):
    name: Optional[str] = Field(None, min_length=1)
    type: Optional[TripType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1)
    start_at: datetime
    end_at: Optional[datetime] = None
    timezone: str = Field(default_factory=lambda: settings.default_timezone, description="IANA timezone the event is expressed in")
    is_all_day: bool = False
    trip_id: Optional[int] = None
    location: Optional[str] = None
    url: Optional[str] = None


class EventUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    timezone: Optional[str] = None
    is_all_day: Optional[bool] = None
    trip_id: Optional[int] = None
    location: Optional[str] = None
    url: Optional[str] = None


class DayUpsert(BaseModel):
    status: DayStatus
    notes: Optional[str] = None
    trip_id: Optional[int] = None
    pto_fraction: Optional[float] = Field(None, ge=0, le=1)
    location_city: Optional[str] = None
    location_country: Optional[str] = None
    location_lat: Optional[float] = Field(None, ge=-90, le=90)
    location_lon: Optional[float] = Field(None, ge=-180, le=180)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)


# ===== Serialization =====


def _row_to_dict(obj: Any, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for attr in obj.__mapper__.column_attrs:
        if attr.key in exclude:
            continue
        value = getattr(obj, attr.key)
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        data[attr.key] = value
    return data


def _photo_urls(keys: list[str]) -> list[dict[str, str]]:
    try:
        return [{"key": key, "url": storage.signed_url(key)} for key in keys]
    except storage.StorageNotConfiguredError:
        return [{"key": key, "url": ""} for key in keys]


def _item_to_dict(item: Any, detail: Any = None, with_photos: bool = False) -> dict[str, Any]:
    data = _row_to_dict(item)
    if detail is not None:
        data["detail"] = _row_to_dict(detail, exclude=("item_id",))
        if hasattr(detail, "total_rounds"):
            data["detail"]["total_rounds"] = detail.total_rounds
    else:
        data["detail"] = None
    if with_photos:
        data["photos"] = _photo_urls(item.image_keys or [])
    return data


def _validate_detail(category: str, detail: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Check detail fields against the category schema, returning only the keys sent."""
    if not detail:
        return {}
    schema = DETAIL_SCHEMAS.get(category)
    if schema is None:
        raise HTTPException(status_code=400, detail=f"{category} items have no detail fields")
    try:
        return schema.model_validate(detail).model_dump(exclude_unset=True)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage database and change stream lifecycle."""
    logger.info("Starting Homestead API...")
    await init_db()
    logger.info("Database initialized")

    if not any(sub.name == "threshold_evaluator" for sub in change_stream.subscriptions):
        register_threshold_evaluator(change_stream, AsyncSessionLocal)
    change_stream.start()
    logger.info("Server ready")

    yield
    logger.info("Shutting down...")
    await change_stream.stop()
    await close_db()


# Create FastAPI app
app = FastAPI(
    title="Homestead API",
    description="Household inventory, ammunition stock alerts and calendar",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration from environment
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
ALLOWED_ORIGINS = [origin.strip() for origin in _cors_origins.split(",") if origin.strip()]

# Security check: don't allow wildcard with credentials in production
_is_production = os.getenv("ENV", "development").lower() in ("production", "prod")
if _is_production and "*" in ALLOWED_ORIGINS:
    raise ValueError("CORS_ORIGINS cannot be '*' in production when credentials are enabled")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiting
limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return JSON 429 with Retry-After header."""
    retry_after = exc.detail.split(" ")[-1] if exc.detail else "60"
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded"},
        headers={"Retry-After": retry_after},
    )


@app.get("/health")
async def health_check():
    """Health check endpoint - verifies DB connectivity."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "dependencies": {"database": "healthy"},
        }
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "dependencies": {"database": "unhealthy"},
            },
        )


# ===== Authentication =====

# API router for versioned endpoints, mounted at both /api and /api/v1
api_router = APIRouter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


async def get_current_user(
    token: Annotated[str | None, Depends(oauth2_scheme)]
) -> TokenData:
    """Dependency to get the current authenticated user from JWT token."""
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = decode_access_token(token)
    if token_data is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token_data


async def require_admin(
    current_user: Annotated[TokenData, Depends(get_current_user)]
) -> TokenData:
    """Every business endpoint is restricted to the admin group."""
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


AdminUser = Annotated[TokenData, Depends(require_admin)]


# ===== Auth Endpoints =====


@api_router.post("/auth/login", response_model=Token)
@limiter.limit("10/minute")
async def login(request: Request, form_data: Annotated[OAuth2PasswordRequestForm, Depends()]):
    """Login and get access/refresh tokens.

    Uses constant-time comparison to prevent timing attacks.
    """
    async with AsyncSessionLocal() as session:
        user = await get_user_by_email(session, form_data.username)

        # Use dummy hash if user doesn't exist to prevent timing attacks
        password_hash = user.hashed_password if user else DUMMY_HASH
        password_valid = verify_password(form_data.password, password_hash)

        if not user or not password_valid:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=describe_auth_error(NotAuthorizedException()),
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not user.confirmed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=describe_auth_error(UserNotConfirmedException()),
            )

        access_token = create_access_token(user.id, user.email, user.is_admin)
        refresh_token = create_refresh_token(user.id, user.email, user.is_admin)

        return Token(access_token=access_token, refresh_token=refresh_token)


@api_router.post("/auth/refresh", response_model=AccessTokenResponse)
async def refresh_token(request: RefreshTokenRequest):
    """Get a new access token using a refresh token. Group membership is re-read."""
    token_data = decode_refresh_token(request.refresh_token)
    if token_data is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    async with AsyncSessionLocal() as session:
        user = await get_user(session, token_data.user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(user.id, user.email, user.is_admin)
    return AccessTokenResponse(access_token=access_token)


@api_router.get("/auth/me")
async def get_current_user_info(
    current_user: Annotated[TokenData, Depends(get_current_user)]
):
    """Get current authenticated user info."""
    return {
        "user_id": current_user.user_id,
        "email": current_user.email,
        "is_admin": current_user.is_admin,
    }


@api_router.put("/auth/password")
async def change_password(
    body: ChangePasswordRequest,
    current_user: Annotated[TokenData, Depends(get_current_user)],
):
    """Change the authenticated user's password."""
    async with AsyncSessionLocal() as session:
        user = await get_user_by_email(session, current_user.email)
        if not user or not verify_password(body.current_password, user.hashed_password):
            raise HTTPException(status_code=400, detail="Current password is incorrect")

        is_valid, error_msg = validate_password(body.new_password)
        if not is_valid:
            raise HTTPException(status_code=400, detail=error_msg)

        await set_user_password(session, user, hash_password(body.new_password))

    return {"message": "Password updated successfully"}


# ===== Reference Data =====


@api_router.get("/reference")
async def get_reference_data(current_user: AdminUser):
    """Enumerations used by the admin forms."""
    return {
        "categories": list(CATEGORIES),
        "calibers": CALIBER_GROUPS,
        "currencies": list(CURRENCIES),
        "channels": list(CHANNELS),
        "day_statuses": DAY_STATUS_LABELS,
    }


# ===== Item Endpoints =====


@api_router.get("/items")
async def get_items(
    current_user: AdminUser,
    category: Optional[Category] = Query(None, description="Filter by category"),
    search: Optional[str] = Query(None, description="Name or brand contains"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """List catalog items with optional filters."""
    async with AsyncSessionLocal() as session:
        items, total = await list_items(session, category=category, search=search, limit=limit, offset=offset)
        return {
            "count": len(items),
            "total": total,
            "items": [_item_to_dict(item) for item in items],
        }


@api_router.post("/items", status_code=status.HTTP_201_CREATED)
async def create_new_item(current_user: AdminUser, item: ItemCreate):
    """Create a catalog item and its category detail together."""
    detail_fields = _validate_detail(item.category, item.detail)
    item_fields = item.model_dump(exclude={"category", "detail"}, exclude_none=True)

    async with AsyncSessionLocal() as session:
        try:
            new_item, detail = await create_item_with_detail(session, item.category, item_fields, detail_fields)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SQLAlchemyError:
            raise HTTPException(status_code=500, detail="Failed to save item")

        return {
            "status": "success",
            "message": f"Added {new_item.name}",
            "item": _item_to_dict(new_item, detail),
        }


@api_router.get("/items/{item_id}")
async def get_single_item(current_user: AdminUser, item_id: int):
    """Get a single item with its detail and signed photo URLs."""
    async with AsyncSessionLocal() as session:
        found = await get_item_with_detail(session, item_id)
        if not found:
            raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
        item, detail = found
        return _item_to_dict(item, detail, with_photos=True)


@api_router.put("/items/{item_id}")
async def update_existing_item(current_user: AdminUser, item_id: int, item: ItemUpdate):
    """Update an item and its detail together. Ammo edits keep rounds already used."""
    async with AsyncSessionLocal() as session:
        existing = await get_item(session, item_id)
        if not existing:
            raise HTTPException(status_code=404, detail=f"Item {item_id} not found")

        detail_fields = _validate_detail(existing.category, item.detail)
        item_fields = item.model_dump(exclude={"detail"}, exclude_unset=True)

        try:
            updated = await update_item_with_detail(session, item_id, item_fields, detail_fields)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SQLAlchemyError:
            raise HTTPException(status_code=500, detail="Failed to save item")

        updated_item, detail = updated
        return {
            "status": "success",
            "message": f"Updated {updated_item.name}",
            "item": _item_to_dict(updated_item, detail),
        }


@api_router.delete("/items/{item_id}")
async def delete_existing_item(current_user: AdminUser, item_id: int):
    """Delete an item, its detail and its photos."""
    async with AsyncSessionLocal() as session:
        item = await get_item(session, item_id)
        if not item:
            raise HTTPException(status_code=404, detail=f"Item {item_id} not found")

        item_name = item.name
        image_keys = list(item.image_keys or [])

        try:
            deleted = await delete_item_with_detail(session, item_id)
        except SQLAlchemyError:
            raise HTTPException(status_code=500, detail="Failed to delete item")
        if not deleted:
            raise HTTPException(status_code=500, detail="Failed to delete item")

    for key in image_keys:
        await asyncio.to_thread(storage.delete_photo, key)

    return {"status": "success", "message": f"Removed {item_name}"}


@api_router.get("/transactions")
async def get_transactions(
    current_user: AdminUser,
    item_id: Optional[int] = Query(None),
    operation: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    """Recent ledger and catalog writes."""
    async with AsyncSessionLocal() as session:
        logs = await get_transaction_logs(session, limit=limit, item_id=item_id, operation=operation)
        return {"count": len(logs), "transactions": [_row_to_dict(log) for log in logs]}


# ===== Photos =====


@api_router.get("/items/{item_id}/photos")
async def get_item_photos(current_user: AdminUser, item_id: int):
    async with AsyncSessionLocal() as session:
        item = await get_item(session, item_id)
        if not item:
            raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
        return {"photos": _photo_urls(item.image_keys or [])}


@api_router.post("/items/{item_id}/photos", status_code=status.HTTP_201_CREATED)
async def upload_item_photo(
    current_user: AdminUser,
    item_id: int,
    file: Annotated[UploadFile, File(description="Photo to attach")],
):
    """Upload a photo and append its key to the item. The first photo is the cover."""
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(data) > MAX_PHOTO_BYTES:
        raise HTTPException(status_code=413, detail="Photo is larger than 10 MB")

    async with AsyncSessionLocal() as session:
        item = await get_item(session, item_id)
        if not item:
            raise HTTPException(status_code=404, detail=f"Item {item_id} not found")

        try:
            key = await asyncio.to_thread(storage.upload_photo, item_id, file.filename, data, file.content_type)
        except storage.StorageNotConfiguredError as e:
            raise HTTPException(status_code=503, detail=str(e))

        item = await add_image_key(session, item_id, key)
        return {"key": key, "url": storage.signed_url(key), "image_keys": item.image_keys}


@api_router.delete("/items/{item_id}/photos")
async def delete_item_photo(
    current_user: AdminUser,
    item_id: int,
    key: str = Query(..., description="Storage key of the photo"),
):
    if not storage.key_belongs_to_item(key, item_id):
        raise HTTPException(status_code=400, detail="Photo does not belong to this item")

    async with AsyncSessionLocal() as session:
        item = await get_item(session, item_id)
        if not item:
            raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
        if key not in (item.image_keys or []):
            raise HTTPException(status_code=404, detail="Photo not found")

        item = await remove_image_key(session, item_id, key)

    await asyncio.to_thread(storage.delete_photo, key)
    return {"status": "success", "image_keys": item.image_keys}


# ===== Ammo Ledger =====


@api_router.get("/ammo")
async def get_ammo(
    current_user: AdminUser,
    caliber: Optional[str] = Query(None, description="Filter by caliber"),
):
    """Ammo lots with their stock."""
    async with AsyncSessionLocal() as session:
        rows = await list_details(session, "AMMO", caliber=caliber)
        return {
            "count": len(rows),
            "items": [_item_to_dict(item, detail) for item, detail in rows],
        }


@api_router.get("/ammo/totals")
async def get_ammo_totals(current_user: AdminUser):
    """Purchased and available rounds per caliber."""
    async with AsyncSessionLocal() as session:
        return {"calibers": await caliber_totals(session)}


@api_router.post("/ammo/{item_id}/consume")
async def consume_ammo(current_user: AdminUser, item_id: int, body: ConsumeRequest):
    """Take rounds from one lot. Asking for more than is on hand reports a shortfall."""
    async with AsyncSessionLocal() as session:
        try:
            result = await consume_rounds(session, item_id, body.rounds)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return result.to_dict()


@api_router.post("/ammo/log-use")
async def log_ammo_use(current_user: AdminUser, body: LogUseRequest):
    """Apply a range session's entries in order; each entry succeeds or fails on its own."""
    async with AsyncSessionLocal() as session:
        results = await log_use(session, [(entry.item_id, entry.rounds) for entry in body.entries])
        return {
            "results": [result.to_dict() for result in results],
            "consumed": sum(result.consumed for result in results),
            "shortfall": sum(result.shortfall for result in results),
            "errors": sum(1 for result in results if not result.ok),
        }


# ===== Notification People =====


@api_router.get("/people")
async def get_people(
    current_user: AdminUser,
    active_only: bool = Query(False, description="Only people who can receive alerts"),
):
    async with AsyncSessionLocal() as session:
        people = await list_people(session, active_only=active_only)
        return {"count": len(people), "people": [_row_to_dict(person) for person in people]}


@api_router.post("/people", status_code=status.HTTP_201_CREATED)
async def create_new_person(current_user: AdminUser, body: PersonCreate):
    async with AsyncSessionLocal() as session:
        try:
            person = await create_person(session, **body.model_dump())
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _row_to_dict(person)


@api_router.put("/people/{person_id}")
async def update_existing_person(current_user: AdminUser, person_id: int, body: PersonUpdate):
    async with AsyncSessionLocal() as session:
        try:
            person = await update_person(session, person_id, **body.model_dump(exclude_unset=True))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if person is None:
            raise HTTPException(status_code=404, detail=f"Person {person_id} not found")
        return _row_to_dict(person)


@api_router.delete("/people/{person_id}")
async def delete_existing_person(current_user: AdminUser, person_id: int):
    """Delete a person and the thresholds that alert them."""
    async with AsyncSessionLocal() as session:
        if not await delete_person(session, person_id):
            raise HTTPException(status_code=404, detail=f"Person {person_id} not found")
    return {"status": "success"}


# ===== Ammo Thresholds =====


@api_router.get("/thresholds")
async def get_thresholds(
    current_user: AdminUser,
    caliber: Optional[str] = Query(None),
):
    async with AsyncSessionLocal() as session:
        thresholds = await list_thresholds(session, caliber=caliber)
        return {"count": len(thresholds), "thresholds": [_row_to_dict(t) for t in thresholds]}


@api_router.post("/thresholds", status_code=status.HTTP_201_CREATED)
async def create_new_threshold(current_user: AdminUser, body: ThresholdCreate):
    async with AsyncSessionLocal() as session:
        try:
            threshold = await create_threshold(session, **body.model_dump())
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _row_to_dict(threshold)


@api_router.put("/thresholds/{threshold_id}")
async def update_existing_threshold(current_user: AdminUser, threshold_id: int, body: ThresholdUpdate):
    async with AsyncSessionLocal() as session:
        try:
            threshold = await update_threshold(session, threshold_id, **body.model_dump(exclude_unset=True))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if threshold is None:
            raise HTTPException(status_code=404, detail=f"Threshold {threshold_id} not found")
        return _row_to_dict(threshold)


@api_router.post("/thresholds/{threshold_id}/toggle")
async def toggle_existing_threshold(current_user: AdminUser, threshold_id: int):
    async with AsyncSessionLocal() as session:
        threshold = await toggle_threshold(session, threshold_id)
        if threshold is None:
            raise HTTPException(status_code=404, detail=f"Threshold {threshold_id} not found")
        return _row_to_dict(threshold)


@api_router.delete("/thresholds/{threshold_id}")
async def delete_existing_threshold(current_user: AdminUser, threshold_id: int):
    async with AsyncSessionLocal() as session:
        if not await delete_threshold(session, threshold_id):
            raise HTTPException(status_code=404, detail=f"Threshold {threshold_id} not found")
    return {"status": "success"}


@api_router.post("/thresholds/evaluate")
async def evaluate_thresholds(current_user: AdminUser, body: EvaluateRequest):
    """Run the low-ammo check for one caliber now."""
    async with AsyncSessionLocal() as session:
        total = await total_available_for_caliber(session, body.caliber)
        fired = await evaluate_caliber(session, body.caliber)
        return {"caliber": body.caliber, "total": total, "fired": fired}


# ===== Notifications =====


@api_router.post("/mutations/test-notification")
async def send_test_notification(current_user: AdminUser, body: SendTestRequest):
    """Send one message to a person on their preferred channel."""
    async with AsyncSessionLocal() as session:
        result = await notifier.send_to_person(session, body.person_id, body.message, body.subject)
    response: dict[str, Any] = {"ok": result.ok}
    if result.error:
        response["error"] = result.error
    return response


# ===== Calendar: Trips =====


def _parse_range(start: Optional[str], end: Optional[str]) -> tuple[date, date]:
    try:
        return parse_date_range(start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@api_router.get("/trips")
async def get_trips(
    current_user: AdminUser,
    start: Optional[str] = Query(None, description="Range start, e.g. 2026-03-01 or 'today'"),
    end: Optional[str] = Query(None, description="Range end, e.g. 2026-03-31 or 'next month'"),
):
    range_start, range_end = _parse_range(start, end) if start or end else (None, None)
    async with AsyncSessionLocal() as session:
        trips = await list_trips(session, range_start, range_end)
        return {"count": len(trips), "trips": [_row_to_dict(trip) for trip in trips]}


@api_router.post("/trips", status_code=status.HTTP_201_CREATED)
async def create_new_trip(current_user: AdminUser, body: TripCreate):
    async with AsyncSessionLocal() as session:
        try:
            trip = await create_trip(session, **body.model_dump())
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _row_to_dict(trip)


@api_router.get("/trips/{trip_id}")
async def get_single_trip(current_user: AdminUser, trip_id: int):
    async with AsyncSessionLocal() as session:
        trip = await get_trip(session, trip_id)
        if trip is None:
            raise HTTPException(status_code=404, detail=f"Trip {trip_id} not found")
        return _row_to_dict(trip)


@api_router.put("/trips/{trip_id}")
async def update_existing_trip(current_user: AdminUser, trip_id: int, body: TripUpdate):
    async with AsyncSessionLocal() as session:
        try:
            trip = await update_trip(session, trip_id, **body.model_dump(exclude_unset=True))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if trip is None:
            raise HTTPException(status_code=404, detail=f"Trip {trip_id} not found")
        return _row_to_dict(trip)


@api_router.delete("/trips/{trip_id}")
async def delete_existing_trip(current_user: AdminUser, trip_id: int):
    async with AsyncSessionLocal() as session:
        if not await delete_trip(session, trip_id):
            raise HTTPException(status_code=404, detail=f"Trip {trip_id} not found")
    return {"status": "success"}


# ===== Calendar: Events =====


@api_router.get("/events")
async def get_events(
    current_user: AdminUser,
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
):
    range_start, range_end = _parse_range(start, end) if start or end else (None, None)
    async with AsyncSessionLocal() as session:
        events = await list_events(session, range_start, range_end)
        return {"count": len(events), "events": [_row_to_dict(event) for event in events]}


@api_router.post("/events", status_code=status.HTTP_201_CREATED)
async def create_new_event(current_user: AdminUser, body: EventCreate):
    fields = body.model_dump(exclude={"title", "start_at", "end_at", "timezone"})
    async with AsyncSessionLocal() as session:
        try:
            event = await create_event(
                session, body.title, body.start_at, body.end_at, tz_name=body.timezone, **fields
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _row_to_dict(event)


@api_router.put("/events/{event_id}")
async def update_existing_event(current_user: AdminUser, event_id: int, body: EventUpdate):
    fields = body.model_dump(exclude_unset=True)
    if "timezone" in fields:
        fields["tz_name"] = fields.pop("timezone")
    async with AsyncSessionLocal() as session:
        if await get_event(session, event_id) is None:
            raise HTTPException(status_code=404, detail=f"Event {event_id} not found")
        try:
            event = await update_event(session, event_id, **fields)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _row_to_dict(event)


@api_router.delete("/events/{event_id}")
async def delete_existing_event(current_user: AdminUser, event_id: int):
    async with AsyncSessionLocal() as session:
        if not await delete_event(session, event_id):
            raise HTTPException(status_code=404, detail=f"Event {event_id} not found")
    return {"status": "success"}


# ===== Calendar: Days =====


@api_router.get("/days")
async def get_days(
    current_user: AdminUser,
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
):
    """Every date in the range, stored or defaulted."""
    range_start, range_end = _parse_range(start, end)
    async with AsyncSessionLocal() as session:
        stored = await list_days(session, range_start, range_end)
    return {"days": [cell.to_dict() for cell in day_cells(range_start, range_end, stored)]}


@api_router.put("/days/{day_date}")
async def upsert_single_day(current_user: AdminUser, day_date: date, body: DayUpsert):
    fields = body.model_dump(exclude={"status"}, exclude_unset=True)
    async with AsyncSessionLocal() as session:
        try:
            day = await upsert_day(session, day_date, body.status, **fields)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _row_to_dict(day)


@api_router.delete("/days/{day_date}")
async def clear_single_day(current_user: AdminUser, day_date: date):
    """Drop the stored record so the date shows its default status again."""
    async with AsyncSessionLocal() as session:
        if not await delete_day(session, day_date):
            raise HTTPException(status_code=404, detail=f"No stored record for {day_date}")
    return {"status": "success"}


@api_router.get("/calendar")
async def get_calendar(
    current_user: AdminUser,
    start: Optional[str] = Query(None, description="Range start, e.g. 2026-03-01 or 'today'"),
    end: Optional[str] = Query(None, description="Range end, e.g. 2026-03-31 or 'next month'"),
):
    """Trips and events merged into one list, plus per-day cell status."""
    range_start, range_end = _parse_range(start, end)
    async with AsyncSessionLocal() as session:
        trips = await list_trips(session, range_start, range_end)
        events = await list_events(session, range_start, range_end)
        stored_days = await list_days(session, range_start, range_end)

    return {
        "start": range_start.isoformat(),
        "end": range_end.isoformat(),
        "events": [entry.to_dict() for entry in merge_calendar(trips, events)],
        "days": [cell.to_dict() for cell in day_cells(range_start, range_end, stored_days)],
    }


# ===== Mount API router at both /api and /api/v1 =====
app.include_router(api_router, prefix="/api/v1")
app.include_router(api_router, prefix="/api")


def run_api():
    """Run the FastAPI server."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)  # nosec B104
