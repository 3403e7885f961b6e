from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, File, Form, Header, Query, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware

from classifieds.config import (
    allow_unverified_password_reset,
    allowed_hosts,
    auto_create_tables,
    cors_origins,
    enforce_secure_secrets,
    jwt_ttl_minutes,
    log_level,
    login_rate_limit,
    uploads_dir,
)
from classifieds.credentials import CredentialStore, Identity, verify_token
from classifieds.db import ENGINE, session_scope
from classifieds.errors import ClassifiedsError, ForbiddenError, InvalidTokenError, ValidationError
from classifieds.models import Base, User
from classifieds.photo_store import PUBLIC_PREFIX, PhotoStore, resolve_ref
from classifieds.rate_limit import limiter, login_key, reset_key
from classifieds.repository import AdFilters, AdRepository, MAX_PAGE_SIZE
from classifieds.seed import seed_reference_data


logging.basicConfig(level=log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Production hardening: ensure we don't run with dangerous defaults.
enforce_secure_secrets()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    os.makedirs(uploads_dir(), exist_ok=True)
    if auto_create_tables():
        Base.metadata.create_all(bind=ENGINE)
        with session_scope() as db:
            added = seed_reference_data(db)
        if added:
            logger.info("Seeded %s reference rows", added)
    yield


app = FastAPI(title="Classifieds API", lifespan=lifespan)

# Optional host protection (recommend configuring ALLOWED_HOSTS in prod).
app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts())


@app.middleware("http")
async def _security_headers(request, call_next):
    resp = await call_next(request)
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    resp.headers.setdefault("X-Frame-Options", "DENY")
    resp.headers.setdefault("Referrer-Policy", "no-referrer")
    return resp


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------
# Error envelope
# -----------------------
def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


@app.exception_handler(ClassifiedsError)
async def _classifieds_error(request, exc: ClassifiedsError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request, exc: RequestValidationError):
    errs = exc.errors()
    if errs:
        first = errs[0]
        loc = ".".join(str(x) for x in first.get("loc", ()) if x not in {"body", "query", "path"})
        msg = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
    else:
        msg = "Invalid request"
    return _error(400, msg)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def _unexpected_error(request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# -----------------------
# Dependencies
# -----------------------
def get_db():
    with session_scope() as db:
        yield db


# Function scope: the session commits (or rolls back) before the response goes out.
DbDep = Annotated[Session, Depends(get_db, scope="function")]


def get_credentials(db: DbDep) -> CredentialStore:
    return CredentialStore(db)


def get_ad_repository(db: DbDep) -> AdRepository:
    return AdRepository(db)


def get_photo_store() -> PhotoStore:
    return PhotoStore()


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def get_identity(
    db: DbDep,
    authorization: Annotated[str | None, Header()] = None,
) -> Identity:
    identity = verify_token(_bearer_token(authorization))
    if db.get(User, identity.id) is None:
        raise InvalidTokenError()
    return identity


CredentialsDep = Annotated[CredentialStore, Depends(get_credentials)]
AdsDep = Annotated[AdRepository, Depends(get_ad_repository)]
PhotosDep = Annotated[PhotoStore, Depends(get_photo_store)]
MeDep = Annotated[Identity, Depends(get_identity)]


# -----------------------
# Schemas
# -----------------------
class RegisterIn(BaseModel):
    username: str = ""
    email: str = ""
    password: str = ""
    first_name: str = ""
    last_name: str = ""
    phone: str = ""


class LoginIn(BaseModel):
    login: str = ""
    password: str = ""


class ResetPasswordIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = ""
    new_password: str = Field(default="", alias="newPassword")


class ProfileUpdateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str | None = None
    email: str | None = None
    password: str | None = None
    new_password: str | None = Field(default=None, alias="newPassword")


class AdUpdateIn(BaseModel):
    """
    Partial update: only provided fields are changed.
    """

    title: str | None = None
    description: str | None = None
    category_id: int | None = None
    price: float | None = None
    ad_type: str | None = None
    city: int | None = None
    location: str | None = None


def _opt_int(v: str | None, field: str) -> int | None:
    v = (v or "").strip()
    if not v:
        return None
    try:
        return int(v)
    except ValueError:
        raise ValidationError(f"{field} must be an integer")


def _opt_float(v: str | None, field: str) -> float | None:
    v = (v or "").strip()
    if not v:
        return None
    try:
        return float(v)
    except ValueError:
        raise ValidationError(f"{field} must be a number")


def _profile_out(u: User) -> dict[str, Any]:
    return {
        "id": u.id,
        "username": u.username,
        "email": u.email,
        "first_name": u.first_name,
        "last_name": u.last_name,
        "phone": u.phone,
    }


# -----------------------
# Meta
# -----------------------
@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/meta/ad-types")
def meta_ad_types(repo: AdsDep) -> dict[str, Any]:
    return {"items": repo.ad_types()}


@app.get("/meta/cities")
def meta_cities(repo: AdsDep) -> dict[str, Any]:
    return {"items": repo.cities()}


# -----------------------
# Auth
# -----------------------
@app.post("/auth/register")
def register(data: RegisterIn, creds: CredentialsDep):
    user_id = creds.register(
        username=data.username,
        email=data.email,
        password=data.password,
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
    )
    return {"message": "User registered", "user_id": user_id}


@app.post("/auth/login")
def login(data: LoginIn, creds: CredentialsDep):
    ident = (data.login or "").strip().lower()
    if ident:
        limiter.hit(
            key=login_key(ident),
            limit=login_rate_limit(),
            detail="Too many login attempts",
        )
    token = creds.authenticate(data.login, data.password)
    return {"token": token, "token_type": "bearer", "expires_in": jwt_ttl_minutes() * 60}


@app.post("/auth/reset-password")
def reset_password(data: ResetPasswordIn, creds: CredentialsDep):
    if not allow_unverified_password_reset():
        raise ForbiddenError("Password reset is disabled")
    email = (data.email or "").strip().lower()
    if email:
        limiter.hit(
            key=reset_key(email),
            limit=login_rate_limit(),
            detail="Too many reset attempts",
        )
    creds.reset_password(data.email, data.new_password)
    return {"message": "Password changed"}


# -----------------------
# Users
# -----------------------
@app.get("/users/profile")
def get_profile(me: MeDep, creds: CredentialsDep) -> dict[str, Any]:
    return _profile_out(creds.get_user(me.id))


@app.put("/users/profile")
def update_profile(data: ProfileUpdateIn, me: MeDep, creds: CredentialsDep) -> dict[str, Any]:
    user = creds.update_profile(
        me.id,
        username=data.username,
        email=data.email,
        password=data.password,
        new_password=data.new_password,
    )
    return {"message": "Profile updated", "user": _profile_out(user)}


@app.get("/users/ads")
def my_ads(me: MeDep, repo: AdsDep) -> dict[str, Any]:
    return {"items": repo.list_by_owner(me.id)}


# -----------------------
# Ads
# -----------------------
@app.get("/ads")
def list_ads(
    repo: AdsDep,
    keyword: str | None = Query(default=None),
    category: str | None = Query(default=None),
    price_min: str | None = Query(default=None),
    price_max: str | None = Query(default=None),
    city: str | None = Query(default=None),
    location: str | None = Query(default=None),
    sold: bool | None = Query(default=None),
    sort_by: str | None = Query(default=None),
    order: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
):
    filters = AdFilters(
        keyword=keyword,
        category=_opt_int(category, "category"),
        price_min=_opt_float(price_min, "price_min"),
        price_max=_opt_float(price_max, "price_max"),
        city=_opt_int(city, "city"),
        location=location,
        sold=sold,
        sort_by=sort_by,
        order=order,
        limit=limit,
        offset=offset,
    )
    items = list(repo.search(filters))
    return {"items": items, "total": repo.count(filters), "limit": limit, "offset": offset}


@app.get("/ads/{ad_id:int}")
def get_ad(ad_id: int, repo: AdsDep) -> dict[str, Any]:
    return repo.get(ad_id)


@app.post("/ads")
def create_ad(
    me: MeDep,
    db: DbDep,
    repo: AdsDep,
    photo_store: PhotosDep,
    title: Annotated[str | None, Form()] = None,
    description: Annotated[str | None, Form()] = None,
    category_id: Annotated[str | None, Form()] = None,
    price: Annotated[str | None, Form()] = None,
    city: Annotated[str | None, Form()] = None,
    location: Annotated[str | None, Form()] = None,
    ad_type: Annotated[str | None, Form()] = None,
    photos: Annotated[list[UploadFile] | None, File()] = None,
):
    # Validate uploads before touching the database or the disk.
    pending = photo_store.prepare((f.file.read(), f.filename or "", f.content_type or "") for f in (photos or []))

    ad_id = repo.create(
        owner_id=me.id,
        category_id=category_id,
        ad_type_name=ad_type,
        title=title,
        description=description,
        price=price,
        city=city,
        location=location,
    )
    stored = photo_store.store_many(ad_id, pending)
    try:
        repo.attach_photos(ad_id, stored)
        db.commit()
    except Exception:
        photo_store.discard([s.ref for s in stored])
        raise
    return {"message": "Ad created", "ad_id": ad_id, "photos": [s.ref for s in stored]}


@app.put("/ads/{ad_id:int}")
def update_ad(ad_id: int, data: AdUpdateIn, me: MeDep, repo: AdsDep) -> dict[str, Any]:
    repo.update(
        ad_id,
        me.id,
        title=data.title,
        description=data.description,
        category_id=data.category_id,
        price=data.price,
        ad_type_name=data.ad_type,
        city=data.city,
        location=data.location,
    )
    return {"message": "Ad updated", "ad": repo.get(ad_id)}


@app.delete("/ads/{ad_id:int}")
def delete_ad(ad_id: int, me: MeDep, db: DbDep, repo: AdsDep, photo_store: PhotosDep) -> dict[str, Any]:
    refs = repo.delete(ad_id, me.id)
    # Files go only once the rows are gone for good.
    db.commit()
    photo_store.discard(refs)
    return {"message": "Ad deleted"}


@app.patch("/ads/{ad_id:int}/mark-sold")
def mark_sold(ad_id: int, me: MeDep, repo: AdsDep) -> dict[str, Any]:
    repo.mark_sold(ad_id, me.id)
    return {"message": "Ad marked as sold"}


# -----------------------
# Uploaded files
# -----------------------
@app.get("/uploads/{path:path}", include_in_schema=False)
def uploads(path: str):
    """
    Serve stored photos from disk. Missing files answer 204 so stale
    references don't flood the logs with 404s.
    """
    disk_path = resolve_ref(f"{PUBLIC_PREFIX}{(path or '').lstrip('/')}")
    if disk_path and os.path.isfile(disk_path):
        return FileResponse(disk_path)
    return Response(status_code=204)
