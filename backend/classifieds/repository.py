from __future__ import annotations

import datetime as dt
import logging
import math
from dataclasses import dataclass
from typing import Any, Iterator

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, selectinload

from classifieds.errors import ForbiddenError, InvalidAdTypeError, NotFoundError, ValidationError
from classifieds.models import Ad, AdType, City, Photo
from classifieds.photo_store import StoredPhoto


logger = logging.getLogger(__name__)

# Only these names may reach ORDER BY; anything else is ignored.
SORTABLE_COLUMNS = {
    "id": Ad.id,
    "created_at": Ad.created_at,
    "updated_at": Ad.updated_at,
    "price": Ad.price,
    "title": Ad.title,
    "category_id": Ad.category_id,
    "city_id": Ad.city_id,
    "ad_type_id": Ad.ad_type_id,
    "is_sold": Ad.is_sold,
}

MAX_PAGE_SIZE = 200


@dataclass
class AdFilters:
    keyword: str | None = None
    category: int | None = None
    price_min: float | None = None
    price_max: float | None = None
    city: int | None = None
    location: str | None = None
    sold: bool | None = None
    sort_by: str | None = None
    order: str | None = None
    limit: int = 50
    offset: int = 0


def _is_blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def parse_price(v: Any) -> float:
    if _is_blank(v) or isinstance(v, bool):
        raise ValidationError("Price is required")
    try:
        price = float(str(v).strip())
    except ValueError:
        raise ValidationError("Price must be a number")
    if not math.isfinite(price):
        raise ValidationError("Price must be a number")
    if price < 0:
        raise ValidationError("Price must not be negative")
    return round(price, 2)


def parse_int(v: Any, field: str) -> int:
    if _is_blank(v) or isinstance(v, bool):
        raise ValidationError(f"{field} is required")
    try:
        return int(str(v).strip())
    except ValueError:
        raise ValidationError(f"{field} must be an integer")


def like_pattern(text: str) -> str:
    """
    Case-insensitive substring pattern; `%`, `_` and `\\` in the text match literally.
    """
    escaped = text.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def sort_direction(order: str | None) -> str:
    return "DESC" if (order or "").strip().upper() == "DESC" else "ASC"


def ad_out(a: Ad) -> dict[str, Any]:
    return {
        "id": a.id,
        "owner_id": a.owner_id,
        "category_id": a.category_id,
        "ad_type_id": a.ad_type_id,
        "ad_type": a.ad_type.type_name if a.ad_type else "",
        "title": a.title,
        "description": a.description,
        "price": a.price,
        "city_id": a.city_id,
        "city": a.city.name if a.city else "",
        "is_sold": bool(a.is_sold),
        "created_at": a.created_at.isoformat() if a.created_at else "",
        "updated_at": a.updated_at.isoformat() if a.updated_at else "",
        "photos": [p.photo_url for p in a.photos],
    }


class AdRepository:
    """
    Ads, their photo references and the ad-type / city lookups.

    Every method works inside the caller's session; committing is the
    caller's job (one transaction per request).
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # -----------------------
    # Lookups
    # -----------------------
    def resolve_ad_type(self, type_name: str | None) -> int:
        name = (type_name or "").strip()
        if not name:
            raise ValidationError("Ad type is required")
        type_id = self.db.execute(select(AdType.id).where(AdType.type_name == name)).scalar_one_or_none()
        if type_id is None:
            raise InvalidAdTypeError(f"Unknown ad type: {name}")
        return int(type_id)

    def resolve_city(self, city: Any = None, location: str | None = None) -> int:
        """
        `city` is a city id; `location` a city name (case-insensitive).
        """
        if not _is_blank(city):
            city_id = parse_int(city, "City")
            if self.db.get(City, city_id) is None:
                raise ValidationError(f"Unknown city: {city_id}")
            return city_id
        name = (location or "").strip()
        if not name:
            raise ValidationError("City or location is required")
        city_id = self.db.execute(select(City.id).where(func.lower(City.name) == name.lower())).scalar_one_or_none()
        if city_id is None:
            raise ValidationError(f"Unknown location: {name}")
        return int(city_id)

    def ad_types(self) -> list[dict[str, Any]]:
        rows = self.db.execute(select(AdType).order_by(AdType.id)).scalars().all()
        return [{"id": t.id, "type_name": t.type_name} for t in rows]

    def cities(self) -> list[dict[str, Any]]:
        rows = self.db.execute(select(City).order_by(City.name)).scalars().all()
        return [{"id": c.id, "name": c.name} for c in rows]

    # -----------------------
    # Writes
    # -----------------------
    def create(
        self,
        *,
        owner_id: int,
        category_id: Any,
        ad_type_name: str | None,
        title: str | None,
        description: str | None,
        price: Any,
        city: Any = None,
        location: str | None = None,
    ) -> int:
        title = (title or "").strip()
        description = (description or "").strip()
        if not title or not description or _is_blank(category_id) or _is_blank(price) or (
            _is_blank(city) and _is_blank(location)
        ):
            raise ValidationError("Fill in all required fields")
        price_v = parse_price(price)
        category_v = parse_int(category_id, "Category")
        ad_type_id = self.resolve_ad_type(ad_type_name)
        city_id = self.resolve_city(city, location)

        ad = Ad(
            owner_id=int(owner_id),
            category_id=category_v,
            ad_type_id=ad_type_id,
            title=title,
            description=description,
            price=price_v,
            city_id=city_id,
            is_sold=False,
        )
        self.db.add(ad)
        self.db.flush()
        logger.info("Created ad id=%s owner_id=%s", ad.id, owner_id)
        return ad.id

    def attach_photos(self, ad_id: int, photos: list[StoredPhoto]) -> None:
        for p in photos:
            self.db.add(
                Photo(
                    ad_id=int(ad_id),
                    photo_url=p.ref,
                    original_filename=p.original_name,
                    content_type=p.content_type,
                    size_bytes=int(p.size_bytes),
                )
            )
        if photos:
            self.db.flush()

    def _owned(self, ad_id: int, caller_id: int) -> Ad:
        # Missing and foreign ads look the same to the caller.
        ad = self.db.execute(
            select(Ad).where((Ad.id == int(ad_id)) & (Ad.owner_id == int(caller_id))).with_for_update()
        ).scalar_one_or_none()
        if ad is None:
            raise ForbiddenError()
        return ad

    def update(
        self,
        ad_id: int,
        caller_id: int,
        *,
        title: str | None = None,
        description: str | None = None,
        category_id: Any = None,
        price: Any = None,
        ad_type_name: str | None = None,
        city: Any = None,
        location: str | None = None,
    ) -> None:
        ad = self._owned(ad_id, caller_id)

        if title is not None:
            title = title.strip()
            if not title:
                raise ValidationError("Title must not be empty")
            ad.title = title
        if description is not None:
            description = description.strip()
            if not description:
                raise ValidationError("Description must not be empty")
            ad.description = description
        if category_id is not None:
            ad.category_id = parse_int(category_id, "Category")
        if price is not None:
            ad.price = parse_price(price)
        if ad_type_name is not None:
            ad.ad_type_id = self.resolve_ad_type(ad_type_name)
        if city is not None or location is not None:
            ad.city_id = self.resolve_city(city, location)

        ad.updated_at = dt.datetime.now(dt.timezone.utc)
        self.db.add(ad)
        self.db.flush()
        # Reload ad_type / city relationships on next access.
        self.db.expire(ad)
        logger.info("Updated ad id=%s", ad_id)

    def delete(self, ad_id: int, caller_id: int) -> list[str]:
        """
        Remove the ad's photo rows, then the ad. Returns the removed photo references.
        """
        ad = self._owned(ad_id, caller_id)
        refs = self.photo_refs(ad.id)
        self.db.execute(delete(Photo).where(Photo.ad_id == ad.id))
        self.db.execute(delete(Ad).where(Ad.id == ad.id))
        logger.info("Deleted ad id=%s with %s photo(s)", ad_id, len(refs))
        return refs

    def mark_sold(self, ad_id: int, caller_id: int) -> None:
        ad = self._owned(ad_id, caller_id)
        if not ad.is_sold:
            ad.is_sold = True
            ad.updated_at = dt.datetime.now(dt.timezone.utc)
            self.db.add(ad)
            self.db.flush()
            logger.info("Marked ad id=%s as sold", ad.id)

    # -----------------------
    # Reads
    # -----------------------
    def _base_select(self):
        return select(Ad).options(selectinload(Ad.photos), selectinload(Ad.ad_type), selectinload(Ad.city))

    def get(self, ad_id: int) -> dict[str, Any]:
        ad = self.db.execute(self._base_select().where(Ad.id == int(ad_id))).scalar_one_or_none()
        if ad is None:
            raise NotFoundError("Ad not found")
        return ad_out(ad)

    def photo_refs(self, ad_id: int) -> list[str]:
        return list(
            self.db.execute(select(Photo.photo_url).where(Photo.ad_id == int(ad_id)).order_by(Photo.id)).scalars()
        )

    def list_by_owner(self, owner_id: int) -> list[dict[str, Any]]:
        stmt = self._base_select().where(Ad.owner_id == int(owner_id)).order_by(Ad.created_at.desc(), Ad.id.desc())
        return [ad_out(a) for a in self.db.execute(stmt).scalars()]

    def _filters(self, f: AdFilters) -> list:
        conds = []
        if f.keyword and f.keyword.strip():
            like = like_pattern(f.keyword)
            conds.append(func.lower(Ad.title).like(like, escape="\\") | func.lower(Ad.description).like(like, escape="\\"))
        if f.category is not None:
            conds.append(Ad.category_id == int(f.category))
        if f.price_min is not None:
            conds.append(Ad.price >= f.price_min)
        if f.price_max is not None:
            conds.append(Ad.price <= f.price_max)
        if f.city is not None:
            conds.append(Ad.city_id == int(f.city))
        if f.location and f.location.strip():
            cities = select(City.id).where(func.lower(City.name).like(like_pattern(f.location), escape="\\"))
            conds.append(Ad.city_id.in_(cities))
        if f.sold is not None:
            conds.append(Ad.is_sold.is_(bool(f.sold)))
        return conds

    def build_search(self, f: AdFilters):
        stmt = self._base_select().where(*self._filters(f))

        sort_key = (f.sort_by or "").strip()
        col = SORTABLE_COLUMNS.get(sort_key)
        if col is None:
            if sort_key:
                logger.info("Ignoring unsupported sort field %r", sort_key[:64])
            stmt = stmt.order_by(Ad.id.asc())
        else:
            desc = sort_direction(f.order) == "DESC"
            stmt = stmt.order_by(col.desc() if desc else col.asc(), Ad.id.desc() if desc else Ad.id.asc())

        limit = max(1, min(int(f.limit or 50), MAX_PAGE_SIZE))
        offset = max(0, int(f.offset or 0))
        return stmt.limit(limit).offset(offset)

    def count(self, f: AdFilters) -> int:
        """
        Number of ads matching the filters, ignoring pagination.
        """
        return int(self.db.execute(select(func.count(Ad.id)).where(*self._filters(f))).scalar_one())

    def search(self, f: AdFilters) -> Iterator[dict[str, Any]]:
        """
        Lazily yield matching ads with their photo references.
        The generator runs the query on first iteration and cannot be restarted.
        """
        for ad in self.db.execute(self.build_search(f)).scalars():
            yield ad_out(ad)
