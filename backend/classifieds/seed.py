from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from classifieds.models import AdType, City


DEFAULT_AD_TYPES = ("sale", "rent", "buy", "service", "exchange")

DEFAULT_CITIES = ("Moscow", "Saint Petersburg", "Kazan", "Novosibirsk", "Yekaterinburg")


def seed_reference_data(db: Session) -> int:
    """
    Insert the default ad types and cities that are not there yet.
    Safe to run repeatedly; returns the number of rows added.
    """
    added = 0
    have_types = set(db.execute(select(AdType.type_name)).scalars())
    for name in DEFAULT_AD_TYPES:
        if name not in have_types:
            db.add(AdType(type_name=name))
            added += 1
    have_cities = set(db.execute(select(City.name)).scalars())
    for name in DEFAULT_CITIES:
        if name not in have_cities:
            db.add(City(name=name))
            added += 1
    db.flush()
    return added
