from __future__ import annotations

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from rapidfuzz import fuzz, process, utils
from sqlalchemy import select

from mealbot.core.errors import ConflictError, NotFoundError
from mealbot.core.parsing import MAX_RATING, clean_name, merge_tags, normalize_name
from mealbot.db.models import Meal
from mealbot.db.session import get_session


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=ZoneInfo("UTC"))


def _clamp_rating(rating: float | None) -> float | None:
    if rating is None:
        return None
    return max(0.0, min(float(rating), float(MAX_RATING)))


class MealStore:
    """
    Meal records keyed by normalized name.

    Writes are last-writer-wins; every method works on its own short-lived DB
    session, so the returned objects are detached snapshots.
    """

    def get(self, name: str) -> Meal | None:
        key = normalize_name(name)
        if not key:
            return None
        with get_session() as session:
            return session.execute(select(Meal).where(Meal.name_key == key)).scalar_one_or_none()

    def get_by_id(self, meal_id: str) -> Meal | None:
        with get_session() as session:
            return session.get(Meal, meal_id)

    def require(self, name: str) -> Meal:
        meal = self.get(name)
        if meal is None:
            raise NotFoundError(name)
        return meal

    def list(self) -> list[Meal]:
        with get_session() as session:
            return list(session.execute(select(Meal).order_by(Meal.name_key)).scalars())

    def put(self, meal: Meal) -> Meal:
        """Insert or replace the meal with the same normalized name."""
        name = clean_name(meal.name)
        key = normalize_name(name)
        with get_session() as session:
            row = session.execute(select(Meal).where(Meal.name_key == key)).scalar_one_or_none()
            if row is None:
                row = Meal(name_key=key, created_at=_now())
                session.add(row)
            row.name = name
            row.rating = _clamp_rating(meal.rating)
            row.tags = merge_tags([], list(meal.tags or []))
            row.references = list(meal.references or [])
            row.photo_file_id = meal.photo_file_id
            row.updated_at = _now()
            session.flush()
        logger.info("Saved meal %r", name)
        return row

    def create(
        self,
        name: str,
        *,
        rating: float | None = None,
        tags: list[str] | None = None,
        references: list[str] | None = None,
        photo_file_id: str | None = None,
        overwrite: bool = False,
    ) -> Meal:
        if not overwrite and self.get(name) is not None:
            raise ConflictError(clean_name(name))
        return self.put(
            Meal(
                name=name,
                rating=rating,
                tags=tags or [],
                references=references or [],
                photo_file_id=photo_file_id,
            )
        )

    def delete(self, name: str) -> Meal:
        key = normalize_name(name)
        with get_session() as session:
            row = session.execute(select(Meal).where(Meal.name_key == key)).scalar_one_or_none()
            if row is None:
                raise NotFoundError(name)
            session.delete(row)
        logger.info("Removed meal %r", row.name)
        return row

    def set_rating(self, name: str, rating: float) -> Meal:
        return self._update(name, rating=_clamp_rating(rating))

    def set_photo(self, name: str, photo_file_id: str) -> Meal:
        return self._update(name, photo_file_id=photo_file_id)

    def search(self, query: str, *, limit: int = 10, score_cutoff: int = 60) -> list[Meal]:
        """Meals ranked by fuzzy name match (RapidFuzz WRatio)."""
        q = (query or "").strip()
        meals = self.list()
        if not q:
            return meals[:limit]
        by_id = {m.id: m for m in meals}
        raw = process.extract(
            q,
            {m.id: m.name for m in meals},
            scorer=fuzz.WRatio,
            processor=utils.default_process,
            limit=limit,
            score_cutoff=score_cutoff,
        )
        return [by_id[meal_id] for _name, _score, meal_id in raw]

    def _update(self, name: str, **fields: object) -> Meal:
        key = normalize_name(name)
        with get_session() as session:
            row = session.execute(select(Meal).where(Meal.name_key == key)).scalar_one_or_none()
            if row is None:
                raise NotFoundError(name)
            for k, v in fields.items():
                setattr(row, k, v)
            row.updated_at = _now()
            session.flush()
            return row
