from __future__ import annotations

import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from mealbot.core.errors import ValidationError
from mealbot.core.parsing import normalize_name


class Rated(Protocol):
    name: str
    rating: float | None


@dataclass(frozen=True)
class PlanResult:
    requested_count: int
    selection: tuple[str, ...]
    excluded_names: frozenset[str] = field(default_factory=frozenset)
    # Fewer meals exist than were requested.
    truncated: bool = False

    @property
    def nothing_to_plan(self) -> bool:
        return not self.selection


class Planner:
    """
    Rating-weighted random meal selection.

    A meal's weight is its rating, with missing ratings counted as
    `default_rating` and every weight raised to at least `floor` so that
    unrated or zero-rated meals still come up now and then.
    """

    def __init__(
        self,
        *,
        default_rating: float = 3.0,
        floor: float = 0.5,
        rng: random.Random | None = None,
    ) -> None:
        if floor <= 0:
            raise ValueError("floor must be positive")
        self._default = default_rating
        self._floor = floor
        self._rng = rng or random.Random()

    def weight(self, meal: Rated) -> float:
        rating = self._default if meal.rating is None else float(meal.rating)
        return max(rating, self._floor)

    def plan(self, meals: Sequence[Rated], count: int) -> PlanResult:
        if count <= 0:
            raise ValidationError("Plan size has to be at least 1.")
        pool = _unique(meals)
        if not pool:
            return PlanResult(requested_count=count, selection=())
        selection = self._sample(pool, count)
        return PlanResult(
            requested_count=count,
            selection=tuple(m.name for m in selection),
            truncated=count > len(pool),
        )

    def reroll(self, previous: PlanResult, meals: Sequence[Rated]) -> PlanResult:
        """
        Plan again for the same count, avoiding the previous selection.

        Previously chosen meals only come back when there are not enough other
        meals to fill the plan.
        """
        count = previous.requested_count
        pool = _unique(meals)
        excluded = {normalize_name(n) for n in previous.selection}
        fresh = [m for m in pool if normalize_name(m.name) not in excluded]
        reused = [m for m in pool if normalize_name(m.name) in excluded]

        selection = self._sample(fresh, count)
        if len(selection) < count:
            selection += self._sample(reused, count - len(selection))
        return PlanResult(
            requested_count=count,
            selection=tuple(m.name for m in selection),
            excluded_names=frozenset(previous.selection),
            truncated=count > len(pool),
        )

    def _sample(self, pool: Iterable[Rated], count: int) -> list[Rated]:
        """Weighted sampling without replacement: draw, remove, renormalize, repeat."""
        remaining = list(pool)
        weights = [self.weight(m) for m in remaining]
        chosen: list[Rated] = []
        while remaining and len(chosen) < count:
            idx = self._rng.choices(range(len(remaining)), weights=weights, k=1)[0]
            chosen.append(remaining.pop(idx))
            weights.pop(idx)
        return chosen


def _unique(meals: Iterable[Rated]) -> list[Rated]:
    seen: set[str] = set()
    out: list[Rated] = []
    for meal in meals:
        key = normalize_name(meal.name)
        if key in seen:
            continue
        seen.add(key)
        out.append(meal)
    return out
