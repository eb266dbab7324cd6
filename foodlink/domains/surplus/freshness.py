from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from foodlink.core.config import settings
from foodlink.domains.surplus.models import FoodCategory


@dataclass(frozen=True)
class FreshnessEstimate:
    quantity: float
    shelf_life: timedelta


class FreshnessPredictor(Protocol):
    """Quantity/spoilage model. Treated as a black box by the lifecycle."""

    def predict(self, *, food_name: str, category: FoodCategory, quantity: float) -> FreshnessEstimate: ...


class DefaultFreshnessPredictor:
    """Keeps the logged quantity and applies the configured shelf life."""

    def predict(self, *, food_name: str, category: FoodCategory, quantity: float) -> FreshnessEstimate:
        return FreshnessEstimate(quantity=quantity, shelf_life=timedelta(hours=settings.default_shelf_life_hours))


default_predictor = DefaultFreshnessPredictor()
