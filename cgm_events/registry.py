"""Registry of event categories run by the unified aggregator."""
from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Dict

from .detector import MarkerScan, TwoPhaseEventDetector
from .models import EventContext, EventCriteria, SubjectSlice


class CategoryRegistry:
    """Keeps track of event categories by key, in registration order."""

    def __init__(self) -> None:
        self._categories: Dict[str, EventCriteria] = {}

    def register(self, criteria: EventCriteria) -> EventCriteria:
        if criteria.key in self._categories:
            raise ValueError(f"Category '{criteria.key}' already registered")
        self._categories[criteria.key] = criteria
        return criteria

    def clear(self) -> None:
        """Remove all registered categories."""

        self._categories.clear()

    def get(self, key: str) -> EventCriteria:
        try:
            return self._categories[key]
        except KeyError:
            raise ValueError(f"Unknown event category '{key}'") from None

    def items(self) -> Iterable[tuple[str, EventCriteria]]:
        return self._categories.items()

    def values(self) -> Iterable[EventCriteria]:
        return self._categories.values()

    def __len__(self) -> int:
        return len(self._categories)

    def detect_all(
        self,
        subject: SubjectSlice,
        context: EventContext,
        predicate: Callable[[EventCriteria], bool] | None = None,
    ) -> dict[str, MarkerScan]:
        """Run every registered category over one subject, optionally filtering."""

        outputs: dict[str, MarkerScan] = {}
        for key, criteria in self._categories.items():
            if predicate is not None and not predicate(criteria):
                continue
            detector = TwoPhaseEventDetector(
                criteria.resolve(context),
                tolerance_minutes=context.tolerance_minutes,
            )
            outputs[key] = detector.scan(subject)
        return outputs


registry = CategoryRegistry()


def register_category(criteria: EventCriteria) -> EventCriteria:
    """Register a category on the shared registry."""

    return registry.register(criteria)


def clear_registry() -> None:
    """Remove all category registrations."""

    registry.clear()
