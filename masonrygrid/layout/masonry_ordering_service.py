"""Greedy best-fit ordering that spreads wide images across the grid."""

import logging
import math
from dataclasses import dataclass

from masonrygrid.layout.masonry_context import OrderingConfig
from masonrygrid.models.masonry_item import (Item, OrderedResult,
                                             OrderingValidationError,
                                             valid_aspect_ratio)

logger = logging.getLogger(__name__)


@dataclass
class _Candidate:
    position: int
    item_id: object
    item: Item | None
    aspect_ratio: float
    is_wide: bool
    span: int


def normalize_items(items) -> list[tuple[object, Item | None, float]]:
    """Accept `Item` objects or (id, aspect_ratio) pairs."""
    normalized = []
    seen_ids = set()
    for entry in items:
        if isinstance(entry, Item):
            item_id, item = entry.id, entry
            aspect_ratio = entry.aspect_ratio
            if aspect_ratio is None:
                raise OrderingValidationError(
                    f'Item {item_id!r} has no resolved dimensions')
        else:
            try:
                item_id, aspect_ratio = entry
            except (TypeError, ValueError):
                raise OrderingValidationError(
                    f'Expected Item or (id, aspect_ratio), got {entry!r}')
            item = None
        if not valid_aspect_ratio(aspect_ratio):
            raise OrderingValidationError(
                f'Item {item_id!r} has invalid aspect ratio {aspect_ratio!r}')
        if item_id in seen_ids:
            raise OrderingValidationError(f'Duplicate item id {item_id!r}')
        seen_ids.add(item_id)
        normalized.append((item_id, item, float(aspect_ratio)))
    return normalized


class MasonryOrderingService:
    """Computes a display order for a fixed column count."""

    def __init__(self, config: OrderingConfig = None):
        self.config = config or OrderingConfig()

    def render_width(self, span: int) -> int:
        return (span * self.config.nominal_column_width
                + (span - 1) * self.config.gap)

    def _score(self, y: float, span: int) -> float:
        if self.config.weighted_scoring:
            return y / span ** self.config.wide_bias
        return y

    def _filter_candidates(self, pool: list[_Candidate], wide_streak: int,
                           narrow_streak: int) -> list[_Candidate]:
        if (wide_streak >= self.config.max_wide_streak
                and narrow_streak < self.config.min_narrow_after_wide):
            narrow = [candidate for candidate in pool if not candidate.is_wide]
            if narrow:
                return narrow
        return pool

    def _best_fit(self, candidates: list[_Candidate], heights: list[float]):
        """Return (candidate, start, y) with the lowest score, or None."""
        column_count = len(heights)
        best = None
        best_key = None
        for candidate in candidates:
            for start in range(column_count - candidate.span + 1):
                y = max(heights[start:start + candidate.span])
                score = self._score(y, candidate.span)
                if not math.isfinite(score):
                    continue
                key = (score, candidate.span, candidate.position, start)
                if best_key is None or key < best_key:
                    best_key = key
                    best = (candidate, start, y)
        return best

    def order(self, items, column_count: int) -> OrderedResult:
        if (not isinstance(column_count, int) or isinstance(column_count, bool)
                or column_count < 1):
            raise OrderingValidationError(
                f'column_count must be >= 1, got {column_count!r}')
        normalized = normalize_items(items)
        if not normalized:
            return OrderedResult([], column_count, 0, 0.0, 0)

        config = self.config
        pool = []
        for position, (item_id, item, aspect_ratio) in enumerate(normalized):
            is_wide = aspect_ratio >= config.wide_threshold
            span = min(2, column_count) if is_wide else 1
            pool.append(_Candidate(position, item_id, item, aspect_ratio,
                                   is_wide, span))

        wide_item_count = sum(1 for candidate in pool if candidate.is_wide)
        avg_aspect_ratio = (sum(candidate.aspect_ratio for candidate in pool)
                            / len(pool))

        heights = [0.0] * column_count
        ordered_ids = []
        wide_streak = 0
        narrow_streak = 0

        while pool:
            candidates = self._filter_candidates(pool, wide_streak,
                                                 narrow_streak)
            best = self._best_fit(candidates, heights)
            if best is None:
                logger.warning(
                    'No finite placement score for %d remaining items, '
                    'appending them in input order', len(pool))
                ordered_ids.extend(candidate.item_id for candidate in pool)
                break

            candidate, start, y = best
            pool.remove(candidate)
            ordered_ids.append(candidate.item_id)

            render_height = config.height_estimator(
                candidate.item, candidate.aspect_ratio,
                self.render_width(candidate.span), candidate.is_wide)
            new_height = y + render_height + config.gap
            for column in range(start, start + candidate.span):
                heights[column] = new_height

            if candidate.is_wide:
                wide_streak += 1
                narrow_streak = 0
            else:
                narrow_streak += 1
                if narrow_streak >= config.min_narrow_after_wide:
                    wide_streak = 0

        logger.debug('Ordered %d items for %d columns (%d wide)',
                     len(ordered_ids), column_count, wide_item_count)
        return OrderedResult(ordered_ids, column_count, len(ordered_ids),
                             avg_aspect_ratio, wide_item_count)


def order_items(items, column_count: int,
                config: OrderingConfig = None) -> OrderedResult:
    return MasonryOrderingService(config).order(items, column_count)
