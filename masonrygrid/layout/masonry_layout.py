"""Skyline masonry layout: ordered ids to absolute pixel positions."""

import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Optional

from masonrygrid.layout.masonry_context import PositionerConfig
from masonrygrid.layout.masonry_precompute_service import select_order
from masonrygrid.models.masonry_item import (Dimension, Item, LayoutItem,
                                             PrecomputedOrders,
                                             valid_aspect_ratio)

logger = logging.getLogger(__name__)

DimensionGetter = Callable[[object], Optional[Dimension]]


@dataclass
class SkylineLayoutResult:
    layout_items: list[LayoutItem]
    container_height: int
    is_layout_ready: bool
    total_items: int
    loaded_items: int
    loading_progress: float
    is_progressive_ready: bool
    progressive_threshold: int
    column_count: int
    column_width: int
    gap: int
    ordering_source: str = 'input'
    avg_aspect_ratio: float = 0.0
    wide_item_count: int = 0

    def to_dict(self) -> dict:
        return {
            'items': [item.to_dict() for item in self.layout_items],
            'containerHeight': self.container_height,
            'isLayoutReady': self.is_layout_ready,
            'totalItems': self.total_items,
            'loadedItems': self.loaded_items,
            'loadingProgress': self.loading_progress,
            'isProgressiveReady': self.is_progressive_ready,
            'progressiveThreshold': self.progressive_threshold,
            'columnCount': self.column_count,
            'columnWidth': self.column_width,
            'gap': self.gap,
            'orderingSource': self.ordering_source,
            'avgAspectRatio': self.avg_aspect_ratio,
            'wideItemCount': self.wide_item_count,
        }


def column_width_for(container_width: int, column_count: int, gap: int) -> int:
    if column_count <= 0:
        raise ValueError('column_count must be > 0')
    if container_width <= 0:
        raise ValueError('container_width must be > 0')
    if gap < 0:
        raise ValueError('gap must be >= 0')
    usable = container_width - gap * (column_count - 1)
    if usable < column_count:
        raise ValueError('container too small for given columns/gap')
    return usable // column_count


def progressive_threshold(total_items: int, config: PositionerConfig) -> int:
    return min(config.progressive_ready_max_items,
               math.ceil(total_items * config.progressive_ready_fraction))


def _live_aspect_ratio(dimension, fallback: float) -> tuple[float, bool]:
    """Return (aspect_ratio, is_loaded) for a getter result."""
    if dimension is None or getattr(dimension, 'source', None) == 'fallback':
        return fallback, False
    aspect_ratio = getattr(dimension, 'aspect_ratio', None)
    if not valid_aspect_ratio(aspect_ratio):
        return fallback, False
    return aspect_ratio, True


def position(ordered_ids, items_by_id: dict, column_count: int,
             get_dimension: DimensionGetter, *, container_width: int = None,
             config: PositionerConfig = None) -> SkylineLayoutResult:
    """
    Lay out `ordered_ids` in order using a column skyline.

    Every call starts from empty columns, so the result depends only on the
    arguments. Unresolved items take the fallback aspect ratio and report
    `is_loaded=False`; callers re-invoke as dimensions arrive.
    """
    config = config or PositionerConfig()
    gap = config.gap
    if container_width is not None:
        column_width = column_width_for(container_width, column_count, gap)
    else:
        if column_count <= 0:
            raise ValueError('column_count must be > 0')
        column_width = config.column_width

    heights = [0] * column_count
    layout_items = []
    loaded_items = 0

    for item_id in ordered_ids:
        item = items_by_id.get(item_id)
        if item is None:
            logger.debug('Skipping id %r missing from items', item_id)
            continue

        aspect_ratio, is_loaded = _live_aspect_ratio(
            get_dimension(item_id), config.fallback_aspect_ratio)
        if is_loaded:
            loaded_items += 1
        is_wide = aspect_ratio >= config.wide_threshold
        span = min(2, column_count) if is_wide else 1

        # Leftmost start on ties
        best_start = min(range(column_count - span + 1),
                         key=lambda start: max(heights[start:start + span]))
        y = max(heights[best_start:best_start + span])
        width = span * column_width + (span - 1) * gap
        height = config.height_estimator(
            item if isinstance(item, Item) else None,
            aspect_ratio, width, is_wide)
        if not math.isfinite(height) or height <= 0:
            height = width / config.fallback_aspect_ratio
        height = round(height)

        layout_items.append(LayoutItem(
            id=item_id,
            x=best_start * (column_width + gap),
            y=y,
            width=width,
            height=height,
            span=span,
            column=best_start,
            aspect_ratio=aspect_ratio,
            is_wide=is_wide,
            is_loaded=is_loaded,
        ))
        for column in range(best_start, best_start + span):
            heights[column] = y + height + gap

    total_items = len(layout_items)
    threshold = progressive_threshold(total_items, config)
    return SkylineLayoutResult(
        layout_items=layout_items,
        container_height=max(heights) if layout_items else 0,
        is_layout_ready=total_items > 0 and loaded_items == total_items,
        total_items=total_items,
        loaded_items=loaded_items,
        loading_progress=(loaded_items / total_items * 100
                          if total_items else 100.0),
        is_progressive_ready=loaded_items > 0 and loaded_items >= threshold,
        progressive_threshold=threshold,
        column_count=column_count,
        column_width=column_width,
        gap=gap,
    )


def reconcile_order(ordered_ids, item_ids) -> list:
    """
    Drop ids no longer present and append new ids in input order.

    Lets a stale precomputed order be rendered while a fresh one is computed.
    """
    item_ids = list(item_ids)
    present = set(item_ids)
    reconciled = [item_id for item_id in ordered_ids if item_id in present]
    placed = set(reconciled)
    reconciled.extend(item_id for item_id in item_ids if item_id not in placed)
    return reconciled


def dimension_getter(items_by_id: dict,
                     resolved: dict = None) -> DimensionGetter:
    """Prefer freshly resolved dimensions, then stored item metadata."""
    resolved = resolved if resolved is not None else {}

    def get_dimension(item_id):
        dimension = resolved.get(item_id)
        if dimension is not None and dimension.source != 'fallback':
            return dimension
        item = items_by_id.get(item_id)
        if isinstance(item, Item):
            return item.dimension
        return None

    return get_dimension


def layout_with_precomputed(precomputed: Optional[PrecomputedOrders], items,
                            live_column_count: int,
                            get_dimension: DimensionGetter, *,
                            container_width: int = None,
                            config: PositionerConfig = None
                            ) -> SkylineLayoutResult:
    """Pick the precomputed order for the live column count and lay it out."""
    items = list(items)
    items_by_id = {item.id: item for item in items}
    item_ids = [item.id for item in items]
    if precomputed is None:
        ordered_ids = item_ids
        ordering_source = 'input'
        avg_aspect_ratio = 0.0
        wide_item_count = 0
    else:
        ordered, ordering_source = select_order(precomputed, live_column_count)
        ordered_ids = reconcile_order(ordered.ordered_ids, item_ids)
        avg_aspect_ratio = precomputed.avg_aspect_ratio
        wide_item_count = precomputed.wide_item_count

    result = position(ordered_ids, items_by_id, live_column_count,
                      get_dimension, container_width=container_width,
                      config=config)
    result.ordering_source = ordering_source
    result.avg_aspect_ratio = avg_aspect_ratio
    result.wide_item_count = wide_item_count
    return result


def choose_column_count(viewport_width: int,
                        config: PositionerConfig = None) -> int:
    config = config or PositionerConfig()
    if viewport_width < config.mobile_breakpoint:
        return config.mobile_columns
    if viewport_width < config.tablet_breakpoint:
        return config.tablet_columns
    return config.desktop_columns


def effective_container_width(viewport_width: int,
                              config: PositionerConfig = None) -> int:
    """Viewport width minus side padding, capped at the max container width."""
    config = config or PositionerConfig()
    if viewport_width < config.mobile_breakpoint:
        padding = config.mobile_padding
    elif viewport_width < config.tablet_breakpoint:
        padding = config.tablet_padding
    else:
        padding = config.desktop_padding
    return max(0, min(viewport_width, config.max_container_width) - 2 * padding)


def responsive_gap(viewport_width: int, config: PositionerConfig = None) -> int:
    config = config or PositionerConfig()
    if viewport_width < config.mobile_breakpoint:
        return config.mobile_gap
    if viewport_width < config.tablet_breakpoint:
        return config.tablet_gap
    return config.desktop_gap


def config_for_viewport(viewport_width: int,
                        config: PositionerConfig = None) -> PositionerConfig:
    """Copy of `config` with the gap chosen for the viewport's breakpoint."""
    config = config or PositionerConfig()
    return replace(config, gap=responsive_gap(viewport_width, config))


class MasonryLayout:
    """Holds the latest layout snapshot for viewport queries."""

    def __init__(self, config: PositionerConfig = None):
        self.config = config or PositionerConfig()
        self.result: Optional[SkylineLayoutResult] = None
        self._rects_by_id: dict = {}

    def calculate_all(self, ordered_ids, items_by_id: dict, column_count: int,
                      get_dimension: DimensionGetter,
                      container_width: int = None) -> SkylineLayoutResult:
        """Recompute every position from scratch."""
        self.result = position(ordered_ids, items_by_id, column_count,
                               get_dimension, container_width=container_width,
                               config=self.config)
        self._rects_by_id = {item.id: item
                             for item in self.result.layout_items}
        return self.result

    def get_item_rect(self, item_id) -> Optional[LayoutItem]:
        return self._rects_by_id.get(item_id)

    def get_visible_items(self, viewport_top: int,
                          viewport_bottom: int) -> list[LayoutItem]:
        """Items whose vertical extent intersects the viewport."""
        if self.result is None:
            return []
        return [item for item in self.result.layout_items
                if item.y < viewport_bottom and item.bottom > viewport_top]

    def get_total_height(self) -> int:
        return self.result.container_height if self.result else 0
