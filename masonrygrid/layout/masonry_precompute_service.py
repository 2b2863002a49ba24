"""Precompute orders for every column profile and cache them by fingerprint."""

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import replace
from typing import Callable, Optional

from masonrygrid.layout.masonry_context import OrderingConfig
from masonrygrid.layout.masonry_ordering_service import (
    MasonryOrderingService, normalize_items)
from masonrygrid.models.masonry_item import OrderedResult, PrecomputedOrders
from masonrygrid.utils.fingerprint import item_set_fingerprint

logger = logging.getLogger(__name__)

ORDERING_SETTING_KEYS = (
    'wide_image_threshold', 'max_wide_streak', 'min_narrow_after_wide',
    'wide_image_bias', 'enable_weighted_scoring', 'ordering_column_profiles',
    'ordering_nominal_column_width', 'ordering_gap',
    'include_card_content_height',
)


class OrderCache:
    """
    Fingerprint-keyed cache of `PrecomputedOrders`.

    Concurrent `get_or_compute` calls for the same fingerprint share a single
    computation: the first caller computes, the others wait on its future.
    """

    def __init__(self, ttl_seconds: float = 0,
                 clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._results: dict[str, tuple[float, PrecomputedOrders]] = {}
        self._in_flight: dict[str, Future] = {}
        self._lock = threading.Lock()
        self.compute_count = 0

    def get(self, fingerprint: str) -> Optional[PrecomputedOrders]:
        with self._lock:
            return self._get_locked(fingerprint)

    def _get_locked(self, fingerprint):
        cached = self._results.get(fingerprint)
        if cached is None:
            return None
        stored_at, result = cached
        if self.ttl_seconds > 0 and self._clock() - stored_at >= self.ttl_seconds:
            del self._results[fingerprint]
            return None
        return result

    def get_or_compute(self, fingerprint: str,
                       compute: Callable[[], PrecomputedOrders]
                       ) -> tuple[PrecomputedOrders, bool]:
        """Return (result, from_cache)."""
        with self._lock:
            cached = self._get_locked(fingerprint)
            if cached is not None:
                return cached, True
            future = self._in_flight.get(fingerprint)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[fingerprint] = future

        if not owner:
            return future.result(), True

        try:
            result = compute()
        except BaseException as e:
            with self._lock:
                self._in_flight.pop(fingerprint, None)
            future.set_exception(e)
            raise
        with self._lock:
            self.compute_count += 1
            self._results[fingerprint] = (self._clock(), result)
            self._in_flight.pop(fingerprint, None)
        future.set_result(result)
        return result, False

    def invalidate(self, fingerprint: str) -> bool:
        with self._lock:
            return self._results.pop(fingerprint, None) is not None

    def clear(self):
        with self._lock:
            self._results.clear()

    def bind_settings(self, source):
        """Clear the cache whenever an ordering setting changes."""
        def on_setting_changed(key, value):
            if key in ORDERING_SETTING_KEYS:
                logger.info('Ordering setting %r changed, clearing cache', key)
                self.clear()
        source.change.connect(on_setting_changed)
        return on_setting_changed

    def __len__(self):
        with self._lock:
            return len(self._results)


class MasonryPrecomputeService:
    """Runs the ordering engine once per column profile with shared stats."""

    def __init__(self, config: OrderingConfig = None,
                 cache: OrderCache = None):
        self.config = config or OrderingConfig()
        self.cache = cache if cache is not None else OrderCache()
        self.ordering_service = MasonryOrderingService(self.config)

    def fingerprint(self, items) -> str:
        normalized = normalize_items(items)
        return item_set_fingerprint(
            ((item_id, aspect_ratio) for item_id, _, aspect_ratio in normalized),
            salt=self.config.signature())

    def _compute(self, items, fingerprint: str) -> PrecomputedOrders:
        start_time = time.perf_counter()
        orders = {column_count: self.ordering_service.order(items, column_count)
                  for column_count in self.config.profiles}
        # Stats do not depend on the column count
        first = orders[min(orders)]
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info('Precomputed %d orders for %d items in %.1fms',
                    len(orders), first.total_items, elapsed_ms)
        return PrecomputedOrders(
            orders=orders,
            fingerprint=fingerprint,
            total_items=first.total_items,
            avg_aspect_ratio=first.avg_aspect_ratio,
            wide_item_count=first.wide_item_count,
            computed_at=time.time(),
            calculation_time_ms=elapsed_ms,
        )

    def precompute(self, items, force: bool = False) -> PrecomputedOrders:
        items = list(items)
        fingerprint = self.fingerprint(items)
        if force:
            self.cache.invalidate(fingerprint)
        result, from_cache = self.cache.get_or_compute(
            fingerprint, lambda: self._compute(items, fingerprint))
        if from_cache:
            logger.debug('Order cache hit for %s', fingerprint[:12])
            return replace(result, from_cache=True)
        return result

    def precompute_for_references(self, items, batch_service,
                                  cancel_event: threading.Event = None
                                  ) -> PrecomputedOrders:
        """Resolve missing dimensions through `batch_service`, then precompute."""
        items = list(items)
        stored = sum(1 for item in items if item.has_dimensions)
        logger.info('Ordering %d items: %d with stored dimensions, '
                    '%d to resolve', len(items), stored, len(items) - stored)
        batch = batch_service.resolve_items(items, cancel_event=cancel_event)
        resolved_items = []
        for item in items:
            dimension = batch.dimensions.get(item.id)
            if dimension is None:
                # Cancelled before resolution
                dimension = batch_service.resolver.fallback_dimension()
            resolved_items.append(item.with_dimension(dimension))
        return self.precompute(resolved_items)


def order_label(column_count: int) -> str:
    return f'{column_count}col'


def select_order(precomputed: PrecomputedOrders,
                 live_column_count: int) -> tuple[OrderedResult, str]:
    """
    Pick the order to render at `live_column_count`.

    The smallest profile that has at least the live column count wins,
    otherwise the widest profile.
    """
    profiles = sorted(precomputed.orders)
    chosen = next((column_count for column_count in profiles
                   if column_count >= live_column_count), profiles[-1])
    return precomputed.orders[chosen], order_label(chosen)
