"""Resolve many items in parallel with per-item isolation and cancellation."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Optional

from masonrygrid.dimensions.dimension_resolver import DimensionResolver
from masonrygrid.models.masonry_item import (Dimension, Item,
                                             ResolutionCancelled)

logger = logging.getLogger(__name__)

# (item_id, dimension) -> None, called from worker threads
ResolvedCallback = Callable[[object, Dimension], None]


@dataclass
class BatchResult:
    dimensions: dict = field(default_factory=dict)
    failed_ids: list = field(default_factory=list)
    unresolved_ids: list = field(default_factory=list)
    cancelled: bool = False

    @property
    def resolved_count(self) -> int:
        return len(self.dimensions) - len(self.failed_ids)


class DimensionBatchService:
    """
    Fans `DimensionResolver.resolve_item` out over a thread pool.

    A failing item gets the fallback dimension and is listed in
    `failed_ids`; it never aborts the rest of the batch. Setting the cancel
    event stops pending work, and items that never ran are reported in
    `unresolved_ids`.
    """

    def __init__(self, resolver: DimensionResolver, max_workers: int = None):
        self.resolver = resolver
        self.max_workers = max(1, max_workers
                               or resolver.config.max_concurrent_fetches)

    def _resolve_one(self, item: Item, cancel_event):
        if cancel_event is not None and cancel_event.is_set():
            raise ResolutionCancelled()
        return self.resolver.resolve_item(item, cancel_event)

    def resolve_items(self, items, on_resolved: ResolvedCallback = None,
                      cancel_event: Optional[threading.Event] = None
                      ) -> BatchResult:
        items = list(items)
        result = BatchResult()
        pending = []

        # Stored dimensions need no I/O
        for item in items:
            if item.has_dimensions:
                result.dimensions[item.id] = item.dimension
                if on_resolved is not None:
                    on_resolved(item.id, item.dimension)
            else:
                pending.append(item)

        if not pending:
            return result

        logger.info('Resolving dimensions for %d items with %d workers',
                    len(pending), self.max_workers)
        with ThreadPoolExecutor(max_workers=self.max_workers,
                                thread_name_prefix='dim_probe') as executor:
            futures = {executor.submit(self._resolve_one, item, cancel_event):
                       item for item in pending}
            for future in as_completed(futures):
                item = futures[future]
                if future.cancelled():
                    result.unresolved_ids.append(item.id)
                    continue
                try:
                    dimension = future.result()
                except ResolutionCancelled:
                    result.unresolved_ids.append(item.id)
                    if not result.cancelled:
                        result.cancelled = True
                        for other in futures:
                            other.cancel()
                    continue
                except Exception as e:
                    # Isolate unexpected per-item failures from the batch
                    logger.error('Dimension resolution crashed for %r: %s',
                                 item.id, e)
                    dimension = self.resolver.fallback_dimension()

                result.dimensions[item.id] = dimension
                if dimension.source == 'fallback':
                    result.failed_ids.append(item.id)
                if on_resolved is not None:
                    on_resolved(item.id, dimension)

        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
        if result.failed_ids:
            logger.warning('%d of %d items fell back to default dimensions',
                           len(result.failed_ids), len(pending))
        return result

    def retry_failed(self, items, previous: BatchResult,
                     on_resolved: ResolvedCallback = None,
                     cancel_event: Optional[threading.Event] = None
                     ) -> BatchResult:
        """Re-run only the items that fell back or never ran last time."""
        retry_ids = set(previous.failed_ids) | set(previous.unresolved_ids)
        retry_items = [item for item in items if item.id in retry_ids]
        retried = self.resolve_items(retry_items, on_resolved, cancel_event)
        merged = BatchResult(
            dimensions={**previous.dimensions, **retried.dimensions},
            failed_ids=retried.failed_ids,
            unresolved_ids=retried.unresolved_ids,
            cancelled=retried.cancelled,
        )
        return merged
