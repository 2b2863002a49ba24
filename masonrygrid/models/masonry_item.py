"""Plain data types shared by the resolver, ordering and layout code."""

import math
from dataclasses import dataclass, field, asdict
from typing import Optional, Union

ItemId = Union[int, str]


class OrderingValidationError(ValueError):
    """Raised for malformed ordering input before any placement work."""


class DimensionResolutionError(Exception):
    """Raised when every resolution tier failed for a reference."""

    def __init__(self, reference: str, message: str = 'no tier resolved'):
        super().__init__(f'{reference}: {message}')
        self.reference = reference


class ResolutionCancelled(Exception):
    """Raised when a resolution is cancelled between tiers."""


@dataclass(frozen=True)
class Dimension:
    width: int
    height: int
    source: str = field(default='probe', compare=False)

    def __post_init__(self):
        if not _is_positive_int(self.width) or not _is_positive_int(self.height):
            raise ValueError(
                f'Dimensions must be positive integers, got '
                f'{self.width!r}x{self.height!r}')

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    def is_wide(self, threshold: float) -> bool:
        return self.aspect_ratio >= threshold

    def height_at_width(self, target_width: float) -> int:
        return round(target_width / self.aspect_ratio)

    def width_at_height(self, target_height: float) -> int:
        return round(target_height * self.aspect_ratio)

    def swapped(self) -> 'Dimension':
        return Dimension(self.height, self.width, self.source)

    def with_source(self, source: str) -> 'Dimension':
        return Dimension(self.width, self.height, source)


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass(frozen=True)
class Item:
    """An image to lay out. Width and height are optional stored metadata."""
    id: ItemId
    image_ref: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    title: str = ''

    def __post_init__(self):
        if self.width is None and self.height is None:
            return
        if not _is_positive_int(self.width) or not _is_positive_int(self.height):
            raise ValueError(
                f'Item {self.id!r} has invalid stored dimensions '
                f'{self.width!r}x{self.height!r}')

    @property
    def has_dimensions(self) -> bool:
        return self.width is not None and self.height is not None

    @property
    def dimension(self) -> Optional[Dimension]:
        if not self.has_dimensions:
            return None
        return Dimension(self.width, self.height, 'stored')

    @property
    def aspect_ratio(self) -> Optional[float]:
        if not self.has_dimensions:
            return None
        return self.width / self.height

    def with_dimension(self, dimension: Dimension) -> 'Item':
        return Item(self.id, self.image_ref, dimension.width,
                    dimension.height, self.title)

    @classmethod
    def from_dict(cls, data: dict) -> 'Item':
        width = data.get('width')
        height = data.get('height')
        return cls(
            id=data['id'],
            image_ref=data.get('image_ref') or data.get('url'),
            width=int(width) if width is not None else None,
            height=int(height) if height is not None else None,
            title=data.get('title') or '',
        )


@dataclass
class OrderedResult:
    ordered_ids: list
    column_count: int
    total_items: int
    avg_aspect_ratio: float
    wide_item_count: int

    def to_dict(self) -> dict:
        return {
            'orderedIds': list(self.ordered_ids),
            'columnCount': self.column_count,
            'totalItems': self.total_items,
            'avgAspectRatio': self.avg_aspect_ratio,
            'wideItemCount': self.wide_item_count,
        }


@dataclass
class PrecomputedOrders:
    orders: dict
    fingerprint: str
    total_items: int
    avg_aspect_ratio: float
    wide_item_count: int
    computed_at: float
    calculation_time_ms: float
    from_cache: bool = False

    @property
    def narrow_order(self) -> OrderedResult:
        return self.orders[min(self.orders)]

    @property
    def wide_order(self) -> OrderedResult:
        return self.orders[max(self.orders)]

    def to_dict(self) -> dict:
        return {
            'fingerprint': self.fingerprint,
            'totalItems': self.total_items,
            'avgAspectRatio': self.avg_aspect_ratio,
            'wideItemCount': self.wide_item_count,
            'computedAt': self.computed_at,
            'calculationTimeMs': self.calculation_time_ms,
            'fromCache': self.from_cache,
            'orders': {f'{column_count}col': result.to_dict()
                       for column_count, result in sorted(self.orders.items())},
        }


@dataclass
class LayoutItem:
    """Represents a positioned item in the masonry layout."""
    id: ItemId
    x: int
    y: int
    width: int
    height: int
    span: int
    column: int
    aspect_ratio: float
    is_wide: bool
    is_loaded: bool

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def to_dict(self) -> dict:
        data = asdict(self)
        data['isWide'] = data.pop('is_wide')
        data['isLoaded'] = data.pop('is_loaded')
        data['aspectRatio'] = data.pop('aspect_ratio')
        return data


@dataclass(frozen=True)
class CacheEntry:
    reference: str
    dimension: Dimension
    resolved_at: float


def valid_aspect_ratio(value) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value) and value > 0)
