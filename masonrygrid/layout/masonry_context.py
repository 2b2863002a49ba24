"""Configuration objects and height estimators shared by ordering and layout."""

import math
from dataclasses import dataclass, field
from typing import Callable, Optional

from masonrygrid.models.masonry_item import Item
from masonrygrid.utils.settings import get_setting, parse_column_profiles

# (item, aspect_ratio, render_width, is_wide) -> rendered height in pixels
HeightEstimator = Callable[[Optional[Item], float, int, bool], float]

DEFAULT_ASPECT_RATIO = 4 / 3


def image_height_estimator(item: Optional[Item], aspect_ratio: float,
                           render_width: int, is_wide: bool) -> float:
    """Height of the image alone at the given width."""
    if not math.isfinite(aspect_ratio) or aspect_ratio <= 0:
        aspect_ratio = DEFAULT_ASPECT_RATIO
    return render_width / aspect_ratio


@dataclass(frozen=True)
class CardHeightEstimator:
    """
    Image height plus the caption block rendered below it.

    Title lines are estimated from the title length, assuming an average
    glyph width of 0.6 em.
    """
    base_padding: int = 32
    metadata_height: int = 24
    safety_margin: int = 12
    wide_font_size: int = 20
    narrow_font_size: int = 16
    wide_max_lines: int = 3
    narrow_max_lines: int = 2

    def title_height(self, title: str, render_width: int,
                     is_wide: bool) -> int:
        font_size = self.wide_font_size if is_wide else self.narrow_font_size
        max_lines = self.wide_max_lines if is_wide else self.narrow_max_lines
        chars_per_line = max(1, math.floor(render_width / (font_size * 0.6)))
        lines = min(max_lines, math.ceil(len(title) / chars_per_line))
        return lines * (font_size + 4) + 8

    def content_height(self, item: Optional[Item], render_width: int,
                       is_wide: bool) -> int:
        title = item.title if item is not None else ''
        return (self.base_padding
                + self.title_height(title, render_width, is_wide)
                + self.metadata_height + self.safety_margin)

    def __call__(self, item: Optional[Item], aspect_ratio: float,
                 render_width: int, is_wide: bool) -> float:
        image_height = round(image_height_estimator(
            item, aspect_ratio, render_width, is_wide))
        return image_height + self.content_height(item, render_width, is_wide)


def _default_estimator(source=None) -> HeightEstimator:
    if get_setting('include_card_content_height', bool, source):
        return CardHeightEstimator()
    return image_height_estimator


@dataclass(frozen=True)
class OrderingConfig:
    wide_threshold: float = 16 / 9
    max_wide_streak: int = 1
    min_narrow_after_wide: int = 2
    wide_bias: float = 0.9
    weighted_scoring: bool = True
    nominal_column_width: int = 280
    gap: int = 16
    profiles: tuple = (2, 4)
    height_estimator: HeightEstimator = field(
        default_factory=CardHeightEstimator, compare=False)

    @classmethod
    def from_settings(cls, source=None) -> 'OrderingConfig':
        return cls(
            wide_threshold=get_setting('wide_image_threshold', float, source),
            max_wide_streak=get_setting('max_wide_streak', int, source),
            min_narrow_after_wide=get_setting('min_narrow_after_wide', int,
                                              source),
            wide_bias=get_setting('wide_image_bias', float, source),
            weighted_scoring=get_setting('enable_weighted_scoring', bool,
                                         source),
            nominal_column_width=get_setting('ordering_nominal_column_width',
                                             int, source),
            gap=get_setting('ordering_gap', int, source),
            profiles=parse_column_profiles(
                get_setting('ordering_column_profiles', str, source)),
            height_estimator=_default_estimator(source),
        )

    def signature(self) -> str:
        """Stable text form of every value that influences an ordering."""
        estimator = self.height_estimator
        if hasattr(estimator, '__dataclass_fields__'):
            estimator_name = repr(estimator)
        else:
            # Function reprs carry a memory address
            estimator_name = getattr(estimator, '__qualname__',
                                     type(estimator).__qualname__)
        return (f'{self.wide_threshold:.6f}:{self.max_wide_streak}:'
                f'{self.min_narrow_after_wide}:{self.wide_bias:.6f}:'
                f'{int(self.weighted_scoring)}:{self.nominal_column_width}:'
                f'{self.gap}:{",".join(map(str, self.profiles))}:'
                f'{estimator_name}')


@dataclass(frozen=True)
class PositionerConfig:
    gap: int = 16
    column_width: int = 280
    wide_threshold: float = 16 / 9
    fallback_aspect_ratio: float = DEFAULT_ASPECT_RATIO
    progressive_ready_fraction: float = 0.4
    progressive_ready_max_items: int = 6
    height_estimator: HeightEstimator = field(
        default_factory=CardHeightEstimator, compare=False)
    # Responsive helpers
    mobile_breakpoint: int = 768
    tablet_breakpoint: int = 1024
    mobile_columns: int = 2
    tablet_columns: int = 2
    desktop_columns: int = 4
    max_container_width: int = 1600
    mobile_padding: int = 8
    tablet_padding: int = 16
    desktop_padding: int = 24
    mobile_gap: int = 12
    tablet_gap: int = 16
    desktop_gap: int = 16

    @classmethod
    def from_settings(cls, source=None) -> 'PositionerConfig':
        return cls(
            gap=get_setting('column_gap', int, source),
            column_width=get_setting('column_width', int, source),
            wide_threshold=get_setting('wide_image_threshold', float, source),
            fallback_aspect_ratio=get_setting('fallback_aspect_ratio', float,
                                              source),
            progressive_ready_fraction=get_setting(
                'progressive_ready_fraction', float, source),
            progressive_ready_max_items=get_setting(
                'progressive_ready_max_items', int, source),
            height_estimator=_default_estimator(source),
            mobile_breakpoint=get_setting('mobile_breakpoint', int, source),
            tablet_breakpoint=get_setting('tablet_breakpoint', int, source),
            mobile_columns=get_setting('mobile_columns', int, source),
            tablet_columns=get_setting('tablet_columns', int, source),
            desktop_columns=get_setting('desktop_columns', int, source),
            max_container_width=get_setting('max_container_width', int,
                                            source),
            mobile_gap=get_setting('mobile_gap', int, source),
            tablet_gap=get_setting('tablet_gap', int, source),
            desktop_gap=get_setting('desktop_gap', int, source),
        )
