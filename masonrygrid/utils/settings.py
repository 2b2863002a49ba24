import logging

from PySide6.QtCore import QSettings, Signal

logger = logging.getLogger(__name__)

# Defaults for settings that are accessed from multiple places.
DEFAULT_SETTINGS = {
    # Ordering heuristics
    'wide_image_threshold': 16 / 9,
    'max_wide_streak': 1,
    'min_narrow_after_wide': 2,
    'wide_image_bias': 0.9,
    'enable_weighted_scoring': True,
    'ordering_column_profiles': '2, 4',
    'ordering_nominal_column_width': 280,
    'ordering_gap': 16,
    'ordering_cache_ttl_seconds': 0,  # 0 = keep until invalidated
    # Dimension resolution
    'fallback_image_width': 800,
    'fallback_image_height': 600,
    'dimension_cache_ttl_seconds': 24 * 60 * 60,
    'dimension_cache_capacity': 10000,
    'enable_dimension_cache': True,
    'dimension_cache_db_path': '',  # Empty = memory only
    'probe_connect_timeout': 5.0,
    'probe_read_timeout': 10.0,
    'probe_range_bytes': 65536,
    'max_concurrent_fetches': 6,
    'dimension_width_header': 'X-Image-Width',
    'dimension_height_header': 'X-Image-Height',
    'probe_user_agent': 'masonrygrid-dimension-probe/1.0',
    'enable_json_probe': False,
    'cdn_base_url': '',
    'bucket_host_marker': '.r2.dev/',
    # Positioning
    'column_gap': 16,
    'column_width': 280,
    'fallback_aspect_ratio': 4 / 3,
    'progressive_ready_fraction': 0.4,
    'progressive_ready_max_items': 6,
    'include_card_content_height': True,
    'mobile_breakpoint': 768,
    'tablet_breakpoint': 1024,
    'mobile_columns': 2,
    'tablet_columns': 2,
    'desktop_columns': 4,
    'max_container_width': 1600,
    'mobile_gap': 12,
    'tablet_gap': 16,
    'desktop_gap': 16,
}


class Settings(QSettings):
    # Signal that shows that the setting with the given string was changes
    change = Signal(str, object, name='settingsChanged')

    def __init__(self):
        super().__init__('masonrygrid', 'masonrygrid')

    def setValue(self, key, value):
        super().setValue(key, value)
        self.change.emit(key, value)

# Common shared instance to ensure the Signal is also shared
settings = Settings()


def get_setting(key: str, value_type: type, source=None):
    """Read a typed setting, falling back to the default on bad values."""
    source = settings if source is None else source
    default = DEFAULT_SETTINGS[key]
    try:
        return source.value(key, defaultValue=default, type=value_type)
    except (TypeError, ValueError) as e:
        logger.warning('Invalid value for setting %r, using default: %s',
                       key, e)
        return default


def parse_column_profiles(value) -> tuple[int, ...]:
    """Parse a '2, 4' style profile list into sorted unique column counts."""
    if isinstance(value, str):
        parts = [part.strip() for part in value.split(',')]
    else:
        parts = list(value or [])
    profiles = set()
    for part in parts:
        if part in ('', None):
            continue
        try:
            column_count = int(part)
        except (TypeError, ValueError):
            logger.warning('Ignoring invalid column profile %r', part)
            continue
        if column_count < 1:
            logger.warning('Ignoring invalid column profile %r', part)
            continue
        profiles.add(column_count)
    if not profiles:
        return parse_column_profiles(DEFAULT_SETTINGS['ordering_column_profiles'])
    return tuple(sorted(profiles))
