"""Resolve image references to display dimensions through a tier chain."""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from masonrygrid.models.masonry_item import (Dimension,
                                             DimensionResolutionError, Item,
                                             ResolutionCancelled)
from masonrygrid.utils.dimension_cache import DimensionCache
from masonrygrid.utils.image import read_display_size
from masonrygrid.utils.settings import get_setting

logger = logging.getLogger(__name__)

REMOTE_SCHEMES = ('http', 'https')


@dataclass(frozen=True)
class ResolverConfig:
    connect_timeout: float = 5.0
    read_timeout: float = 10.0
    range_bytes: int = 65536
    width_header: str = 'X-Image-Width'
    height_header: str = 'X-Image-Height'
    user_agent: str = 'masonrygrid-dimension-probe/1.0'
    enable_json_probe: bool = False
    cdn_base_url: str = ''
    bucket_host_marker: str = '.r2.dev/'
    fallback_width: int = 800
    fallback_height: int = 600
    max_concurrent_fetches: int = 6

    @classmethod
    def from_settings(cls, source=None) -> 'ResolverConfig':
        return cls(
            connect_timeout=get_setting('probe_connect_timeout', float, source),
            read_timeout=get_setting('probe_read_timeout', float, source),
            range_bytes=get_setting('probe_range_bytes', int, source),
            width_header=get_setting('dimension_width_header', str, source),
            height_header=get_setting('dimension_height_header', str, source),
            user_agent=get_setting('probe_user_agent', str, source),
            enable_json_probe=get_setting('enable_json_probe', bool, source),
            cdn_base_url=get_setting('cdn_base_url', str, source),
            bucket_host_marker=get_setting('bucket_host_marker', str, source),
            fallback_width=get_setting('fallback_image_width', int, source),
            fallback_height=get_setting('fallback_image_height', int, source),
            max_concurrent_fetches=get_setting('max_concurrent_fetches', int,
                                               source),
        )

    @property
    def timeout(self) -> tuple[float, float]:
        return self.connect_timeout, self.read_timeout


def _parse_positive_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return number if number > 0 else None


class DimensionResolver:
    """
    Tiers, in order: cache, JSON metadata, header probe, header-prefix decode.

    Every success is written to the cache. The prefix decode applies EXIF
    orientation; header and JSON values are taken as display dimensions.
    """

    def __init__(self, cache: DimensionCache = None,
                 config: ResolverConfig = None,
                 session: requests.Session = None):
        self.config = config or ResolverConfig()
        self.cache = cache if cache is not None else DimensionCache()
        if session is None:
            session = requests.Session()
            session.headers['User-Agent'] = self.config.user_agent
        self.session = session

    def fallback_dimension(self) -> Dimension:
        return Dimension(self.config.fallback_width,
                         self.config.fallback_height, 'fallback')

    def normalize_reference(self, image_ref) -> str:
        """Trim the reference and rewrite upload paths onto the CDN."""
        reference = (image_ref or '').strip()
        cdn = self.config.cdn_base_url.rstrip('/')
        if not reference or not cdn:
            return reference
        if reference.startswith(cdn):
            return reference
        marker = self.config.bucket_host_marker
        if marker and marker in reference:
            object_key = reference.split(marker, 1)[1]
            return f'{cdn}/uploads/{object_key}'
        if reference.startswith('/uploads/'):
            return cdn + reference
        return reference

    @staticmethod
    def is_remote(reference: str) -> bool:
        return urlparse(reference).scheme.lower() in REMOTE_SCHEMES

    def _headers(self, extra: dict = None) -> dict:
        headers = {'User-Agent': self.config.user_agent}
        if extra:
            headers.update(extra)
        return headers

    def probe_json(self, url: str) -> Optional[Dimension]:
        separator = '&' if '?' in url else '?'
        response = self.session.get(f'{url}{separator}format=json',
                                    headers=self._headers(),
                                    timeout=self.config.timeout)
        try:
            if response.status_code != 200:
                return None
            try:
                original = response.json().get('original') or {}
            except (ValueError, AttributeError):
                return None
            width = _parse_positive_int(original.get('width'))
            height = _parse_positive_int(original.get('height'))
            if width and height:
                return Dimension(width, height, 'json')
            return None
        finally:
            response.close()

    def probe_headers(self, url: str) -> Optional[Dimension]:
        response = self.session.head(url, headers=self._headers(),
                                     timeout=self.config.timeout,
                                     allow_redirects=True)
        try:
            if response.status_code >= 400:
                return None
            width = _parse_positive_int(
                response.headers.get(self.config.width_header))
            height = _parse_positive_int(
                response.headers.get(self.config.height_header))
            if width and height:
                return Dimension(width, height, 'header')
            return None
        finally:
            response.close()

    def fetch_prefix(self, url: str) -> bytes:
        """Fetch at most `range_bytes` from the start of the image."""
        range_bytes = self.config.range_bytes
        response = self.session.get(
            url, headers=self._headers({'Range': f'bytes=0-{range_bytes - 1}'}),
            timeout=self.config.timeout, stream=True)
        try:
            if response.status_code not in (200, 206):
                logger.debug('Range request for %s returned %s', url,
                             response.status_code)
                return b''
            data = bytearray()
            # Servers that ignore Range still only get read up to the limit
            for chunk in response.iter_content(chunk_size=8192):
                data.extend(chunk)
                if len(data) >= range_bytes:
                    break
            return bytes(data[:range_bytes])
        finally:
            response.close()

    def read_local_prefix(self, reference: str) -> bytes:
        parsed = urlparse(reference)
        if parsed.scheme == 'file':
            path = Path(unquote(parsed.path))
        else:
            path = Path(reference).expanduser()
        with open(path, 'rb') as image_file:
            return image_file.read(self.config.range_bytes)

    def probe_prefix(self, reference: str) -> Optional[Dimension]:
        if self.is_remote(reference):
            data = self.fetch_prefix(reference)
        else:
            data = self.read_local_prefix(reference)
        dimensions = read_display_size(data)
        if dimensions is None:
            return None
        return Dimension(dimensions[0], dimensions[1], 'probe')

    def _tiers(self, reference: str):
        if self.is_remote(reference):
            if self.config.enable_json_probe:
                yield 'json', self.probe_json
            yield 'header', self.probe_headers
        yield 'probe', self.probe_prefix

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise ResolutionCancelled()

    def try_resolve(self, image_ref,
                    cancel_event: threading.Event = None) -> Dimension:
        """Resolve through cache and I/O tiers, raising when all of them fail."""
        reference = self.normalize_reference(image_ref)
        if not reference:
            raise DimensionResolutionError(repr(image_ref), 'empty reference')

        cached = self.cache.get(reference)
        if cached is not None:
            return cached.with_source('cache')

        errors = []
        for tier_name, tier in self._tiers(reference):
            self._check_cancelled(cancel_event)
            try:
                dimension = tier(reference)
            except (requests.exceptions.RequestException, OSError,
                    ValueError) as e:
                logger.debug('Tier %s failed for %s: %s', tier_name,
                             reference, e)
                errors.append(f'{tier_name}: {e}')
                continue
            if dimension is not None:
                self.cache.put(reference, dimension)
                logger.debug('Resolved %s via %s: %dx%d', reference,
                             tier_name, dimension.width, dimension.height)
                return dimension
            errors.append(f'{tier_name}: no dimensions')

        raise DimensionResolutionError(reference, '; '.join(errors))

    def resolve(self, image_ref,
                cancel_event: threading.Event = None) -> Dimension:
        """Like `try_resolve` but substitutes the fallback dimension."""
        try:
            return self.try_resolve(image_ref, cancel_event)
        except DimensionResolutionError as e:
            fallback = self.fallback_dimension()
            logger.warning('Using fallback %dx%d for %s', fallback.width,
                           fallback.height, e)
            return fallback

    def resolve_item(self, item: Item,
                     cancel_event: threading.Event = None) -> Dimension:
        if item.has_dimensions:
            return item.dimension
        return self.resolve(item.image_ref, cancel_event)

    def invalidate(self, image_ref) -> bool:
        """Forget a reference, e.g. after its image was replaced."""
        return self.cache.invalidate(self.normalize_reference(image_ref))

    def close(self):
        self.session.close()
