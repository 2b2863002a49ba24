import logging
import threading
from io import BytesIO

import pytest
import requests
from PIL import Image as pilimage

from masonrygrid.dimensions.dimension_resolver import (DimensionResolver,
                                                       ResolverConfig)
from masonrygrid.models.masonry_item import (Dimension,
                                             DimensionResolutionError, Item,
                                             ResolutionCancelled)
from masonrygrid.utils.dimension_cache import (DimensionCache,
                                               DimensionCacheConfig)


def make_jpeg(size, orientation=None):
    buffer = BytesIO()
    kwargs = {}
    if orientation is not None:
        exif = pilimage.Exif()
        exif[274] = orientation
        kwargs["exif"] = exif.tobytes()
    pilimage.new("RGB", size, "white").save(buffer, format="JPEG", **kwargs)
    return buffer.getvalue()


class FakeResponse:
    def __init__(self, status_code=200, headers=None, body=b"",
                 json_data=None):
        self.status_code = status_code
        self.headers = headers or {}
        self.body = body
        self.json_data = json_data
        self.closed = False

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start:start + chunk_size]

    def json(self):
        if self.json_data is None:
            raise ValueError("no json")
        return self.json_data

    def close(self):
        self.closed = True


class FakeSession:
    """Responds with canned results; exceptions in the queue are raised."""

    def __init__(self, head=None, get=None):
        self.head_result = head
        self.get_result = get
        self.calls = []

    def _respond(self, result, url):
        if callable(result):
            result = result(url)
        if isinstance(result, Exception):
            raise result
        return result or FakeResponse(404)

    def head(self, url, **kwargs):
        self.calls.append(("HEAD", url, kwargs))
        return self._respond(self.head_result, url)

    def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        return self._respond(self.get_result, url)

    def close(self):
        pass


def make_resolver(session, config=None, cache=None):
    return DimensionResolver(cache if cache is not None else DimensionCache(),
                             config or ResolverConfig(), session)


def test_header_probe_short_circuits():
    session = FakeSession(head=FakeResponse(
        headers={"X-Image-Width": "1920", "X-Image-Height": "1080"}))
    resolver = make_resolver(session)

    dimension = resolver.resolve("https://img.example.com/a.jpg")

    assert dimension == Dimension(1920, 1080)
    assert dimension.source == "header"
    assert [call[0] for call in session.calls] == ["HEAD"]
    assert session.calls[0][2]["timeout"] == (5.0, 10.0)


def test_range_probe_applies_exif_orientation():
    jpeg = make_jpeg((4000, 3000), orientation=6)
    session = FakeSession(head=FakeResponse(), get=FakeResponse(206, body=jpeg))
    resolver = make_resolver(session)

    dimension = resolver.resolve("https://img.example.com/rotated.jpg")

    assert dimension == Dimension(3000, 4000)
    assert dimension.source == "probe"
    _, url, kwargs = session.calls[1]
    assert kwargs["headers"]["Range"] == "bytes=0-65535"
    assert kwargs["stream"] is True


def test_range_probe_without_rotation():
    session = FakeSession(get=FakeResponse(200, body=make_jpeg((4000, 3000))))

    assert make_resolver(session).resolve(
        "https://img.example.com/a.jpg") == Dimension(4000, 3000)


def test_invalid_header_values_fall_through_to_range_probe():
    session = FakeSession(
        head=FakeResponse(headers={"X-Image-Width": "abc",
                                   "X-Image-Height": "0"}),
        get=FakeResponse(206, body=make_jpeg((300, 200))))

    assert make_resolver(session).resolve(
        "https://img.example.com/a.jpg") == Dimension(300, 200)


def test_timeouts_on_every_tier_give_fallback(caplog):
    timeout = requests.exceptions.Timeout("timed out")
    session = FakeSession(head=timeout, get=timeout)
    cache = DimensionCache()
    resolver = make_resolver(session, cache=cache)

    with caplog.at_level(logging.WARNING):
        dimension = resolver.resolve("https://img.example.com/slow.jpg")

    assert (dimension.width, dimension.height) == (800, 600)
    assert dimension.source == "fallback"
    assert len(cache) == 0
    assert "fallback" in caplog.text


def test_try_resolve_raises_when_all_tiers_fail():
    session = FakeSession(head=FakeResponse(500), get=FakeResponse(416))

    with pytest.raises(DimensionResolutionError):
        make_resolver(session).try_resolve("https://img.example.com/a.jpg")


def test_empty_reference_uses_fallback():
    resolver = make_resolver(FakeSession())

    assert resolver.resolve("  ").source == "fallback"
    assert resolver.resolve(None).source == "fallback"


def test_cache_hit_skips_io():
    session = FakeSession(head=FakeResponse(
        headers={"X-Image-Width": "10", "X-Image-Height": "20"}))
    resolver = make_resolver(session)
    resolver.resolve("https://img.example.com/a.jpg")

    second = resolver.resolve(" https://img.example.com/a.jpg ")

    assert second == Dimension(10, 20)
    assert second.source == "cache"
    assert len(session.calls) == 1


def test_invalidate_forces_new_probe():
    session = FakeSession(head=FakeResponse(
        headers={"X-Image-Width": "10", "X-Image-Height": "20"}))
    resolver = make_resolver(session)
    resolver.resolve("https://img.example.com/a.jpg")

    assert resolver.invalidate("https://img.example.com/a.jpg") is True
    resolver.resolve("https://img.example.com/a.jpg")

    assert len(session.calls) == 2


def test_expired_cache_entry_is_probed_again():
    now = [0.0]
    cache = DimensionCache(DimensionCacheConfig(ttl_seconds=60),
                           clock=lambda: now[0])
    session = FakeSession(head=FakeResponse(
        headers={"X-Image-Width": "10", "X-Image-Height": "20"}))
    resolver = make_resolver(session, cache=cache)
    resolver.resolve("https://img.example.com/a.jpg")

    now[0] = 61.0
    resolver.resolve("https://img.example.com/a.jpg")

    assert len(session.calls) == 2


def test_empty_injected_cache_is_used():
    cache = DimensionCache()
    session = FakeSession(head=FakeResponse(
        headers={"X-Image-Width": "10", "X-Image-Height": "20"}))
    resolver = make_resolver(session, cache=cache)

    resolver.resolve("https://img.example.com/a.jpg")

    assert resolver.cache is cache
    assert len(cache) == 1


def test_stored_metadata_needs_no_io():
    session = FakeSession()
    resolver = make_resolver(session)

    dimension = resolver.resolve_item(Item(1, "https://x/a.jpg", 640, 480))

    assert dimension.source == "stored"
    assert session.calls == []


def test_json_probe_when_enabled():
    session = FakeSession(get=FakeResponse(
        json_data={"original": {"width": 2400, "height": 1600}}))
    resolver = make_resolver(session, ResolverConfig(enable_json_probe=True))

    dimension = resolver.resolve("https://img.example.com/a.jpg?w=300")

    assert dimension == Dimension(2400, 1600)
    assert dimension.source == "json"
    assert session.calls[0][1] == "https://img.example.com/a.jpg?w=300&format=json"


def test_reference_normalization_onto_cdn():
    resolver = make_resolver(
        FakeSession(), ResolverConfig(cdn_base_url="https://cdn.example.com/"))

    assert (resolver.normalize_reference("/uploads/issues/1/a.jpg")
            == "https://cdn.example.com/uploads/issues/1/a.jpg")
    assert (resolver.normalize_reference(
        "https://pub-123.r2.dev/issues/1/a.jpg")
        == "https://cdn.example.com/uploads/issues/1/a.jpg")
    assert (resolver.normalize_reference("https://cdn.example.com/uploads/a.jpg")
            == "https://cdn.example.com/uploads/a.jpg")
    assert (resolver.normalize_reference("https://other.com/a.jpg")
            == "https://other.com/a.jpg")


def test_normalization_disabled_without_cdn():
    resolver = make_resolver(FakeSession())

    assert resolver.normalize_reference("/uploads/a.jpg") == "/uploads/a.jpg"


def test_local_file_reference(tmp_path):
    image_path = tmp_path / "photo.jpg"
    image_path.write_bytes(make_jpeg((4000, 3000), orientation=8))
    session = FakeSession()
    resolver = make_resolver(session)

    assert resolver.resolve(str(image_path)) == Dimension(3000, 4000)
    assert resolver.resolve(image_path.as_uri()) == Dimension(3000, 4000)
    assert session.calls == []


def test_missing_local_file_gives_fallback(tmp_path):
    resolver = make_resolver(FakeSession())

    assert resolver.resolve(str(tmp_path / "nope.jpg")).source == "fallback"


def test_cancelled_resolution_raises():
    cancel = threading.Event()
    cancel.set()
    resolver = make_resolver(FakeSession())

    with pytest.raises(ResolutionCancelled):
        resolver.resolve("https://img.example.com/a.jpg", cancel)


def test_range_probe_reads_at_most_range_bytes():
    body = make_jpeg((640, 480)) + b"\x00" * 200000
    response = FakeResponse(200, body=body)
    resolver = make_resolver(FakeSession(get=response),
                             ResolverConfig(range_bytes=1024))

    data = resolver.fetch_prefix("https://img.example.com/a.jpg")

    assert len(data) == 1024
    assert response.closed
