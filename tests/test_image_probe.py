from io import BytesIO

from PIL import Image as pilimage

from masonrygrid.utils.image import (apply_orientation, read_display_size,
                                     read_exif_orientation, read_image_size,
                                     read_jpeg_header_dimensions)


def make_image_bytes(size, image_format="JPEG", orientation=None):
    buffer = BytesIO()
    kwargs = {}
    if orientation is not None:
        exif = pilimage.Exif()
        exif[274] = orientation
        kwargs["exif"] = exif.tobytes()
    pilimage.new("RGB", size, "white").save(buffer, format=image_format,
                                            **kwargs)
    return buffer.getvalue()


def test_read_image_size_jpeg_and_png():
    assert read_image_size(make_image_bytes((640, 480))) == (640, 480)
    assert read_image_size(make_image_bytes((300, 500), "PNG")) == (300, 500)


def test_read_image_size_from_prefix_only():
    data = make_image_bytes((4000, 3000))

    assert read_image_size(data[:2048]) == (4000, 3000)


def test_read_image_size_rejects_garbage():
    assert read_image_size(b"") is None
    assert read_image_size(b"not an image at all") is None


def test_read_jpeg_header_dimensions():
    data = make_image_bytes((123, 45))

    assert read_jpeg_header_dimensions(data) == (123, 45)
    assert read_jpeg_header_dimensions(b"\x89PNG") is None


def test_rotated_orientation_swaps_dimensions():
    data = make_image_bytes((4000, 3000), orientation=6)

    assert read_exif_orientation(data) == 6
    assert read_display_size(data) == (3000, 4000)


def test_stored_size_ignores_exif_orientation():
    for orientation in (5, 6, 7, 8):
        data = make_image_bytes((4000, 3000), orientation=orientation)

        assert read_image_size(data) == (4000, 3000)
        assert read_display_size(data) == (3000, 4000)


def test_upright_or_missing_orientation_keeps_dimensions():
    assert read_display_size(make_image_bytes((4000, 3000),
                                              orientation=1)) == (4000, 3000)
    assert read_display_size(make_image_bytes((4000, 3000))) == (4000, 3000)
    assert read_exif_orientation(make_image_bytes((10, 10))) is None


def test_apply_orientation():
    for orientation in (5, 6, 7, 8):
        assert apply_orientation((4, 3), orientation) == (3, 4)
    for orientation in (None, 1, 2, 3, 4):
        assert apply_orientation((4, 3), orientation) == (4, 3)
