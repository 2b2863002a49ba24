"""Decode image dimensions and EXIF orientation from a header prefix."""

import logging
import struct
from io import BytesIO
from typing import Optional

import exifread
import imagesize
from PIL import Image as pilimage, UnidentifiedImageError

logger = logging.getLogger(__name__)

# EXIF orientations that rotate by 90 or 270 degrees (with or without mirror)
ROTATED_ORIENTATIONS = (5, 6, 7, 8)
EXIF_ORIENTATION_TAG = 274

# Sizes outside these bounds are re-checked with Pillow
SUSPICIOUS_MIN_ASPECT_RATIO = 0.2
SUSPICIOUS_MAX_ASPECT_RATIO = 5.0
SUSPICIOUS_MAX_SIDE = 12000


def _is_suspicious(dimensions: tuple[int, int]) -> bool:
    width, height = dimensions
    if width <= 0 or height <= 0:
        return True
    aspect_ratio = width / height
    if (aspect_ratio < SUSPICIOUS_MIN_ASPECT_RATIO
            or aspect_ratio > SUSPICIOUS_MAX_ASPECT_RATIO):
        return True
    return width > SUSPICIOUS_MAX_SIDE or height > SUSPICIOUS_MAX_SIDE


def read_jpeg_header_dimensions(data: bytes) -> Optional[tuple[int, int]]:
    """
    Read JPEG dimensions directly from the SOF marker.
    This works on some truncated or corrupted headers where Pillow fails.
    Returns (width, height) or None if the header is unusable.
    """
    if data[:2] != b'\xff\xd8':
        return None
    offset = 2
    while offset + 4 <= len(data):
        if data[offset] != 0xff:
            return None
        marker_type = data[offset + 1]
        # Fill bytes between markers
        if marker_type == 0xff:
            offset += 1
            continue
        # SOF markers: 0xC0-0xCF (except 0xC4, 0xC8, 0xCC)
        if (0xC0 <= marker_type <= 0xCF
                and marker_type not in (0xC4, 0xC8, 0xCC)):
            if offset + 9 > len(data):
                return None
            height = int.from_bytes(data[offset + 5:offset + 7], 'big')
            width = int.from_bytes(data[offset + 7:offset + 9], 'big')
            if width <= 0 or height <= 0:
                return None
            return width, height
        length = int.from_bytes(data[offset + 2:offset + 4], 'big')
        if length < 2:
            return None
        offset += 2 + length
    return None


def read_image_size(data: bytes) -> Optional[tuple[int, int]]:
    """Return the stored (width, height) encoded in an image header prefix."""
    if not data:
        return None
    dimensions = (-1, -1)
    try:
        # Stored size; EXIF rotation is applied by apply_orientation()
        dimensions = imagesize.get(BytesIO(data), exif_rotation=False)
    except (ValueError, OSError, IndexError, struct.error) as e:
        logger.debug('imagesize could not read header: %s', e)

    if dimensions == (-1, -1) or _is_suspicious(dimensions):
        # Trust Pillow over imagesize when both produce something
        try:
            with pilimage.open(BytesIO(data)) as img:
                dimensions = img.size
        except (UnidentifiedImageError, OSError, ValueError,
                SyntaxError) as e:
            logger.debug('Pillow could not read header: %s', e)
            if dimensions == (-1, -1):
                dimensions = read_jpeg_header_dimensions(data) or (-1, -1)

    if dimensions == (-1, -1) or dimensions[0] <= 0 or dimensions[1] <= 0:
        return None
    return int(dimensions[0]), int(dimensions[1])


def read_exif_orientation(data: bytes) -> Optional[int]:
    """Return the EXIF orientation value, or None when absent or unreadable."""
    if not data:
        return None
    try:
        exif_tags = exifread.process_file(
            BytesIO(data), details=False, extract_thumbnail=False,
            stop_tag='Image Orientation')
        if 'Image Orientation' in exif_tags:
            values = exif_tags['Image Orientation'].values
            if values:
                return int(values[0])
            return None
    except Exception as e:
        # exifread raises a wide variety of errors on truncated input
        logger.debug('exifread failed, trying Pillow: %s', e)

    try:
        with pilimage.open(BytesIO(data)) as img:
            exif = img.getexif()
            if exif:
                orientation = exif.get(EXIF_ORIENTATION_TAG)
                return int(orientation) if orientation is not None else None
    except (UnidentifiedImageError, OSError, ValueError, TypeError) as e:
        logger.debug('Pillow EXIF read failed: %s', e)
    return None


def apply_orientation(dimensions: tuple[int, int],
                      orientation: Optional[int]) -> tuple[int, int]:
    """Swap width and height for orientations that rotate by 90 or 270."""
    if orientation in ROTATED_ORIENTATIONS:
        return dimensions[1], dimensions[0]
    return dimensions


def read_display_size(data: bytes) -> Optional[tuple[int, int]]:
    """Return display (width, height) with EXIF orientation applied."""
    dimensions = read_image_size(data)
    if dimensions is None:
        return None
    return apply_orientation(dimensions, read_exif_orientation(data))
