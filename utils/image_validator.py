"""
Upload validation and image quality metrics.

Uploads are checked before any pipeline stage runs. Quality metrics are
advisory: they feed preprocessing recommendations and warnings, never
rejections.
"""

import logging
from typing import Dict, Any, Iterable, List, Optional

import cv2
import numpy as np
from PIL import Image

from models.raw_image import RawImage
from services.errors import ImageValidationError

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_MIME_TYPES = ('image/jpeg', 'image/png', 'image/webp')
DEFAULT_MAX_BYTES = 10 * 1024 * 1024

# Quality thresholds on 8-bit grayscale
MIN_SHARPNESS = 10.0       # Laplacian variance
MIN_CONTRAST = 30.0        # pixel standard deviation
MIN_BRIGHTNESS = 50.0      # mean pixel value
MAX_BRIGHTNESS = 200.0
QUALITY_SAMPLE_MAX = 1000  # metrics are computed on a downscaled copy


def _normalize_mime(mime_type: Optional[str]) -> Optional[str]:
    if not mime_type:
        return None
    mime_type = mime_type.split(';')[0].strip().lower()
    return 'image/jpeg' if mime_type == 'image/jpg' else mime_type


def validate_upload(data: bytes,
                    mime_type: Optional[str] = None,
                    allowed_mime_types: Iterable[str] = DEFAULT_ALLOWED_MIME_TYPES,
                    max_bytes: int = DEFAULT_MAX_BYTES) -> RawImage:
    """
    Validate an uploaded image buffer.

    Args:
        data: Uploaded bytes
        mime_type: MIME type declared by the client (optional)
        allowed_mime_types: MIME allowlist
        max_bytes: Maximum accepted size

    Returns:
        RawImage for the upload

    Raises:
        ImageValidationError: If the upload is empty, too large, not allowed,
            undecodable, or its content disagrees with the declared type
    """
    allowed = {_normalize_mime(m) for m in allowed_mime_types}
    declared = _normalize_mime(mime_type)

    if not data:
        raise ImageValidationError("Uploaded image is empty", {'error_type': 'empty'})

    if len(data) > max_bytes:
        raise ImageValidationError(
            f"Image is too large: {len(data) / 1024 / 1024:.2f}MB. "
            f"Maximum: {max_bytes / 1024 / 1024:.2f}MB",
            {'error_type': 'too_large', 'size_bytes': len(data), 'max_bytes': max_bytes}
        )

    if declared and declared not in allowed:
        raise ImageValidationError(
            f"Unsupported image type '{declared}'. Allowed: {', '.join(sorted(allowed))}",
            {'error_type': 'unsupported_type', 'mime_type': declared}
        )

    image = RawImage.from_bytes(data)
    sniffed = image.mime_type

    if sniffed not in allowed:
        raise ImageValidationError(
            f"Unsupported image format '{image.format}'. Allowed: {', '.join(sorted(allowed))}",
            {'error_type': 'unsupported_type', 'mime_type': sniffed}
        )

    if declared and declared != sniffed:
        raise ImageValidationError(
            f"Declared type '{declared}' does not match image content '{sniffed}'",
            {'error_type': 'mime_mismatch', 'declared': declared, 'detected': sniffed}
        )

    logger.debug(f"Validated upload: {image.describe()}")
    return image


def _grayscale_array(image: RawImage) -> np.ndarray:
    pil_image = image.to_pil().convert('L')
    if max(pil_image.size) > QUALITY_SAMPLE_MAX:
        pil_image.thumbnail((QUALITY_SAMPLE_MAX, QUALITY_SAMPLE_MAX), Image.Resampling.LANCZOS)
    return np.array(pil_image)


def assess_quality(image: RawImage) -> Dict[str, Any]:
    """
    Compute sharpness, contrast and brightness of an image.

    Returns:
        Dictionary with the raw metrics, boolean flags and warning messages
    """
    gray = _grayscale_array(image)
    sharpness = float(cv2.Laplacian(gray, cv2.CV_64F).var())
    contrast = float(np.std(gray))
    brightness = float(np.mean(gray))

    warnings: List[str] = []
    if sharpness < MIN_SHARPNESS:
        warnings.append(f"Image looks blurry (sharpness: {sharpness:.2f}). "
                        f"Hold the camera steady and focus on the receipt.")
    if contrast < MIN_CONTRAST:
        warnings.append(f"Image has low contrast ({contrast:.2f}). Better lighting may improve results.")
    if brightness < MIN_BRIGHTNESS:
        warnings.append(f"Image is too dark (brightness: {brightness:.2f}). "
                        f"Better lighting may improve results.")
    elif brightness > MAX_BRIGHTNESS:
        warnings.append(f"Image is overexposed (brightness: {brightness:.2f}). "
                        f"Reduce lighting or exposure.")

    return {
        'width': image.width,
        'height': image.height,
        'sharpness': round(sharpness, 2),
        'contrast': round(contrast, 2),
        'brightness': round(brightness, 2),
        'is_blurry': sharpness < MIN_SHARPNESS,
        'is_low_contrast': contrast < MIN_CONTRAST,
        'is_dark': brightness < MIN_BRIGHTNESS,
        'is_washed_out': brightness > MAX_BRIGHTNESS,
        'warnings': warnings,
    }
