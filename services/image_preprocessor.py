"""Image preprocessing module for OCR optimization."""

import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

import cv2
import numpy as np
from PIL import Image, ImageFilter, ImageOps
from pydantic import BaseModel, Field

from models.raw_image import RawImage
from utils.image_validator import assess_quality

logger = logging.getLogger(__name__)

# EXIF tag 0x0112; 1 means the pixels are already upright
EXIF_ORIENTATION = 0x0112


class PreprocessConfig(BaseModel):
    """Which filters to run. Nothing runs unless ``enabled`` is set."""

    enabled: bool = False
    auto_orient: bool = False
    resize_max: Optional[int] = Field(default=None, gt=0)
    grayscale: bool = False
    contrast: bool = False
    normalize: bool = False
    denoise: bool = False
    sharpen: bool = False

    @classmethod
    def off(cls) -> 'PreprocessConfig':
        return cls()

    @classmethod
    def quick(cls) -> 'PreprocessConfig':
        """Grayscale and brightness/contrast stretch only."""
        return cls(enabled=True, grayscale=True, normalize=True)

    @classmethod
    def full(cls) -> 'PreprocessConfig':
        """Every filter, for dark or faded photos."""
        return cls(
            enabled=True,
            auto_orient=True,
            resize_max=2000,
            grayscale=True,
            contrast=True,
            normalize=True,
            denoise=True,
            sharpen=True,
        )

    @classmethod
    def for_level(cls, level: Optional[str]) -> 'PreprocessConfig':
        """Map 'off', 'quick' or 'full' to a preset."""
        presets = {'off': cls.off, 'quick': cls.quick, 'full': cls.full}
        level = (level or 'off').lower()
        if level not in presets:
            raise ValueError(f"Unknown preprocessing level '{level}'")
        return presets[level]()


@dataclass
class PreprocessResult:
    """Output image plus the names of the filters that actually ran."""
    image: RawImage
    applied: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.applied)


class ImagePreprocessor:
    """Class for preprocessing images before OCR."""

    def run(self, image: RawImage, config: Optional[PreprocessConfig] = None) -> PreprocessResult:
        """
        Apply the configured filters.

        Failures never abort the pipeline: the original image is returned
        together with a warning.

        Args:
            image: Image to process
            config: Filters to apply (disabled when omitted)

        Returns:
            PreprocessResult wrapping either a new PNG image or the original object
        """
        config = config or PreprocessConfig()
        if not config.enabled:
            return PreprocessResult(image=image)

        applied: List[str] = []
        try:
            pil_image = image.to_pil()

            if config.auto_orient and pil_image.getexif().get(EXIF_ORIENTATION, 1) not in (None, 1):
                # Rotations swap the axes; the pixel count is unchanged
                pil_image = ImageOps.exif_transpose(pil_image)
                applied.append('auto_orient')

            if config.resize_max and max(pil_image.size) > config.resize_max:
                pil_image = self._downscale(pil_image, config.resize_max)
                applied.append('resize')

            if config.grayscale and pil_image.mode != 'L':
                pil_image = pil_image.convert('L')
                applied.append('grayscale')

            if config.contrast:
                pil_image = self.enhance_contrast(pil_image)
                applied.append('contrast')

            if config.normalize:
                pil_image = ImageOps.autocontrast(self._flatten_alpha(pil_image), cutoff=1)
                applied.append('normalize')

            if config.denoise:
                pil_image = pil_image.filter(ImageFilter.MedianFilter(size=3))
                applied.append('denoise')

            if config.sharpen:
                pil_image = pil_image.filter(ImageFilter.UnsharpMask(radius=2, percent=150, threshold=3))
                applied.append('sharpen')

            processed = RawImage.from_pil(pil_image, 'PNG')
        except Exception as e:
            message = f"Preprocessing failed, using original image: {str(e)}"
            logger.warning(message)
            return PreprocessResult(image=image, warnings=[message])

        logger.debug(f"Preprocessed {image.width}x{image.height} -> "
                     f"{processed.width}x{processed.height} ({', '.join(applied) or 'no-op'})")
        return PreprocessResult(image=processed, applied=applied)

    @staticmethod
    def _downscale(image: Image.Image, max_dimension: int) -> Image.Image:
        """Shrink so the longest side equals max_dimension. Never enlarges."""
        scale = max_dimension / max(image.size)
        new_size = (max(1, int(image.width * scale)), max(1, int(image.height * scale)))
        return image.resize(new_size, Image.Resampling.LANCZOS)

    @staticmethod
    def _flatten_alpha(image: Image.Image) -> Image.Image:
        if image.mode in ('L', 'RGB'):
            return image
        return image.convert('RGB')

    @staticmethod
    def enhance_contrast(image: Image.Image) -> Image.Image:
        """
        Enhance image contrast using CLAHE.

        Grayscale images are equalized directly; color images on the L
        channel of LAB.
        """
        clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        if image.mode == 'L':
            return Image.fromarray(clahe.apply(np.array(image)))

        img_array = np.array(image.convert('RGB'))
        lab = cv2.cvtColor(img_array, cv2.COLOR_RGB2LAB)
        l_channel, a_channel, b_channel = cv2.split(lab)
        merged = cv2.merge((clahe.apply(l_channel), a_channel, b_channel))
        return Image.fromarray(cv2.cvtColor(merged, cv2.COLOR_LAB2RGB))


def preprocess(image: RawImage, config: Optional[PreprocessConfig] = None) -> RawImage:
    """Run the preprocessor and return just the image."""
    return ImagePreprocessor().run(image, config).image


def recommend_preprocessing(image: RawImage, quality: Optional[Dict[str, Any]] = None,
                            min_dimension: int = 1000) -> PreprocessConfig:
    """
    Pick a preset from image size and quality metrics.

    Args:
        image: Image to inspect
        quality: Metrics from utils.image_validator.assess_quality (computed when omitted)
        min_dimension: Images at least this large and sharp are left alone

    Returns:
        Suggested configuration (disabled for large, sharp images)
    """
    if quality is None:
        quality = assess_quality(image)

    if image.max_dimension >= min_dimension and not quality.get('is_blurry'):
        return PreprocessConfig.off()
    # Bright paper is normal for receipts, so only darkness or flat contrast asks for full
    if quality.get('is_dark') or quality.get('is_low_contrast'):
        return PreprocessConfig.full()
    return PreprocessConfig.quick()
