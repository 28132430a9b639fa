"""
Raw image model for uploaded receipt buffers.
"""

import io
from dataclasses import dataclass
from typing import Dict, Any, Optional

from PIL import Image, UnidentifiedImageError

from services.errors import ImageValidationError

# PIL format name -> MIME type
FORMAT_MIME_TYPES = {
    'JPEG': 'image/jpeg',
    'PNG': 'image/png',
    'WEBP': 'image/webp',
    'GIF': 'image/gif',
    'BMP': 'image/bmp',
    'TIFF': 'image/tiff',
}


@dataclass(frozen=True)
class RawImage:
    """
    An opaque image buffer plus the metadata needed by the pipeline.
    """
    data: bytes
    width: int
    height: int
    format: str
    mime_type: Optional[str] = None

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: Optional[str] = None) -> 'RawImage':
        """
        Decode image metadata from a byte buffer.

        Args:
            data: Encoded image bytes
            mime_type: Declared MIME type (sniffed from the content when omitted)

        Returns:
            RawImage wrapping the untouched buffer

        Raises:
            ImageValidationError: If the buffer is empty or cannot be decoded
        """
        if not data:
            raise ImageValidationError("Image is empty", {'error_type': 'empty'})

        try:
            with Image.open(io.BytesIO(data)) as image:
                image.verify()
            # verify() leaves the image unusable, reopen for the size
            with Image.open(io.BytesIO(data)) as image:
                width, height = image.size
                image_format = image.format or 'UNKNOWN'
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            raise ImageValidationError(
                f"Could not decode image: {str(e)}",
                {'error_type': 'corrupt_image'}
            )

        return cls(
            data=data,
            width=width,
            height=height,
            format=image_format,
            mime_type=mime_type or FORMAT_MIME_TYPES.get(image_format),
        )

    @classmethod
    def from_pil(cls, image: Image.Image, image_format: str = 'PNG') -> 'RawImage':
        """Encode a PIL image into a RawImage."""
        buffer = io.BytesIO()
        image.save(buffer, format=image_format)
        return cls(
            data=buffer.getvalue(),
            width=image.width,
            height=image.height,
            format=image_format,
            mime_type=FORMAT_MIME_TYPES.get(image_format),
        )

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def max_dimension(self) -> int:
        return max(self.width, self.height)

    def to_pil(self) -> Image.Image:
        """Decode the buffer into a PIL image."""
        image = Image.open(io.BytesIO(self.data))
        image.load()
        return image

    def describe(self) -> Dict[str, Any]:
        """Metadata summary for logs and API responses."""
        return {
            'width': self.width,
            'height': self.height,
            'format': self.format,
            'mime_type': self.mime_type,
            'size_bytes': self.size_bytes,
        }
