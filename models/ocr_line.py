"""
Recognized text line model produced by the OCR engine adapters.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any, Iterable, Optional


@dataclass(frozen=True)
class BoundingBox:
    """Pixel box of a recognized line."""
    x0: int = 0
    y0: int = 0
    x1: int = 0
    y1: int = 0

    @classmethod
    def union(cls, boxes: Iterable['BoundingBox']) -> 'BoundingBox':
        """Smallest box enclosing all given boxes."""
        boxes = list(boxes)
        if not boxes:
            return cls()
        return cls(
            x0=min(b.x0 for b in boxes),
            y0=min(b.y0 for b in boxes),
            x1=max(b.x1 for b in boxes),
            y1=max(b.y1 for b in boxes),
        )

    @property
    def height(self) -> int:
        return self.y1 - self.y0

    @property
    def width(self) -> int:
        return self.x1 - self.x0


@dataclass(frozen=True)
class RecognizedLine:
    """
    A single line of text as recognized by an OCR engine.

    Confidence is always on a 0-1 scale; adapters normalize engine scores.
    """
    text: str
    confidence: float
    bounding_box: BoundingBox = field(default_factory=BoundingBox)
    line_number: Optional[int] = None

    def __post_init__(self):
        """Clamp confidence and convert 0-100 scores."""
        confidence = float(self.confidence or 0.0)
        if confidence > 1.0:
            confidence = confidence / 100.0
        object.__setattr__(self, 'confidence', max(0.0, min(1.0, confidence)))

    def to_dict(self) -> Dict[str, Any]:
        """Convert the line to a dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RecognizedLine':
        """Create a RecognizedLine from a dictionary."""
        box = data.get('bounding_box') or {}
        return cls(
            text=data['text'],
            confidence=data.get('confidence', 0.0),
            bounding_box=BoundingBox(**box),
            line_number=data.get('line_number'),
        )
