"""
Confidence scoring for parsed receipts.

The parser takes its item and receipt scorers as plain callables so the
weighting can be swapped without touching the extraction passes. The
defaults live here, along with the detailed analysis shown to reviewers.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Callable, Dict, Any, List, Optional, Sequence

from models.ocr_line import RecognizedLine
from models.receipt import ParsedItem, ParsedReceipt

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLDS = {
    'high': 0.85,
    'medium': 0.70,
    'low': 0.50,
    'very_low': 0.30,
}

# How much the parser trusts each item pattern
PATTERN_STRENGTH = {
    'mid_line': 1.0,
    'end_of_line': 0.9,
    'multi_line': 0.85,
}

COMPLETENESS_WEIGHTS = {
    'has_total': 0.3,
    'has_date': 0.2,
    'has_merchant': 0.2,
    'has_items': 0.3,
}

ItemScorer = Callable[[RecognizedLine, str], float]
ReceiptScorer = Callable[[Sequence[RecognizedLine], Sequence[ParsedItem], Dict[str, bool]], float]


def default_item_scorer(line: RecognizedLine, pattern: str) -> float:
    """Line confidence scaled by the strength of the pattern that matched."""
    return round(line.confidence * PATTERN_STRENGTH.get(pattern, 0.8), 4)


def completeness_score(fields: Dict[str, bool]) -> float:
    return round(sum(weight for name, weight in COMPLETENESS_WEIGHTS.items() if fields.get(name)), 4)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def default_receipt_scorer(lines: Sequence[RecognizedLine],
                           items: Sequence[ParsedItem],
                           fields: Dict[str, bool]) -> float:
    """0.4 x mean line confidence + 0.3 x mean item confidence + 0.3 x completeness."""
    if not lines:
        return 0.0
    score = (
        0.4 * _mean([line.confidence for line in lines]) +
        0.3 * _mean([item.confidence for item in items]) +
        0.3 * completeness_score(fields)
    )
    return round(max(0.0, min(1.0, score)), 4)


def confidence_status(confidence: float) -> str:
    """Bucket a field confidence into high, medium, low or very_low."""
    if confidence >= CONFIDENCE_THRESHOLDS['high']:
        return 'high'
    if confidence >= CONFIDENCE_THRESHOLDS['medium']:
        return 'medium'
    if confidence >= CONFIDENCE_THRESHOLDS['low']:
        return 'low'
    return 'very_low'


def overall_status(confidence: float) -> str:
    """Bucket an overall score into excellent, good, fair or poor."""
    if confidence >= 0.9:
        return 'excellent'
    if confidence >= 0.75:
        return 'good'
    if confidence >= 0.6:
        return 'fair'
    return 'poor'


def receipt_fields(receipt: ParsedReceipt) -> Dict[str, bool]:
    """Which headline fields were actually detected."""
    return {
        'has_total': receipt.total is not None,
        'has_date': receipt.transaction_date is not None and not receipt.date_defaulted,
        'has_merchant': bool(receipt.merchant_name),
        'has_items': bool(receipt.items),
    }


@dataclass
class FieldConfidence:
    field: str
    confidence: float
    status: str
    has_value: bool


@dataclass
class ConfidenceAnalysis:
    """Detailed confidence breakdown for one receipt."""
    overall: float
    status: str
    fields: List[FieldConfidence] = field(default_factory=list)
    ocr_quality: Dict[str, Any] = field(default_factory=dict)
    parsing_quality: Dict[str, Any] = field(default_factory=dict)
    completeness: Dict[str, Any] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _line_confidence(lines: Sequence[RecognizedLine], line_number: Optional[int],
                     default: float) -> float:
    for line in lines:
        if line.line_number == line_number:
            return line.confidence
    return default


def _field_confidences(receipt: ParsedReceipt, lines: Sequence[RecognizedLine],
                       field_lines: Dict[str, Optional[int]]) -> List[FieldConfidence]:
    fields = receipt_fields(receipt)
    values = {
        'total': fields['has_total'],
        'date': fields['has_date'],
        'merchant': fields['has_merchant'],
    }
    result = []
    for name, present in values.items():
        confidence = _line_confidence(lines, field_lines.get(name), 0.5) if present else 0.0
        result.append(FieldConfidence(name, round(confidence, 4), confidence_status(confidence), present))

    item_confidence = _mean([item.confidence for item in receipt.items])
    result.append(FieldConfidence('items', round(item_confidence, 4),
                                  confidence_status(item_confidence), bool(receipt.items)))
    return result


def _recommendations(analysis: ConfidenceAnalysis) -> List[str]:
    recommendations = []
    ocr = analysis.ocr_quality
    parsing = analysis.parsing_quality
    completeness = analysis.completeness

    if ocr['avg_confidence'] < CONFIDENCE_THRESHOLDS['medium']:
        recommendations.append(
            'Low OCR confidence detected. Consider retaking the photo with better lighting and focus.')
    if ocr['total_lines'] and ocr['low_confidence_lines'] / ocr['total_lines'] > 0.3:
        recommendations.append(
            'Many lines have low confidence. Ensure the receipt is flat and all text is clearly visible.')
    if parsing['items_extracted'] == 0:
        recommendations.append(
            'No items were extracted. Verify the receipt format and ensure item names and prices are visible.')
    if not completeness['has_total']:
        recommendations.append(
            'Total amount not found. Make sure the total is clearly visible in the image.')
    if not completeness['has_date']:
        recommendations.append(
            'Purchase date not found. Include the date section of the receipt in the image.')
    if not completeness['has_merchant']:
        recommendations.append(
            'Merchant name not detected. Include the store name/header in the image.')
    if analysis.overall < CONFIDENCE_THRESHOLDS['medium']:
        recommendations.append(
            'Overall confidence is low. For best results use good lighting, hold the camera steady '
            'and keep the receipt flat and fully visible.')
    return recommendations


def analyze_confidence(receipt: ParsedReceipt, lines: Sequence[RecognizedLine],
                       field_lines: Optional[Dict[str, Optional[int]]] = None) -> ConfidenceAnalysis:
    """
    Break a receipt's confidence down for reviewers.

    Args:
        receipt: Parsed receipt
        lines: Lines the receipt was parsed from
        field_lines: Optional line numbers where total, date and merchant were found

    Returns:
        ConfidenceAnalysis with per-field scores and recommendations
    """
    line_confidences = [line.confidence for line in lines]
    fields = receipt_fields(receipt)

    analysis = ConfidenceAnalysis(
        overall=receipt.overall_confidence,
        status=overall_status(receipt.overall_confidence),
        fields=_field_confidences(receipt, lines, field_lines or {}),
        ocr_quality={
            'avg_confidence': round(_mean(line_confidences), 4),
            'low_confidence_lines': sum(1 for c in line_confidences
                                        if c < CONFIDENCE_THRESHOLDS['medium']),
            'total_lines': len(line_confidences),
        },
        parsing_quality={
            'items_extracted': len(receipt.items),
            'avg_item_confidence': round(_mean([item.confidence for item in receipt.items]), 4),
        },
        completeness=dict(fields, score=completeness_score(fields)),
    )
    analysis.recommendations = _recommendations(analysis)
    logger.debug(f"Confidence analysis: {analysis.status} ({analysis.overall:.2f}), "
                 f"{len(analysis.recommendations)} recommendations")
    return analysis
