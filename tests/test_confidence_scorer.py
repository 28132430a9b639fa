"""Tests for confidence scoring."""
from datetime import datetime

import pytest

from models.ocr_line import RecognizedLine
from models.receipt import ParsedItem, ParsedReceipt
from services.confidence_scorer import (
    analyze_confidence, completeness_score, confidence_status, default_item_scorer,
    default_receipt_scorer, overall_status, receipt_fields
)


def _receipt(**overrides):
    data = dict(
        merchant_name="KEY FOOD",
        transaction_date=datetime(2024, 3, 15),
        total=10.0,
        items=[ParsedItem(name="BREAD", price=10.0, confidence=0.9)],
        overall_confidence=0.9,
    )
    data.update(overrides)
    return ParsedReceipt(**data)


def test_item_scorer_scales_by_pattern():
    line = RecognizedLine(text="BREAD 2.49", confidence=0.8)

    assert default_item_scorer(line, 'mid_line') == pytest.approx(0.8)
    assert default_item_scorer(line, 'end_of_line') == pytest.approx(0.72)
    assert default_item_scorer(line, 'multi_line') == pytest.approx(0.68)
    assert default_item_scorer(line, 'unknown') == pytest.approx(0.64)


def test_completeness_score():
    assert completeness_score({'has_total': True, 'has_date': True,
                               'has_merchant': True, 'has_items': True}) == 1.0
    assert completeness_score({'has_total': True, 'has_items': True}) == 0.6
    assert completeness_score({}) == 0.0


def test_receipt_scorer_weights():
    lines = [RecognizedLine(text="x", confidence=1.0)]
    items = [ParsedItem(name="BREAD", price=1.0, confidence=0.5)]
    fields = {'has_total': True, 'has_date': False, 'has_merchant': False, 'has_items': True}

    # 0.4 * 1.0 + 0.3 * 0.5 + 0.3 * 0.6
    assert default_receipt_scorer(lines, items, fields) == pytest.approx(0.73)


def test_receipt_scorer_without_lines():
    assert default_receipt_scorer([], [], {'has_total': True}) == 0.0


@pytest.mark.parametrize("value,expected", [
    (0.9, 'high'), (0.85, 'high'), (0.75, 'medium'), (0.5, 'low'), (0.2, 'very_low'),
])
def test_confidence_status(value, expected):
    assert confidence_status(value) == expected


@pytest.mark.parametrize("value,expected", [
    (0.95, 'excellent'), (0.8, 'good'), (0.65, 'fair'), (0.3, 'poor'),
])
def test_overall_status(value, expected):
    assert overall_status(value) == expected


def test_defaulted_date_does_not_count():
    receipt = _receipt(date_defaulted=True)

    assert receipt_fields(receipt)['has_date'] is False


def test_analysis_of_complete_receipt():
    lines = [RecognizedLine(text="KEY FOOD", confidence=0.95, line_number=0),
             RecognizedLine(text="TOTAL 10.00", confidence=0.9, line_number=1)]
    analysis = analyze_confidence(_receipt(), lines, {'merchant': 0, 'total': 1})

    assert analysis.status == 'excellent'
    assert analysis.recommendations == []
    by_field = {f.field: f for f in analysis.fields}
    assert by_field['merchant'].confidence == 0.95
    assert by_field['total'].confidence == 0.9
    assert by_field['items'].status == 'high'
    assert analysis.completeness['score'] == 1.0
    assert analysis.to_dict()['ocr_quality']['total_lines'] == 2


def test_analysis_recommends_fixes_for_missing_fields():
    lines = [RecognizedLine(text="???", confidence=0.4, line_number=0)]
    receipt = _receipt(merchant_name=None, total=None, items=[], date_defaulted=True,
                       overall_confidence=0.2)

    analysis = analyze_confidence(receipt, lines)

    assert analysis.status == 'poor'
    text = ' '.join(analysis.recommendations)
    assert 'Low OCR confidence' in text
    assert 'No items were extracted' in text
    assert 'Total amount not found' in text
    assert 'Purchase date not found' in text
    assert 'Merchant name not detected' in text
    by_field = {f.field: f for f in analysis.fields}
    assert by_field['total'].has_value is False
    assert by_field['total'].confidence == 0.0
