"""
Receipt parser: turns recognized lines into a structured receipt.

Parsing is a fixed sequence of independent passes (totals, merchant, date,
items). Each pass reads the lines, returns the fields it found plus any
warnings, and may claim line indices so later passes skip them. Totals run
first so that "TOTAL 53.28" is never mistaken for an item.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Any, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field

from models.ocr_line import BoundingBox, RecognizedLine
from models.receipt import ParsedItem, ParsedReceipt
from .confidence_scorer import (
    ItemScorer, ReceiptScorer, default_item_scorer, default_receipt_scorer, receipt_fields
)

logger = logging.getLogger(__name__)

DATE_DEFAULTED_WARNING = "Transaction date not detected; defaulted to processing time"

# Money amount: 1-5 digits, '.' or ',' separator, two cents digits (O misread as 0)
PRICE = r'(?<![\d.,])\$?\s?(?P<price>\d{1,5}[.,][0-9Oo]{2})(?!\w)'
PRICE_PATTERN = re.compile(PRICE)

# Price followed by one or two short flag tokens ("1.88 N", "4.99 T F")
MID_LINE_PATTERN = re.compile(PRICE + r'(?P<flags>(?:\s+[A-Z*]{1,2}){1,2})\s*$')
END_OF_LINE_PATTERN = re.compile(PRICE + r'\s*$')

# Trailing "<barcode> [flag]" left on an item name
BARCODE_SUFFIX = re.compile(r'\s+(?P<barcode>\d{8,})(?:\s+(?P<flag>[A-Z]))?\s*$')

SUBTOTAL_LABEL = re.compile(r'\bsub\s*-?\s*t[o0]ta[l1]\w*', re.IGNORECASE)
TAX_LABEL = re.compile(r'\b(?:sales\s+)?tax\b|\b(?:hst|gst|vat)\b', re.IGNORECASE)
TOTAL_LABEL = re.compile(
    r'\b(?:grand\s+)?t[o0]ta[l1]\w*|\bamount\s+due\b|\bbalance\s+due\b', re.IGNORECASE
)
# "TOTAL AFTER TAX", "TOTAL INCL. TAX": a total that merely mentions tax
TAX_INCLUSIVE = re.compile(r'\b(?:after|incl?\w*|with|plus)\.?\s+tax\b', re.IGNORECASE)
# "TOTAL SAVINGS 3.00", "TOTAL ITEMS 12" and "TOTAL TENDERED 100.00" are labelled like totals but are not one
NOT_A_TOTAL = re.compile(
    r"sav(?:ings|ed)|discount|\btender\w*|\bpaid\b|\bitems?\b|\bqty\b|\bcount\b", re.IGNORECASE
)

# Quantity markers
QTY_TIMES = re.compile(r'^\s*(?P<qty>\d{1,3})\s*[xX]\s+')
QTY_PAREN = re.compile(r'^\s*\((?P<qty>\d{1,3})\)\s*')
QTY_LABEL = re.compile(r'\bQTY\s*:?\s*(?P<qty>\d{1,3})\b', re.IGNORECASE)
QTY_AT = re.compile(
    r'(?P<qty>\d{1,3}(?:\.\d{1,3})?)\s*(?:lbs?|kg|oz|ea)?\s*@\s*'
    r'\$?(?P<unit>\d{1,5}[.,][0-9Oo]{2})(?:\s*/\s*[A-Za-z]{1,3})?',
    re.IGNORECASE
)

NON_ITEM_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r'^\s*$',
        r'^receipt',
        r'thank\s*you',
        r'^(?:date|time)\b',
        r'^cashier',
        r'^payment',
        r'\bchange\b',
        r'^card\b',
        r'\b(?:visa|mastercard|amex|discover|debit|credit)\b',
        r'\bcash\b',
        r'\btend(?:ered)?\b',
        r'\bpaid\b',
        r'\b(?:approval|auth(?:orization)?|ref(?:erence)?)\s*#?\s*:?\s*\d',
        r'\bitems?\s+sold\b',
        r'\b(?:tel|phone)\b|\(\d{3}\)\s*\d{3}-\d{4}|\b\d{3}-\d{3}-\d{4}\b',
        r'\bwww\.|\.com\b',
        r'^\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}$',
        r'^\d{4}[/\-]\d{1,2}[/\-]\d{1,2}$',
    )
]

MERCHANT_KEYWORDS = re.compile(r'\b(?:store|shop|market|mart|inc|ltd|llc|corp|foods?|grocery)\b',
                               re.IGNORECASE)
MERCHANT_EXCLUDE = [
    re.compile(p, re.IGNORECASE) for p in (
        r'receipt|invoice|\bbill\b',
        r'\d{3,}',
        r'^\d+$',
        r'thank\s*you|thanks',
        r'welcome|visit',
        r'\bt[o0]ta[l1]\b|\btax\b|amount\s+due',
        r'\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}',
        r'\b(?:tel|phone)\b',
    )
]

MONTHS = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'may': 5, 'jun': 6,
    'jul': 7, 'aug': 8, 'sep': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}
MONTH_NAME = r'(?P<month_name>jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?'

# Tried in order; the first plausible match wins
DATE_PATTERNS = [
    ('iso', re.compile(r'\b(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})\b')),
    ('us', re.compile(r'\b(?P<month>\d{1,2})/(?P<day>\d{1,2})/(?P<year>\d{4}|\d{2})\b')),
    ('eu', re.compile(r'\b(?P<day>\d{1,2})[-.](?P<month>\d{1,2})[-.](?P<year>\d{4})\b')),
    ('long', re.compile(MONTH_NAME + r'\s+(?P<day>\d{1,2}),?\s+(?P<year>\d{4})\b', re.IGNORECASE)),
    ('long_dmy', re.compile(r'\b(?P<day>\d{1,2})\s+' + MONTH_NAME + r',?\s+(?P<year>\d{4})\b',
                            re.IGNORECASE)),
]
TIME_PATTERN = re.compile(r'\b(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?\s*(?P<ampm>[AaPp][Mm])?\b')


def parse_amount(text: str) -> float:
    """Parse a money string, correcting O-for-0 and comma decimal separators."""
    return float(re.sub(r'[Oo]', '0', text).replace(',', '.'))


def last_amount(text: str) -> Optional[float]:
    """Last money value anywhere on the line."""
    matches = list(PRICE_PATTERN.finditer(text))
    if not matches:
        return None
    return parse_amount(matches[-1].group('price'))


class ParserConfig(BaseModel):
    """Tunables for ReceiptParser."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    min_item_confidence: float = Field(default=0.2, ge=0.0, le=1.0)
    merchant_scan_lines: int = Field(default=8, ge=1)
    merchant_min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    max_date_age_years: int = Field(default=5, ge=0)
    max_price: float = Field(default=10000.0, gt=0)
    item_scorer: ItemScorer = default_item_scorer
    receipt_scorer: ReceiptScorer = default_receipt_scorer


@dataclass
class PassResult:
    """Fields found by one pass, the lines it claimed and its warnings."""
    fields: Dict[str, Any] = field(default_factory=dict)
    consumed: Set[int] = field(default_factory=set)
    field_lines: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


@dataclass
class _ItemCandidate:
    name: str
    price: float
    quantity: float
    pattern: str
    line: RecognizedLine
    index: int
    barcode: Optional[str] = None
    tax_flag: Optional[str] = None


class ReceiptParser:
    """Parses flat OCR lines into a ParsedReceipt."""

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()

    def parse(self, lines: Sequence[RecognizedLine],
              reference_time: Optional[datetime] = None) -> ParsedReceipt:
        """
        Parse recognized lines.

        Args:
            lines: Lines in reading order
            reference_time: "Now" for date plausibility and the date fallback.
                Pass a fixed value to make parsing repeatable.

        Returns:
            ParsedReceipt; never raises for unreadable content, anomalies
            are reported as warnings
        """
        lines = list(lines)
        reference_time = reference_time or datetime.now()
        raw_text = '\n'.join(line.text for line in lines)

        totals = self.totals_pass(lines)
        merchant = self.merchant_pass(lines, totals.consumed)
        date = self.date_pass(lines, reference_time)
        items = self.items_pass(lines, totals.consumed)

        receipt = ParsedReceipt(
            merchant_name=merchant.fields.get('merchant_name'),
            transaction_date=date.fields['transaction_date'],
            date_defaulted=date.fields['date_defaulted'],
            subtotal=totals.fields.get('subtotal'),
            tax=totals.fields.get('tax'),
            total=totals.fields.get('total'),
            items=items.fields['items'],
            ocr_confidence=round(sum(line.confidence for line in lines) / len(lines), 4) if lines else 0.0,
            raw_text=raw_text,
        )
        for result in (totals, merchant, date, items):
            for warning in result.warnings:
                receipt.add_warning(warning)

        self._check_totals(receipt)
        receipt.overall_confidence = self.config.receipt_scorer(
            lines, receipt.items, receipt_fields(receipt)
        )

        logger.info(f"Parsed {len(lines)} lines: {len(receipt.items)} items, "
                    f"total={receipt.total}, confidence={receipt.overall_confidence:.2f}, "
                    f"{len(receipt.warnings)} warnings")
        return receipt

    def field_lines(self, lines: Sequence[RecognizedLine]) -> Dict[str, int]:
        """Line numbers where total, date and merchant were found."""
        lines = list(lines)
        totals = self.totals_pass(lines)
        found = dict(totals.field_lines)
        found.update(self.merchant_pass(lines, totals.consumed).field_lines)
        found.update(self.date_pass(lines, datetime.now()).field_lines)
        return found

    # Totals

    def totals_pass(self, lines: Sequence[RecognizedLine]) -> PassResult:
        """Subtotal, tax and total. Claims every line carrying one of their labels."""
        result = PassResult()
        tax_amounts: List[float] = []
        total_candidates: List[Tuple[float, int]] = []

        for index, line in enumerate(lines):
            text = line.text
            tax_label = TAX_LABEL.search(text)
            total_label = TOTAL_LABEL.search(text)
            if total_label and tax_label and TAX_INCLUSIVE.search(text):
                tax_label = None
            if SUBTOTAL_LABEL.search(text):
                kind = 'subtotal'
            elif tax_label:
                kind = 'tax'
            elif total_label:
                if NOT_A_TOTAL.search(text):
                    # Summary lines like "TOTAL SAVINGS" are neither totals nor items
                    result.consumed.add(index)
                    continue
                kind = 'total'
            else:
                continue

            result.consumed.add(index)
            amount = last_amount(text)
            # Label on one line, amount alone on the next
            if amount is None and index + 1 < len(lines):
                next_text = lines[index + 1].text.strip()
                if PRICE_PATTERN.fullmatch(next_text):
                    amount = last_amount(next_text)
                    result.consumed.add(index + 1)
            if amount is None:
                continue

            line_number = self._line_number(line, index)
            if kind == 'subtotal':
                result.fields.setdefault('subtotal', amount)
                result.field_lines.setdefault('subtotal', line_number)
            elif kind == 'tax':
                tax_amounts.append(amount)
                result.field_lines.setdefault('tax', line_number)
            else:
                total_candidates.append((amount, line_number))

        if tax_amounts:
            result.fields['tax'] = round(sum(tax_amounts), 2)
        if total_candidates:
            amount, line_number = max(total_candidates, key=lambda c: c[0])
            result.fields['total'] = amount
            result.field_lines['total'] = line_number
        else:
            result.warnings.append("Total not detected")
        return result

    # Merchant

    def merchant_pass(self, lines: Sequence[RecognizedLine],
                      excluded: Optional[Set[int]] = None) -> PassResult:
        """Best-scoring header line among the first few lines."""
        result = PassResult()
        excluded = excluded or set()
        best: Optional[Tuple[float, str, int]] = None

        for index, line in enumerate(lines[:self.config.merchant_scan_lines]):
            text = ' '.join(line.text.split())
            if index in excluded or len(text) < 3 or len(re.findall(r'[A-Za-z]', text)) < 3:
                continue
            if any(pattern.search(text) for pattern in MERCHANT_EXCLUDE):
                continue
            if PRICE_PATTERN.search(text):
                continue
            if line.confidence <= self.config.merchant_min_confidence:
                continue

            score = line.confidence
            if MERCHANT_KEYWORDS.search(text):
                score += 0.2
            if index == 0:
                score += 0.15
            elif index == 1:
                score += 0.1
            if re.fullmatch(r'[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*', text):
                score += 0.1
            if text == text.upper() and len(text) > 3:
                score += 0.1
            if 5 <= len(text) <= 30:
                score += 0.05

            if best is None or score > best[0]:
                best = (score, text, self._line_number(line, index))

        if best:
            result.fields['merchant_name'] = best[1]
            result.field_lines['merchant'] = best[2]
        else:
            result.warnings.append("Merchant name not detected")
        return result

    # Date

    def date_pass(self, lines: Sequence[RecognizedLine], reference_time: datetime) -> PassResult:
        """First plausible date, by pattern priority then line order."""
        result = PassResult()
        earliest = datetime(reference_time.year - self.config.max_date_age_years, 1, 1)
        latest = datetime(reference_time.year + 1, 12, 31, 23, 59, 59)

        for name, pattern in DATE_PATTERNS:
            for index, line in enumerate(lines):
                for match in pattern.finditer(line.text):
                    found = self._build_date(match)
                    if found is None or not earliest <= found <= latest:
                        continue
                    found = self._attach_time(found, line.text)
                    logger.debug(f"Date {found.isoformat()} from {name} pattern on line {index}")
                    result.fields['transaction_date'] = found
                    result.fields['date_defaulted'] = False
                    result.field_lines['date'] = self._line_number(line, index)
                    return result

        result.fields['transaction_date'] = reference_time
        result.fields['date_defaulted'] = True
        result.warnings.append(DATE_DEFAULTED_WARNING)
        return result

    @staticmethod
    def _build_date(match: re.Match) -> Optional[datetime]:
        groups = match.groupdict()
        try:
            if groups.get('month_name'):
                month = MONTHS[groups['month_name'][:3].lower()]
            else:
                month = int(groups['month'])
            year = int(groups['year'])
            if year < 100:
                year += 2000
            return datetime(year, month, int(groups['day']))
        except (KeyError, ValueError):
            return None

    @staticmethod
    def _attach_time(date: datetime, text: str) -> datetime:
        match = TIME_PATTERN.search(text)
        if not match:
            return date
        hour, minute = int(match.group('hour')), int(match.group('minute'))
        second = int(match.group('second') or 0)
        ampm = (match.group('ampm') or '').lower()
        if ampm == 'pm' and hour < 12:
            hour += 12
        elif ampm == 'am' and hour == 12:
            hour = 0
        try:
            return date.replace(hour=hour, minute=minute, second=second)
        except ValueError:
            return date

    # Items

    def items_pass(self, lines: Sequence[RecognizedLine],
                   excluded: Optional[Set[int]] = None) -> PassResult:
        """Line items, with quantities and multi-line names merged."""
        result = PassResult()
        excluded = excluded or set()
        items: List[ParsedItem] = []
        dropped = 0
        pending: Optional[Tuple[int, RecognizedLine]] = None

        for index, line in enumerate(lines):
            text = line.text.strip()
            if index in excluded or self.is_non_item_line(text):
                pending = None
                continue

            candidate = self._match_item(text, line, index)
            if candidate is None:
                # A name-only line may be completed by a following price line
                pending = (index, line) if self._looks_like_name(text) else None
                continue

            if not candidate.name:
                if pending is None:
                    continue
                candidate = self._merge(pending, candidate)
            pending = None

            if not candidate.name or not 0 < candidate.price <= self.config.max_price:
                continue

            confidence = self.config.item_scorer(candidate.line, candidate.pattern)
            confidence = round(max(0.0, min(1.0, confidence)), 4)
            if confidence < self.config.min_item_confidence:
                dropped += 1
                continue

            items.append(ParsedItem(
                name=candidate.name,
                price=candidate.price,
                quantity=candidate.quantity,
                confidence=confidence,
                barcode=candidate.barcode,
                tax_flag=candidate.tax_flag,
                line_number=self._line_number(candidate.line, candidate.index),
                raw_text=candidate.line.text,
            ))

        result.fields['items'] = items
        if dropped:
            result.warnings.append(
                f"{dropped} item(s) below confidence {self.config.min_item_confidence:.2f} were dropped"
            )
        if not items:
            result.warnings.append("No items detected")
        return result

    @staticmethod
    def is_non_item_line(text: str) -> bool:
        """Headers, payment lines, dates and other lines that never hold items."""
        return any(pattern.search(text) for pattern in NON_ITEM_PATTERNS)

    @staticmethod
    def _looks_like_name(text: str) -> bool:
        return len(re.findall(r'[A-Za-z]', text)) >= 2 and not PRICE_PATTERN.search(text)

    def _match_item(self, text: str, line: RecognizedLine, index: int) -> Optional[_ItemCandidate]:
        """Primary mid-line pattern first, then the end-of-line fallback."""
        pattern = 'mid_line'
        match = MID_LINE_PATTERN.search(text)
        if match is None:
            pattern = 'end_of_line'
            match = END_OF_LINE_PATTERN.search(text)
        if match is None:
            return None

        price = parse_amount(match.group('price'))
        flags = (match.groupdict().get('flags') or '').split()
        name = text[:match.start()]
        quantity: float = 1

        at_match = QTY_AT.search(name)
        if at_match:
            # "3 @ $1.29  $3.87": unit price and count, printed amount is the line total
            quantity = float(at_match.group('qty'))
            price = parse_amount(at_match.group('unit'))
            name = name[:at_match.start()]
        else:
            for marker in (QTY_TIMES, QTY_PAREN):
                qty_match = marker.match(name)
                if qty_match:
                    quantity = float(qty_match.group('qty'))
                    name = name[qty_match.end():]
                    break
            else:
                qty_match = QTY_LABEL.search(name)
                if qty_match:
                    quantity = float(qty_match.group('qty'))
                    name = name[:qty_match.start()] + name[qty_match.end():]
            if quantity > 1:
                # Printed amount is the line total
                price = round(price / quantity, 2)

        if quantity <= 0:
            quantity = 1

        name, barcode, name_flag = self._clean_name(name)
        return _ItemCandidate(
            name=name,
            price=price,
            quantity=int(quantity) if float(quantity).is_integer() else quantity,
            pattern=pattern,
            line=line,
            index=index,
            barcode=barcode,
            tax_flag=flags[-1] if flags else name_flag,
        )

    @staticmethod
    def _clean_name(name: str) -> Tuple[str, Optional[str], Optional[str]]:
        """Strip a trailing barcode and flag; return (name, barcode, flag)."""
        name = ' '.join(name.split())
        barcode = flag = None
        match = BARCODE_SUFFIX.search(name)
        if match:
            barcode, flag = match.group('barcode'), match.group('flag')
            name = name[:match.start()]
        name = re.sub(r'[\s$@:*#.\-]+$', '', name).strip()
        if not re.search(r'[A-Za-z]{2,}', name):
            name = ''
        return name, barcode, flag

    def _merge(self, pending: Tuple[int, RecognizedLine], candidate: _ItemCandidate) -> _ItemCandidate:
        """Join a name-only line with the price line that follows it."""
        index, name_line = pending
        name, barcode, flag = self._clean_name(name_line.text)
        weaker = name_line if name_line.confidence < candidate.line.confidence else candidate.line
        merged_line = RecognizedLine(
            text=f"{name_line.text}\n{candidate.line.text}",
            confidence=weaker.confidence,
            bounding_box=BoundingBox.union([name_line.bounding_box, candidate.line.bounding_box]),
            line_number=name_line.line_number,
        )
        return _ItemCandidate(
            name=name,
            price=candidate.price,
            quantity=candidate.quantity,
            pattern='multi_line',
            line=merged_line,
            index=index,
            barcode=candidate.barcode or barcode,
            tax_flag=candidate.tax_flag or flag,
        )

    # Consistency

    @staticmethod
    def _check_totals(receipt: ParsedReceipt) -> None:
        if not receipt.items:
            return
        expected = receipt.subtotal
        if expected is None and receipt.total is not None:
            expected = round(receipt.total - (receipt.tax or 0.0), 2)
        if expected is not None and abs(receipt.items_total - expected) > 0.01:
            receipt.add_warning(
                f"Item prices sum to {receipt.items_total:.2f} but receipt shows {expected:.2f}"
            )

    @staticmethod
    def _line_number(line: RecognizedLine, index: int) -> int:
        return line.line_number if line.line_number is not None else index


def parse_receipt(lines: Sequence[RecognizedLine], reference_time: Optional[datetime] = None,
                  config: Optional[ParserConfig] = None) -> ParsedReceipt:
    """Parse lines with a one-off parser."""
    return ReceiptParser(config).parse(lines, reference_time)
