import io
import unittest
from datetime import datetime

from PIL import Image
from pydantic import ValidationError

from models.draft import DraftItem, ReviewDraft
from models.ocr_line import BoundingBox, RecognizedLine
from models.raw_image import RawImage
from models.receipt import ParsedItem, ParsedReceipt, ReceiptStatus, check_transition
from services.errors import ImageValidationError, InvalidTransitionError


class TestRecognizedLine(unittest.TestCase):
    """Test the RecognizedLine model."""

    def test_percent_confidence_is_normalized(self):
        line = RecognizedLine(text="BREAD", confidence=87)
        self.assertAlmostEqual(line.confidence, 0.87)

    def test_confidence_is_clamped(self):
        self.assertEqual(RecognizedLine(text="x", confidence=-0.5).confidence, 0.0)
        self.assertEqual(RecognizedLine(text="x", confidence=250).confidence, 1.0)
        self.assertEqual(RecognizedLine(text="x", confidence=None).confidence, 0.0)

    def test_round_trip(self):
        line = RecognizedLine(text="MILK 3.49", confidence=0.9,
                              bounding_box=BoundingBox(1, 2, 30, 40), line_number=3)
        self.assertEqual(RecognizedLine.from_dict(line.to_dict()), line)

    def test_box_union(self):
        box = BoundingBox.union([BoundingBox(10, 5, 20, 15), BoundingBox(0, 8, 12, 30)])
        self.assertEqual(box, BoundingBox(0, 5, 20, 30))
        self.assertEqual(box.width, 20)
        self.assertEqual(box.height, 25)
        self.assertEqual(BoundingBox.union([]), BoundingBox())


class TestRawImage(unittest.TestCase):
    """Test the RawImage model."""

    def _png(self, size=(40, 60)):
        buffer = io.BytesIO()
        Image.new('RGB', size, (255, 255, 255)).save(buffer, format='PNG')
        return buffer.getvalue()

    def test_from_bytes(self):
        data = self._png()
        image = RawImage.from_bytes(data)
        self.assertEqual((image.width, image.height), (40, 60))
        self.assertEqual(image.format, 'PNG')
        self.assertEqual(image.mime_type, 'image/png')
        self.assertEqual(image.size_bytes, len(data))
        self.assertEqual(image.max_dimension, 60)

    def test_empty_buffer(self):
        with self.assertRaises(ImageValidationError):
            RawImage.from_bytes(b'')

    def test_from_pil(self):
        image = RawImage.from_pil(Image.new('L', (10, 20)))
        self.assertEqual(image.format, 'PNG')
        self.assertEqual(image.to_pil().size, (10, 20))
        self.assertEqual(image.describe()['height'], 20)


class TestParsedReceipt(unittest.TestCase):
    """Test the parsed receipt models."""

    def test_item_name_is_cleaned(self):
        item = ParsedItem(name="  GV   100  BRD ", price=2.499)
        self.assertEqual(item.name, "GV 100 BRD")
        self.assertEqual(item.price, 2.5)

    def test_blank_item_name_is_rejected(self):
        with self.assertRaises(ValidationError):
            ParsedItem(name="   ", price=1.0)

    def test_negative_price_is_rejected(self):
        with self.assertRaises(ValidationError):
            ParsedItem(name="BREAD", price=-1.0)

    def test_items_total(self):
        receipt = ParsedReceipt(items=[
            ParsedItem(name="BREAD", price=2.49),
            ParsedItem(name="YOGURT", price=1.50, quantity=2),
        ])
        self.assertEqual(receipt.items_total, 5.49)

    def test_merchant_name_is_cleaned(self):
        receipt = ParsedReceipt(merchant_name="** KEY  FOOD **")
        self.assertEqual(receipt.merchant_name, "KEY FOOD")
        self.assertIsNone(ParsedReceipt(merchant_name="***").merchant_name)

    def test_warnings_are_not_duplicated(self):
        receipt = ParsedReceipt()
        receipt.add_warning("Total not detected")
        receipt.add_warning("Total not detected")
        self.assertEqual(receipt.warnings, ["Total not detected"])

    def test_round_trip(self):
        receipt = ParsedReceipt(
            merchant_name="KEY FOOD",
            transaction_date=datetime(2024, 3, 15, 14, 32),
            total=2.49,
            items=[ParsedItem(name="BREAD", price=2.49, barcode="012345678905")],
        )
        data = receipt.to_dict()
        self.assertEqual(data['status'], 'parsed')
        self.assertEqual(ParsedReceipt.from_dict(data), receipt)


class TestStatusTransitions(unittest.TestCase):
    """Test the receipt lifecycle."""

    def test_happy_path(self):
        status = ReceiptStatus.UPLOADED
        for target in (ReceiptStatus.PREPROCESSED, ReceiptStatus.RECOGNIZED, ReceiptStatus.PARSED,
                       ReceiptStatus.REVIEW, ReceiptStatus.PARTIALLY_COMMITTED, ReceiptStatus.COMMITTED):
            status = check_transition(status, target)
        self.assertEqual(status, ReceiptStatus.COMMITTED)

    def test_preprocessing_is_optional(self):
        self.assertEqual(check_transition(ReceiptStatus.UPLOADED, ReceiptStatus.RECOGNIZED),
                         ReceiptStatus.RECOGNIZED)

    def test_terminal_states(self):
        for terminal in (ReceiptStatus.COMMITTED, ReceiptStatus.FAILED, ReceiptStatus.CANCELLED):
            with self.assertRaises(InvalidTransitionError):
                check_transition(terminal, ReceiptStatus.REVIEW)

    def test_review_cannot_fail(self):
        with self.assertRaises(InvalidTransitionError) as ctx:
            check_transition(ReceiptStatus.REVIEW, ReceiptStatus.FAILED)
        self.assertEqual(ctx.exception.details['target'], 'failed')

    def test_draft_move_to(self):
        draft = ReviewDraft(items=[DraftItem(name="BREAD", price=2.49)])
        draft.move_to(ReceiptStatus.CANCELLED)
        self.assertEqual(draft.status, ReceiptStatus.CANCELLED)
        self.assertIsNotNone(draft.updated_at)
        with self.assertRaises(InvalidTransitionError):
            draft.move_to(ReceiptStatus.REVIEW)

    def test_pending_items(self):
        draft = ReviewDraft(items=[
            DraftItem(name="BREAD", price=2.49),
            DraftItem(name="EGGS", price=3.99, include=False),
            DraftItem(name="MILK", price=2.99, committed=True),
        ])
        self.assertEqual([i.name for i in draft.pending_items()], ["BREAD"])


if __name__ == '__main__':
    unittest.main()
