import argparse
import asyncio
import json
import mimetypes
import sys

from dotenv import load_dotenv

from config.settings import ReceiptOCRSettings, ConfigError
from models.draft import ReviewDraft
from services.commit_bridge import CommitTarget
from services.errors import ReceiptPipelineError, ReceiptProcessingError
from services.receipt_service import ProcessOptions, ReceiptService
from storage.json_storage import JSONStorage
from utils.logging_config import setup_logging


def print_draft(draft: ReviewDraft) -> None:
    """Print a review draft as a table."""
    print(f"\n=== Draft {draft.id} ({draft.status.value}) ===")
    print(f"Merchant: {draft.merchant_name or '-'}")
    date_note = " (defaulted)" if draft.date_defaulted else ""
    date_text = draft.transaction_date.strftime('%Y-%m-%d %H:%M') if draft.transaction_date else '-'
    print(f"Date: {date_text}{date_note}")
    if draft.total is not None:
        print(f"Total: ${draft.total:.2f}")
    print(f"Confidence: {draft.overall_confidence:.2f} ({draft.confidence_status})")

    print("\n=== Items ===")
    for item in draft.items:
        marks = ('?' if item.needs_review else ' ') + ('x' if item.committed else ' ')
        skipped = '' if item.include else ' [excluded]'
        print(f"{marks} {item.id[:8]}  {item.name:<32} {item.quantity:>5g} x ${item.price:>8.2f}{skipped}")

    for warning in draft.warnings:
        print(f"Warning: {warning}")
    for recommendation in draft.recommendations:
        print(f"Tip: {recommendation}")


def scan(service: ReceiptService, args) -> int:
    try:
        with open(args.image, 'rb') as f:
            image_bytes = f.read()
    except OSError as e:
        print(f"Error: Could not read {args.image}: {e}")
        return 1

    mime_type, _ = mimetypes.guess_type(args.image)
    options = ProcessOptions(preprocess=args.preprocess, min_item_confidence=args.min_confidence)
    receipt, draft = asyncio.run(service.process_to_draft(image_bytes, mime_type, options))

    if args.json:
        print(json.dumps({'receipt': receipt.to_dict(), 'draft': draft.to_dict()}, indent=2))
    else:
        print_draft(draft)
    return 0


def list_drafts(service: ReceiptService, args) -> int:
    drafts = service.list_drafts()
    if not drafts:
        print("No drafts found.")
        return 0

    print("\n=== Drafts ===")
    for draft in drafts:
        total = f"${draft.total:.2f}" if draft.total is not None else '-'
        print(f"{draft.id}  {draft.status.value:<20} {draft.merchant_name or '-':<24} "
              f"{len(draft.items):>3} items  {total}")
    return 0


def show_draft(service: ReceiptService, args) -> int:
    print_draft(service.get_draft(args.draft_id))
    return 0


def commit_draft(service: ReceiptService, args) -> int:
    result = service.commit_draft(args.draft_id, CommitTarget(category_id=args.category,
                                                              location_id=args.location))
    print(f"Committed {len(result.created)} item(s), {len(result.failed)} failed. "
          f"Draft is now {result.status.value}.")
    for failure in result.failed:
        print(f"- item {failure.item_id[:8]}: {failure.reason}")
    return 0 if not result.failed else 2


def main() -> None:
    """Main CLI function."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="Receipt ingestion CLI")
    parser.add_argument("--data-dir", default=None, help="Directory for drafts and inventory data")
    parser.add_argument("--verbose", action="store_true", help="Log debug output to the console")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser("scan", help="OCR a receipt image into a review draft")
    scan_parser.add_argument("image", help="Path to the receipt image")
    scan_parser.add_argument("--preprocess", choices=['off', 'auto', 'quick', 'full'], default=None,
                             help="Image preprocessing level")
    scan_parser.add_argument("--min-confidence", type=float, default=None,
                             help="Drop items below this confidence (0-1)")
    scan_parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    scan_parser.set_defaults(handler=scan)

    drafts_parser = subparsers.add_parser("drafts", help="List stored drafts")
    drafts_parser.set_defaults(handler=list_drafts)

    show_parser = subparsers.add_parser("show", help="Show one draft")
    show_parser.add_argument("draft_id")
    show_parser.set_defaults(handler=show_draft)

    commit_parser = subparsers.add_parser("commit", help="Send a draft's items to the inventory")
    commit_parser.add_argument("draft_id")
    commit_parser.add_argument("--category", required=True, help="Inventory category id")
    commit_parser.add_argument("--location", required=True, help="Inventory location id")
    commit_parser.set_defaults(handler=commit_draft)

    args = parser.parse_args()

    settings = ReceiptOCRSettings()
    if args.data_dir:
        settings.data_dir = args.data_dir
    setup_logging(log_dir=settings.log_dir, debug_mode=args.verbose, log_to_file=False)

    try:
        storage = JSONStorage(data_dir=settings.data_dir)
        service = ReceiptService(settings=settings, draft_store=storage, inventory=storage)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    try:
        code = args.handler(service, args)
    except ReceiptProcessingError as e:
        print(f"Error: {e.user_message} ({e})")
        code = 1
    except ReceiptPipelineError as e:
        print(f"Error: {e}")
        code = 1
    finally:
        service.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
