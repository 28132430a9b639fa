import asyncio
import logging
import time
from typing import Optional

from flask import Blueprint, request, jsonify, current_app

from services.commit_bridge import CommitTarget
from services.receipt_service import ProcessOptions, ReceiptService

logger = logging.getLogger(__name__)
receipt_bp = Blueprint('receipts', __name__, url_prefix='/api/receipts')

PREPROCESS_VALUES = {'off', 'auto', 'quick', 'full', 'true', 'false', '1', '0'}


def get_receipt_service() -> ReceiptService:
    """Get the receipt service from the Flask app config."""
    return current_app.config['receipt_service']


def _bad_request(message: str):
    return jsonify({'success': False, 'error': message}), 400


def _preprocess_option(value: Optional[str]):
    if value is None or value == '':
        return None
    value = value.strip().lower()
    if value in ('true', '1'):
        return True
    if value in ('false', '0'):
        return False
    return value


@receipt_bp.route('/process', methods=['POST'])
def process_receipt():
    """
    Upload a receipt image, run OCR and parsing, and store a review draft.

    Form fields:
        file: Receipt image (required)
        preprocess: off, auto, quick, full, true or false (optional)
        min_item_confidence: Item confidence floor between 0 and 1 (optional)
    """
    start_time = time.time()

    file = request.files.get('file')
    if file is None or not file.filename:
        return _bad_request('No receipt image provided')

    preprocess = request.form.get('preprocess')
    if preprocess and preprocess.strip().lower() not in PREPROCESS_VALUES:
        return _bad_request(f"Invalid preprocess value '{preprocess}'")

    min_confidence = request.form.get('min_item_confidence')
    if min_confidence:
        try:
            min_confidence = float(min_confidence)
        except ValueError:
            return _bad_request('min_item_confidence must be a number')
        if not 0.0 <= min_confidence <= 1.0:
            return _bad_request('min_item_confidence must be between 0 and 1')
    else:
        min_confidence = None

    options = ProcessOptions(
        preprocess=_preprocess_option(preprocess),
        min_item_confidence=min_confidence
    )
    image_bytes = file.read()

    receipt, draft = asyncio.run(
        get_receipt_service().process_to_draft(image_bytes, file.mimetype, options)
    )

    logger.info(f"Processed upload {file.filename} into draft {draft.id} "
                f"in {time.time() - start_time:.2f}s")
    return jsonify({
        'success': True,
        'data': {
            'receipt': receipt.to_dict(),
            'draft': draft.to_dict()
        }
    })


@receipt_bp.route('/drafts', methods=['GET'])
def list_drafts():
    drafts = get_receipt_service().list_drafts()
    return jsonify({
        'success': True,
        'data': [{
            'id': d.id,
            'status': d.status.value,
            'merchant_name': d.merchant_name,
            'total': d.total,
            'items': len(d.items),
            'created_at': d.created_at.isoformat()
        } for d in drafts]
    })


@receipt_bp.route('/drafts/<draft_id>', methods=['GET'])
def get_draft(draft_id):
    draft = get_receipt_service().get_draft(draft_id)
    return jsonify({'success': True, 'data': draft.to_dict()})


@receipt_bp.route('/drafts/<draft_id>', methods=['DELETE'])
def delete_draft(draft_id):
    get_receipt_service().discard_draft(draft_id)
    return jsonify({'success': True})


@receipt_bp.route('/drafts/<draft_id>/items/<item_id>', methods=['PATCH'])
def update_draft_item(draft_id, item_id):
    """Edit name, price, quantity or include flag of one draft item."""
    changes = request.get_json(silent=True)
    if not isinstance(changes, dict) or not changes:
        return _bad_request('Request body must be a JSON object of changes')

    unknown = set(changes) - {'name', 'price', 'quantity', 'include'}
    if unknown:
        return _bad_request(f"Unknown fields: {', '.join(sorted(unknown))}")

    item = get_receipt_service().update_draft_item(draft_id, item_id, changes)
    return jsonify({'success': True, 'data': item.model_dump(mode='json')})


@receipt_bp.route('/drafts/<draft_id>/commit', methods=['POST'])
def commit_draft(draft_id):
    """
    Send the draft's included items to the inventory.

    Returns 200 when every item was created, 207 when some failed and 502
    when none were created.
    """
    data = request.get_json(silent=True) or {}
    category_id = data.get('category_id')
    location_id = data.get('location_id')
    if not category_id or not location_id:
        return _bad_request('category_id and location_id are required')

    result = get_receipt_service().commit_draft(
        draft_id, CommitTarget(category_id=str(category_id), location_id=str(location_id))
    )

    if result.all_failed:
        status = 502
    elif result.failed:
        status = 207
    else:
        status = 200
    return jsonify({'success': not result.failed, 'data': result.to_dict()}), status


@receipt_bp.route('/engine', methods=['GET'])
def engine_status():
    return jsonify({'success': True, 'data': get_receipt_service().get_status()})
