"""Flask application for receipt ingestion."""

import atexit
import logging
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from flask import Flask, jsonify
from flask.json.provider import DefaultJSONProvider
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from config.settings import ReceiptOCRSettings
from routes.receipt_routes import receipt_bp
from services.errors import (
    CommitError, DraftNotFoundError, ImageValidationError, InvalidTransitionError,
    ReceiptPipelineError, ReceiptProcessingCancelled, ReceiptProcessingError
)
from services.receipt_service import ReceiptService
from storage.json_storage import JSONStorage

logger = logging.getLogger(__name__)

# Multipart framing on top of the image itself
UPLOAD_OVERHEAD_BYTES = 64 * 1024


class CustomJSONEncoder(DefaultJSONProvider):
    def default(self, obj):
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return float(obj)
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        return super().default(obj)


def _error_status(error: ReceiptPipelineError) -> int:
    if isinstance(error, ImageValidationError):
        return 413 if error.details.get('error_type') == 'too_large' else 400
    if isinstance(error, DraftNotFoundError):
        return 404
    if isinstance(error, (InvalidTransitionError, CommitError, ReceiptProcessingCancelled)):
        return 409
    if isinstance(error, ReceiptProcessingError):
        return 504 if error.details.get('error_type') == 'timeout' else 502
    return 500


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ReceiptPipelineError)
    def handle_pipeline_error(error):
        status = _error_status(error)
        message = error.user_message if isinstance(error, ReceiptProcessingError) else str(error)
        logger.warning(f"Request failed ({status}): {str(error)}")
        return jsonify({
            'success': False,
            'error': message,
            'error_type': error.__class__.__name__,
            'details': error.details
        }), status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        return jsonify({
            'success': False,
            'error': 'Invalid input',
            'error_type': 'ValidationError',
            'details': error.errors(include_url=False, include_context=False)
        }), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({
            'success': False,
            'error': error.description,
            'error_type': error.__class__.__name__
        }), error.code

    @app.errorhandler(Exception)
    def handle_error(error):
        """Global error handler with enhanced logging."""
        logger.error(f"Unhandled error: {str(error)}", exc_info=True)
        return jsonify({
            'success': False,
            'error': str(error),
            'error_type': error.__class__.__name__
        }), 500


def create_app(settings: Optional[ReceiptOCRSettings] = None,
               receipt_service: Optional[ReceiptService] = None) -> Flask:
    """
    Build the Flask app.

    Args:
        settings: Pipeline settings (read from the environment when omitted)
        receipt_service: Prebuilt service; one backed by JSONStorage is created when omitted
    """
    settings = settings or (receipt_service.settings if receipt_service else ReceiptOCRSettings())
    settings.validate()

    app = Flask(__name__)
    app.json = CustomJSONEncoder(app)
    app.config.update(
        MAX_CONTENT_LENGTH=settings.max_upload_bytes + UPLOAD_OVERHEAD_BYTES,
        DEBUG=settings.debug
    )

    if receipt_service is None:
        storage = JSONStorage(data_dir=settings.data_dir)
        receipt_service = ReceiptService(settings=settings, draft_store=storage, inventory=storage)
        atexit.register(receipt_service.close)
    app.config['receipt_service'] = receipt_service

    register_error_handlers(app)
    app.register_blueprint(receipt_bp)

    logger.info(f"App created: engine={settings.ocr_engine}, pool={settings.ocr_pool_size}, "
                f"max upload={settings.max_upload_bytes} bytes")
    return app
