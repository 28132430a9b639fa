"""Exceptions raised by the receipt processing pipeline."""

from typing import Dict, Any, Optional


class ReceiptPipelineError(Exception):
    """Base exception for receipt pipeline errors."""
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message)
        self.details = details or {}


class ImageValidationError(ReceiptPipelineError):
    """Upload rejected before processing (bad type, too large, corrupt)."""


class ReceiptProcessingError(ReceiptPipelineError):
    """The receipt could not be read. Carries a message safe to show users."""

    USER_MESSAGE = "Could not read this receipt. Try a clearer photo."

    def __init__(self, message: str, details: Dict[str, Any] = None,
                 user_message: Optional[str] = None):
        super().__init__(message, details)
        self.user_message = user_message or self.USER_MESSAGE


class ReceiptProcessingCancelled(ReceiptPipelineError):
    """Processing was cancelled before the pipeline finished."""


class InvalidTransitionError(ReceiptPipelineError):
    """A receipt or draft was moved to a status it cannot reach."""


class CommitError(ReceiptPipelineError):
    """A draft could not be handed to the inventory."""


class DraftNotFoundError(ReceiptPipelineError):
    """No draft exists with the requested id."""
