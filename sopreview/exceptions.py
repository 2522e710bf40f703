"""
Custom exceptions for SOP Review.

Provides a hierarchy of exceptions with error codes for consistent error handling.
Resolution and evaluation inside the engine never raise; these cover workspace
commands that reference missing data or carry invalid user input.
"""
from typing import Any, Dict, List, Optional


class SOPReviewError(Exception):
    """
    Base exception for all SOP Review errors.

    Attributes:
        error_code: Unique error code (e.g., SOP-001)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "SOP-000"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for the presentation layer."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Payload Errors (SOP-1XX)
class PayloadValidationError(SOPReviewError):
    """Extraction payload could not be validated."""
    error_code = "SOP-100"

    def __init__(self, message: str = "Invalid extraction payload", errors: Optional[List[Dict[str, Any]]] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        details["errors"] = errors or []
        super().__init__(message, details=details, **kwargs)


# Line Item Errors (SOP-2XX)
class LineItemNotFoundError(SOPReviewError):
    """Line item not found in the dataset."""
    error_code = "SOP-200"

    def __init__(self, row_id: str, **kwargs):
        message = f"Line item {row_id} not found"
        super().__init__(message, details={"row_id": row_id}, **kwargs)


class InvalidLineItemError(SOPReviewError):
    """Line item is missing required fields."""
    error_code = "SOP-201"

    def __init__(self, message: str = "Enter both a statement name and line item before adding a row", **kwargs):
        super().__init__(message, **kwargs)


class ColumnNotFoundError(SOPReviewError):
    """Value column is not part of the loaded document."""
    error_code = "SOP-202"

    def __init__(self, column: str, **kwargs):
        message = f"Column {column!r} not found"
        super().__init__(message, details={"column": column}, **kwargs)


# Metric Errors (SOP-3XX)
class MetricNotFoundError(SOPReviewError):
    """Metric is not registered."""
    error_code = "SOP-300"

    def __init__(self, metric: str, **kwargs):
        message = f"Metric {metric!r} not found"
        super().__init__(message, details={"metric": metric}, **kwargs)


class ManualEntryNotFoundError(SOPReviewError):
    """Manual entry not found for a metric."""
    error_code = "SOP-301"

    def __init__(self, metric: str, entry_id: str, **kwargs):
        message = f"Manual entry {entry_id} not found for {metric!r}"
        super().__init__(message, details={"metric": metric, "entry_id": entry_id}, **kwargs)


class InvalidManualEntryError(SOPReviewError):
    """Manual entry draft is incomplete."""
    error_code = "SOP-302"

    def __init__(self, message: str = "Invalid manual entry", **kwargs):
        super().__init__(message, **kwargs)


# Review / Export Errors (SOP-4XX)
class ReviewIncompleteError(SOPReviewError):
    """Review cannot be finalised yet."""
    error_code = "SOP-400"

    def __init__(self, pending: Optional[List[str]] = None, message: Optional[str] = None, **kwargs):
        pending = pending or []
        if message is None:
            message = "Please mark every statement as reviewed before finalising"
        super().__init__(message, details={"pending_statements": pending}, **kwargs)


class ExportError(SOPReviewError):
    """Verified workbook could not be exported."""
    error_code = "SOP-401"

    def __init__(self, message: str = "Failed to export workbook", **kwargs):
        super().__init__(message, **kwargs)
