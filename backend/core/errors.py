"""Error taxonomy for the inventory engine.

Every failure raised by the core derives from ``InventoryError`` and carries
the HTTP status the API layer should answer with. ``AssetOrphanLeft`` and
``DeliveryFailed`` are advisory: they are recorded as diagnostics and logged,
never raised out of a successful mutation.
"""

from typing import Iterable, List, Optional


class InventoryError(Exception):
    status_code = 500
    code = "inventory_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.code}


class ValidationError(InventoryError):
    status_code = 422
    code = "validation_error"

    def __init__(self, fields: Iterable[str], message: Optional[str] = None):
        self.fields: List[str] = sorted(set(fields))
        super().__init__(message or f"Invalid or missing fields: {', '.join(self.fields)}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["fields"] = self.fields
        return data


class NotFound(InventoryError):
    status_code = 404
    code = "not_found"


class PayloadTooLarge(InventoryError):
    status_code = 413
    code = "payload_too_large"


class UnsupportedMediaType(InventoryError):
    status_code = 415
    code = "unsupported_media_type"


class StoreUnavailable(InventoryError):
    """Transient storage failure; the caller may retry."""

    status_code = 503
    code = "store_unavailable"


class AssetWriteFailed(InventoryError):
    status_code = 502
    code = "asset_write_failed"


class ConcurrentModification(InventoryError):
    status_code = 409
    code = "concurrent_modification"


class AssetOrphanLeft(InventoryError):
    """Advisory: a superseded blob could not be deleted."""

    code = "asset_orphan_left"

    def __init__(self, blob_id, message: str = ""):
        self.blob_id = blob_id
        super().__init__(message or f"Blob {blob_id} left orphaned; pending reconciliation")


class DeliveryFailed(InventoryError):
    """Advisory: the notification channel did not accept the alert."""

    code = "delivery_failed"
