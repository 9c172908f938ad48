from datetime import datetime
from typing import Annotated, Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from db.inventory.item import ItemStatus, ItemType, Unit


Quantity = Annotated[float, Field(ge=0, allow_inf_nan=False)]


def _strip_text(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    if not v:
        raise ValueError("cannot be empty")
    return v


def _normalize_choice(v: Any) -> Any:
    # "HUSK", " Pieces " and enum members all resolve to the stored value
    if isinstance(v, str):
        return v.strip().lower()
    return v


def _number(v: Any) -> Any:
    if isinstance(v, bool):
        raise ValueError("quantity must be a number")
    if isinstance(v, str):
        return v.strip()
    return v


class InventoryItemCreate(BaseModel):
    item_name: str
    item_type: ItemType
    quantity: Quantity
    unit: Unit
    storage_location: str
    status: Optional[ItemStatus] = None

    class Config:
        extra = "forbid"

    @field_validator("*")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("cannot be null")
        return v

    @field_validator("item_name", "storage_location")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        return _strip_text(v)

    @field_validator("item_type", "unit", "status", mode="before")
    @classmethod
    def _choice(cls, v):
        return _normalize_choice(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, v):
        return _number(v)


class InventoryItemUpdate(BaseModel):
    """Partial update: only the fields that were sent are applied."""

    item_name: Optional[str] = None
    item_type: Optional[ItemType] = None
    quantity: Optional[Quantity] = None
    unit: Optional[Unit] = None
    storage_location: Optional[str] = None
    status: Optional[ItemStatus] = None

    class Config:
        extra = "forbid"

    @field_validator("*")
    @classmethod
    def _not_null(cls, v):
        # Sent fields may not be cleared; absent fields keep their value.
        if v is None:
            raise ValueError("cannot be null")
        return v

    @field_validator("item_name", "storage_location")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _strip_text(v)

    @field_validator("item_type", "unit", "status", mode="before")
    @classmethod
    def _choice(cls, v):
        return _normalize_choice(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, v):
        return _number(v)


class DiagnosticOut(BaseModel):
    code: str
    detail: str


class InventoryItemOut(BaseModel):
    id: UUID
    item_name: str
    item_type: ItemType
    quantity: float
    unit: Unit
    storage_location: str
    status: ItemStatus
    asset_id: Optional[UUID] = None
    asset_url: Optional[str] = None
    low_stock: bool
    low_stock_notified: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class InventoryItemMutationOut(InventoryItemOut):
    diagnostics: List[DiagnosticOut] = []


class DeletedItemOut(BaseModel):
    id: UUID
    diagnostics: List[DiagnosticOut] = []


class ReconcileOut(BaseModel):
    deleted: List[UUID]
