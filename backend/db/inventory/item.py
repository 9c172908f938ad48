import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, String, Uuid

from ..database import Base


class ItemType(str, enum.Enum):
    SHELL = "shell"
    HUSK = "husk"
    WATER = "water"
    MEAT = "meat"
    OTHER = "other"


class Unit(str, enum.Enum):
    KG = "kg"
    LITERS = "liters"
    PIECES = "pieces"


class ItemStatus(str, enum.Enum):
    AVAILABLE = "available"
    PROCESSING = "processing"
    DISPOSED = "disposed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls, **kwargs) -> Column:
    # Stored as plain strings holding the enum values ("shell", "kg", ...).
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            length=20,
            values_callable=lambda members: [m.value for m in members],
        ),
        **kwargs,
    )


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    item_name = Column(String, nullable=False, index=True)
    item_type = _enum_column(ItemType, nullable=False, index=True)
    quantity = Column(Float, nullable=False, default=0)
    unit = _enum_column(Unit, nullable=False)
    storage_location = Column(String, nullable=False)
    status = _enum_column(ItemStatus, nullable=False, default=ItemStatus.AVAILABLE)

    # Exclusive 1:0..1 binding to a picture blob.
    asset_id = Column(Uuid(as_uuid=True), ForeignKey("blobs.id"), nullable=True, unique=True)
    low_stock_notified = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def to_schema(self):
        """Convert InventoryItem model to schema dictionary format"""
        return {
            "id": self.id,
            "item_name": self.item_name,
            "item_type": self.item_type.value,
            "quantity": float(self.quantity),
            "unit": self.unit.value,
            "storage_location": self.storage_location,
            "status": self.status.value,
            "asset_id": self.asset_id,
            "low_stock_notified": bool(self.low_stock_notified),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
