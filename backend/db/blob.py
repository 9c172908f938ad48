import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, LargeBinary, String, Uuid
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Blob(Base):
    """Stored picture metadata. The bytes live in ordered BlobChunk rows."""
    __tablename__ = "blobs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    filename = Column(String(255), nullable=False)
    mime_type = Column(String(255), nullable=False)
    size_bytes = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    chunks = relationship(
        "BlobChunk",
        back_populates="blob",
        cascade="all, delete-orphan",
        order_by="BlobChunk.seq",
    )

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "filename": self.filename,
            "mime_type": self.mime_type,
            "size_bytes": int(self.size_bytes or 0),
            "created_at": self.created_at,
        }


class BlobChunk(Base):
    __tablename__ = "blob_chunks"

    blob_id = Column(Uuid(as_uuid=True), ForeignKey("blobs.id", ondelete="CASCADE"), primary_key=True)
    seq = Column(Integer, primary_key=True)
    data = Column(LargeBinary, nullable=False)

    blob = relationship("Blob", back_populates="chunks")
