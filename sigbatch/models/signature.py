from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, func
from sigbatch.db import Base


class Signature(Base):
    __tablename__ = "user_signatures"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(128), nullable=False, default="")
    role = Column(String(128), nullable=False, default="")
    email = Column(String(255), nullable=False, default="")
    phone = Column(String(64), nullable=False, default="")
    template = Column(String(128), nullable=False, default="signature_default.html")
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    # Chunk pagination walks (created_at, id) per owner
    __table_args__ = (Index("ix_user_signatures_owner_order", "user_id", "created_at", "id"),)

    def fields(self) -> dict:
        """Placeholder values for template rendering"""
        return {
            "NAME": self.name or "",
            "ROLE": self.role or "",
            "EMAIL": self.email or "",
            "PHONE": self.phone or "",
        }
