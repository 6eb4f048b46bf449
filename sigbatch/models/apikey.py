from sqlalchemy import Column, String, Integer, DateTime, Boolean, ForeignKey, JSON, func
from sigbatch.db import Base


class ApiKey(Base):
    __tablename__ = "api_keys"
    key_id = Column(String(32), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    hash = Column(String(128), nullable=False, unique=True)   # sha256 of the secret
    scopes = Column(JSON, nullable=False, default=["user"])
    disabled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
