"""
Mail Log Model

One append-only row per attempted dispatch item.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func
from ..db import Base


class MailLog(Base):
    __tablename__ = "mail_logs"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, default=func.now(), nullable=False, index=True)
    signature_id = Column(Integer, nullable=False, index=True)
    recipient = Column(String(255), nullable=False, default="")
    status = Column(String(16), nullable=False)  # success|error
    message = Column(Text, nullable=True)
    run_id = Column(String(32), nullable=True, index=True)  # groups the rows of one dispatch run
    requester_id = Column(Integer, nullable=True)
