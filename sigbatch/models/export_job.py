from sqlalchemy import Column, String, Integer, DateTime, JSON, Text, func
from sigbatch.db import Base


class ExportJob(Base):
    __tablename__ = "export_jobs"
    job_id = Column(String(32), primary_key=True)  # secrets.token_hex(16)
    owner_id = Column(Integer, nullable=False, index=True)
    requester_id = Column(Integer, nullable=False, index=True)
    total_items = Column(Integer, nullable=False, default=0)
    chunk_size = Column(Integer, nullable=False)
    chunks_total = Column(Integer, nullable=False, default=0)
    chunks_done = Column(Integer, nullable=False, default=0)
    items_done = Column(Integer, nullable=False, default=0)
    snapshot_max_id = Column(Integer, nullable=True)
    # Keyset cursor: last (created_at, id) written to a partial artifact
    last_created_at = Column(DateTime, nullable=True)
    last_id = Column(Integer, nullable=True)
    status = Column(String(16), nullable=False, default="pending", index=True)  # pending|processing|completed|failed
    partial_artifacts = Column(JSON, nullable=False, default=list)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)
    updated_at = Column(DateTime, nullable=False, server_default=func.now())
