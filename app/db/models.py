# app/db/models.py
from sqlalchemy.orm import declarative_base
from sqlalchemy import Boolean, Column, Integer, String, DateTime, Text, Float

Base = declarative_base()

class IfMemoryEvent(Base):
    __tablename__ = "if_memory_events"
    id = Column(Integer, primary_key=True)
    memory_id = Column(String(128), index=True)
    memory_name = Column(String(255))
    status = Column(String(32), index=True)         # output | skipped_resolution | ...
    branch_order = Column(Integer, nullable=True)   # NULL = ELSE (default_value)
    branch_name = Column(String(255), nullable=True)
    value = Column(Float, nullable=True)            # NULL = цикл пропущен
    committed = Column(Boolean, default=False)
    error = Column(Text, nullable=True)
    ts = Column(DateTime(timezone=True), index=True)
