# backend/models/log.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, func
from sqlalchemy.orm import relationship
from database import Base

# Audit trail of stock-affecting actions and dead-letter events
class Log(Base):
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, index=True)

    ts = Column(DateTime, server_default=func.now(), index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    # e.g. STOCK_ADJUSTMENT, MOVEMENT_REVERSE, STOCK_RESERVE, DEAD_LETTER
    action = Column(String(50), index=True)
    resource = Column(String(50), index=True)
    status = Column(String(20), index=True)
    ip = Column(String(64), nullable=True)

    # Free-form context (ids, quantities, error text)
    meta = Column(JSON, nullable=True)

    user = relationship("User", lazy="joined", uselist=False)
