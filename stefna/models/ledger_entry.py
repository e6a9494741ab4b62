from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint

from stefna.db.base import Base


LEDGER_RESERVED = "reserved"
LEDGER_COMPLETED = "completed"
LEDGER_REFUNDED = "refunded"


class LedgerEntry(Base):
    __tablename__ = "credit_ledger"
    __table_args__ = (UniqueConstraint("user_id", "request_id", name="uq_credit_ledger_request"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    request_id = Column(String, nullable=False)
    action = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=LEDGER_RESERVED, index=True)  # reserved, completed, refunded
    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
    finalized_at = Column(DateTime, nullable=True)
