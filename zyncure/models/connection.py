"""Connection request model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from zyncure.database import Base

PENDING = 'pending'
ACCEPTED = 'accepted'
REJECTED = 'rejected'

# A request in one of these states blocks a new request for the same pair.
OPEN_STATUSES = (PENDING, ACCEPTED)


class Connection(Base):
    """Represents a directional connection request between a patient and a doctor."""
    __tablename__ = "connections"

    id = Column(Integer, primary_key=True)
    requester_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    requester_type = Column(String, nullable=False)
    target_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    target_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=PENDING)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)

    def other_party(self, user_id: str) -> str:
        return self.target_id if self.requester_id == user_id else self.requester_id
