"""Medical record storage model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from zyncure.database import Base


class Folder(Base):
    """Represents a patient's folder of medical files."""
    __tablename__ = "folders"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class MedicalFile(Base):
    """Represents an uploaded medical file; content lives in object storage."""
    __tablename__ = "medical_files"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    folder_id = Column(Integer, ForeignKey("folders.id"), nullable=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
