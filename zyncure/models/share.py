"""File share model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from zyncure.database import Base

FILE_SHARE = 'file'
FOLDER_SHARE = 'folder'


class FileShare(Base):
    """Represents a time-bounded grant of a file or folder to another account."""
    __tablename__ = "file_shares"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    shared_with_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    share_type = Column(String, nullable=False)
    resource_id = Column(Integer, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)


class SharedSymptomReport(Base):
    """Represents a time-bounded grant of a generated symptom report PDF."""
    __tablename__ = "shared_symptoms"

    id = Column(Integer, primary_key=True)
    shared_by = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    shared_with = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    symptom = Column(String, nullable=False, default="Complete Symptoms Report")
    symptom_duration = Column(String)
    access_duration = Column(String, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    pdf_filename = Column(String, nullable=False)
    report_url = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)
