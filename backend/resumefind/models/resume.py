# Purpose: Resume metadata rows for the SQL record store.
from __future__ import annotations
from sqlalchemy import Column, Text, BigInteger, Boolean
from sqlalchemy.dialects.postgresql import JSONB
from resumefind.db.base import Base


class ResumeRow(Base):
    __tablename__ = "resumes"

    id = Column(Text, primary_key=True)

    # Denormalized columns for listing/sorting; `document` is the source of truth.
    title = Column(Text, nullable=False, default="")
    role = Column(Text, nullable=False, default="")
    is_public = Column(Boolean, nullable=False, default=False)

    document = Column(JSONB, nullable=False)

    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)
