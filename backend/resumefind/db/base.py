# path: backend/resumefind/db/base.py
# Purpose: SQLAlchemy declarative base shared by the SQL record store models.
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
