# backend/resumefind/models/__init__.py
from resumefind.models.resume import ResumeRow

__all__ = [
    "ResumeRow",
]
