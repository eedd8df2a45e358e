# resumefind/services/resumes/file_store.py
"""Local file storage for uploaded resume binaries: <root>/<resume_id>/<filename>."""
from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Optional

logger = logging.getLogger("records.files")

_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,127}$")
_UNSAFE_FILENAME_RE = re.compile(r"[^\w.\- ]")

METADATA_FILENAME = "metadata.json"


def validate_resume_id(resume_id: str) -> str:
    """Ids become directory names, so only a conservative character set is accepted."""
    if not resume_id or not _ID_RE.match(resume_id) or ".." in resume_id:
        raise ValueError(f"Invalid resume id: {resume_id!r}")
    return resume_id


def safe_filename(filename: str) -> str:
    name = Path(filename or "").name
    name = _UNSAFE_FILENAME_RE.sub("_", name).strip()
    if not name or name in (".", "..") or name == METADATA_FILENAME:
        name = "resume.pdf"
    return name


class ResumeFileStore:
    def __init__(self, root: Path):
        self.root = Path(root)

    def resume_dir(self, resume_id: str) -> Path:
        return self.root / validate_resume_id(resume_id)

    def _save_sync(self, resume_id: str, filename: str, data: bytes) -> Path:
        target_dir = self.resume_dir(resume_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / safe_filename(filename)
        path.write_bytes(data)
        logger.info("Stored %s (%d bytes)", path, len(data))
        return path

    async def save(self, resume_id: str, filename: str, data: bytes) -> Path:
        return await asyncio.to_thread(self._save_sync, resume_id, filename, data)

    def path_for(self, resume_id: str, filename: str) -> Optional[Path]:
        try:
            path = self.resume_dir(resume_id) / safe_filename(filename)
        except ValueError:
            return None
        if not path.exists() or not path.is_file():
            return None
        return path
