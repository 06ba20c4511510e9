"""Document title/author/abstract used to label history records."""

import os
import re
from typing import Callable, Optional

from pydantic import BaseModel

UNTITLED = "Untitled document"
NO_ABSTRACT = "(no abstract available)"

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


class DocumentInsight(BaseModel):
    title: str
    authors: Optional[str] = None
    abstract_snippet: str = NO_ABSTRACT


InsightProvider = Callable[[str], DocumentInsight]


def derive_document_insight(file_path: str) -> DocumentInsight:
    """Title from the file name. Metadata extraction is plugged in elsewhere."""
    stem = os.path.splitext(os.path.basename(file_path))[0]
    title = re.sub(r"[_\s]+", " ", stem).strip()
    return DocumentInsight(title=title or UNTITLED)


def sanitize_title(title: str, max_length: int = 200) -> str:
    """Make a title usable as a file name stem."""
    cleaned = _INVALID_FILENAME_CHARS.sub("", title)
    cleaned = re.sub(r"\s+", "_", cleaned.strip())
    return cleaned[:max_length] or "untitled"
