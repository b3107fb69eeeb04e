"""Stored-name derivation for uploaded evidence files.

    derive_stored_name("H1.01.02.01", "Báo cáo", "report.pdf")
    -> "H1.01.02.01-Báo cáo.pdf"

Pure: no I/O, no randomness. Whether the derived name already exists on
disk is the file service's concern; it refuses to overwrite.
"""

import os
import re

MAX_STORED_NAME_LENGTH = 255

_RESERVED_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE_RE = re.compile(r"\s+")


def file_extension(original_name: str) -> str:
    """Extension of *original_name* including the leading dot, '' when none."""
    return os.path.splitext(os.path.basename(original_name or ""))[1]


def _clean(text: str) -> str:
    text = _RESERVED_CHARS_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def derive_stored_name(evidence_code: str, evidence_name: str, original_name: str) -> str:
    """Return ``"{code}-{name}{ext}"`` made safe for common filesystems.

    Reserved characters ``< > : " / \\ | ? *`` are removed, whitespace runs
    collapse to one space and the result is trimmed. When longer than 255
    characters the name part is truncated; the extension is never cut.
    """
    ext = _clean(file_extension(original_name))
    stored_name = _clean(f"{evidence_code}-{evidence_name}{ext}")

    if len(stored_name) > MAX_STORED_NAME_LENGTH:
        stem = stored_name[: len(stored_name) - len(ext)] if ext else stored_name
        stem = stem[: MAX_STORED_NAME_LENGTH - len(ext)].rstrip()
        stored_name = stem + ext

    return stored_name
