"""
Input validation and sanitization for meme service payloads.

Validators return (is_valid, error_message); error_message is None if valid.
"""

import html
import re
from typing import List, Optional, Tuple

from meme_service.errors import InvalidInput

VOTE_TYPES = ("up", "down")

MAX_CAPTION_LENGTH = 100
MAX_COMMENT_LENGTH = 140
MAX_FLAG_REASON_LENGTH = 200
MAX_TAGS = 5
MAX_TAG_LENGTH = 20
MIN_FONT_SIZE = 10
MAX_FONT_SIZE = 100
DEFAULT_FONT_SIZE = 40
DEFAULT_FONT_COLOR = "#FFFFFF"

FONT_COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")


def sanitize_text(text: Optional[str], max_length: Optional[int] = None) -> str:
    """
    Strip whitespace and HTML escape user input.

    Args:
        text: Input text to sanitize.
        max_length: Optional maximum length to truncate to before escaping.

    Returns:
        Sanitized text, empty string for None/blank input.
    """
    if not text:
        return ""
    text = str(text).strip()
    if max_length:
        text = text[:max_length]
    return html.escape(text)


def validate_caption(text: Optional[str], field: str = "Caption") -> Tuple[bool, Optional[str]]:
    """Captions are optional but bounded."""
    if text is None:
        return True, None
    if not isinstance(text, str):
        return False, f"{field} must be a string"
    if len(text.strip()) > MAX_CAPTION_LENGTH:
        return False, f"{field} must not exceed {MAX_CAPTION_LENGTH} characters"
    return True, None


def validate_comment(text: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Validate comment: 1-140 chars."""
    if not text or not isinstance(text, str) or len(text.strip()) < 1:
        return False, "Comment cannot be empty"
    if len(text.strip()) > MAX_COMMENT_LENGTH:
        return False, f"Comment must be {MAX_COMMENT_LENGTH} characters or less"
    return True, None


def validate_flag_reason(reason: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Validate flag reason: 1-200 chars."""
    if not reason or not isinstance(reason, str) or len(reason.strip()) < 1:
        return False, "A reason is required to flag a meme"
    if len(reason.strip()) > MAX_FLAG_REASON_LENGTH:
        return False, f"Reason must not exceed {MAX_FLAG_REASON_LENGTH} characters"
    return True, None


def validate_vote_type(vote_type) -> Tuple[bool, Optional[str]]:
    if vote_type not in VOTE_TYPES:
        return False, "Invalid vote type"
    return True, None


def validate_font_size(font_size) -> Tuple[bool, Optional[str]]:
    try:
        font_size = int(font_size)
    except (TypeError, ValueError):
        return False, "Font size must be a valid integer"
    if font_size < MIN_FONT_SIZE or font_size > MAX_FONT_SIZE:
        return False, f"Font size must be between {MIN_FONT_SIZE} and {MAX_FONT_SIZE}"
    return True, None


def validate_font_color(font_color) -> Tuple[bool, Optional[str]]:
    if not isinstance(font_color, str) or not FONT_COLOR_PATTERN.match(font_color):
        return False, "Font color must be a hex color like #FFFFFF"
    return True, None


def normalize_tags(raw) -> List[str]:
    """
    Turn a comma separated string (or a list) into lowercase unique tags.

    Order of first appearance is kept; blank entries are dropped.
    Raises InvalidInput for anything that is not text.
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)) or not all(isinstance(tag, str) for tag in raw):
        raise InvalidInput("Tags must be a comma separated string or a list of strings")
    tags = []
    for tag in raw:
        tag = tag.strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def validate_tags(tags: List[str]) -> Tuple[bool, Optional[str]]:
    if len(tags) > MAX_TAGS:
        return False, f"A meme can have at most {MAX_TAGS} tags"
    for tag in tags:
        if len(tag) > MAX_TAG_LENGTH:
            return False, f"Tags must not exceed {MAX_TAG_LENGTH} characters"
    return True, None


def parse_bool(value) -> bool:
    """Form fields arrive as strings; JSON bodies as booleans."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def validate_search_query(query):
    """Validate search query: 1-100 chars."""
    if not query or len(query.strip()) < 1:
        return False, "Search query is required"
    if len(query) > 100:
        return False, "Search query must not exceed 100 characters"
    return True, None
