"""Lesson text helpers used before generation."""
import math
import re
from typing import Optional, Tuple

MIN_LESSON_LENGTH = 50
WORDS_PER_MINUTE = 200

_BLANK_LINES_PATTERN = re.compile(r'\n\s*\n')
_INLINE_SPACE_PATTERN = re.compile(r'[^\S\n]+')


def clean_lesson_text(text: str) -> str:
    """Collapse runs of spaces and blank lines while keeping paragraph breaks."""
    text = (text or '').replace('\r\n', '\n')
    text = _BLANK_LINES_PATTERN.sub('\n\n', text)
    text = _INLINE_SPACE_PATTERN.sub(' ', text)
    return '\n'.join(line.strip() for line in text.split('\n')).strip()


def validate_lesson_text(text: Optional[str], min_length: int = MIN_LESSON_LENGTH) -> Tuple[bool, Optional[str]]:
    """Return (is_valid, error_message) for user-supplied lesson text."""
    if not text or not text.strip():
        return False, 'Text is empty'
    if len(text) < min_length:
        return False, f'Text is too short (minimum {min_length} characters)'
    return True, None


def extract_summary(text: str, max_length: int = 200) -> str:
    """First ``max_length`` characters of the cleaned text."""
    cleaned = clean_lesson_text(text)
    if len(cleaned) <= max_length:
        return cleaned
    return cleaned[:max_length] + '...'


def count_words(text: str) -> int:
    return len((text or '').split())


def estimate_reading_time(text: str) -> int:
    """Reading time in whole minutes at 200 words per minute."""
    return math.ceil(count_words(text) / WORDS_PER_MINUTE)
