from konver.modules.text_matching import (
    TextMatcher,
    MIN_KEYWORD_LENGTH,
    extract_keywords,
)

__all__ = [
    "TextMatcher",
    "MIN_KEYWORD_LENGTH",
    "extract_keywords",
]
