import logging
import re
from typing import Iterable, List, Set

logger = logging.getLogger(__name__)

MIN_KEYWORD_LENGTH = 3  # words must be longer than 2 characters

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WORD_RE = re.compile(r"\w+")


class TextMatcher:
    """
    Text helpers behind feedback matching: punctuation stripping, full-text
    matching, keyword extraction and keyword-overlap scoring.
    """

    @staticmethod
    def strip_punctuation(text: str) -> str:
        """
        Remove every character that is neither a word character nor whitespace.

        :param text: Raw user message
        :return: Message without punctuation
        """
        if not text:
            return ""
        return _PUNCTUATION_RE.sub("", text)

    @staticmethod
    def search_terms(text: str) -> List[str]:
        """
        Lowercase word terms of a full-text query, after punctuation stripping.

        :param text: Raw user message
        :return: Ordered list of distinct terms
        """
        terms = []
        for word in _WORD_RE.findall(TextMatcher.strip_punctuation(text).lower()):
            if word not in terms:
                terms.append(word)
        return terms

    @staticmethod
    def matches_full_text(terms: List[str], document: str) -> bool:
        """
        Full-text match with AND semantics: every term must occur as a word of
        the document. An empty term list matches nothing.
        """
        if not terms or not document:
            return False
        document_words = set(_WORD_RE.findall(document.lower()))
        return all(term in document_words for term in terms)

    @staticmethod
    def like_pattern(needle: str) -> str:
        """
        LIKE/ILIKE pattern matching ``needle`` anywhere, with wildcards escaped.

        Use with ``escape="\\\\"``; ``%`` and ``_`` in the needle match literally.
        """
        escaped = needle.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return f"%{escaped}%"

    @staticmethod
    def extract_keywords(text: str) -> Set[str]:
        """
        Split on whitespace, lowercase, and keep words longer than 2 characters.

        Punctuation attached to a word is kept, matching how keywords were
        recorded when the feedback was reviewed.
        """
        if not text:
            return set()
        return {word for word in text.lower().split() if len(word) >= MIN_KEYWORD_LENGTH}

    @staticmethod
    def normalize_keywords(keywords: Iterable[str]) -> Set[str]:
        """Lowercase a stored keyword list into a set, skipping empty entries"""
        if not keywords:
            return set()
        return {str(keyword).lower() for keyword in keywords if keyword}

    @staticmethod
    def overlap_score(tokens: Set[str], keywords: Set[str]) -> float:
        """
        Keyword overlap score in [0, 1].

        score = |tokens ∩ keywords| / max(|tokens|, |keywords|)

        :param tokens: Tokens from the incoming message
        :param keywords: Stored similarity keywords of a candidate
        :return: Overlap ratio, 0.0 when either side is empty
        """
        denominator = max(len(tokens), len(keywords))
        if denominator == 0:
            return 0.0
        overlap = len(tokens & keywords)
        score = overlap / denominator
        logger.debug(f"Keyword overlap {overlap}/{denominator} -> score {score:.3f}")
        return score


# Default instance
_default_matcher = TextMatcher()


def extract_keywords(text: str) -> Set[str]:
    """
    Convenience wrapper used when recording new feedback.
    Uses the default TextMatcher instance.

    :param text: User message text
    :return: Set of lowercase keywords
    """
    return _default_matcher.extract_keywords(text)
