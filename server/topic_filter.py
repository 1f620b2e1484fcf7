"""Cheap keyword pre-filter applied before calling the retrieval engine."""

import re
from typing import Iterable, List


class TopicFilter:
    """Matches queries that mention at least one configured keyword or phrase.

    Matching is case-insensitive and on whole words. With no keywords every
    query matches.
    """

    def __init__(self, keywords: Iterable[str] = ()):
        self.keywords: List[str] = [k.strip() for k in keywords if k and k.strip()]
        self._patterns = [
            re.compile(r"\b" + r"\s+".join(map(re.escape, keyword.split())) + r"\b", re.IGNORECASE)
            for keyword in self.keywords
        ]

    def matches(self, query: str) -> bool:
        if not self._patterns:
            return True
        return any(pattern.search(query) for pattern in self._patterns)
