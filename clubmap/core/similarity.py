"""
Advisory duplicate detection run at intake time against published clubs.

Scoring is a weighted Jaccard similarity of character bigrams over the
normalized name and school. Character bigrams work for CJK names, which have
no word boundaries to tokenize on.
"""

import unicodedata
from typing import Callable, Iterable, List, Optional, Set

from . import config, dao
from .schema import ClubPayload, DuplicateCheckResult, DuplicateMatch, PublishedRecord
from util.logging import logger

NAME_WEIGHT = 0.7
SCHOOL_WEIGHT = 0.3


def normalize(text: str) -> str:
    """NFKC, casefold, and drop whitespace, punctuation and symbols."""
    text = unicodedata.normalize("NFKC", text or "").casefold()
    return "".join(ch for ch in text if unicodedata.category(ch)[0] in ("L", "N"))


def bigrams(text: str) -> Set[str]:
    norm = normalize(text)
    if len(norm) < 2:
        return {norm} if norm else set()
    return {norm[i:i + 2] for i in range(len(norm) - 1)}


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


def score(payload: ClubPayload, record: PublishedRecord) -> float:
    name_sim = jaccard(bigrams(payload.name), bigrams(record.payload.name))
    school_sim = jaccard(bigrams(payload.school), bigrams(record.payload.school))
    return round(NAME_WEIGHT * name_sim + SCHOOL_WEIGHT * school_sim, 4)


class DuplicateChecker:
    """Compare a candidate payload with currently published clubs.

    Never raises: any failure (store down, corrupt rows) yields a permissive
    result flagged ``degraded`` and a warning in the log.
    """

    def __init__(self, load_records: Optional[Callable[[int], Iterable[PublishedRecord]]] = None):
        self._load_records = load_records or (lambda limit: dao.list_published_records(limit=limit))

    def check(self, payload: ClubPayload, exclude_record_id: Optional[str] = None) -> DuplicateCheckResult:
        try:
            result = self._check(payload, exclude_record_id)
        except Exception as e:
            logger.log_duplicate_check(payload.name, True, 0, degraded=True, error=str(e))
            return DuplicateCheckResult.permissive()

        logger.log_duplicate_check(payload.name, result.passed, len(result.matches))
        return result

    def _check(self, payload: ClubPayload, exclude_record_id: Optional[str]) -> DuplicateCheckResult:
        matches: List[DuplicateMatch] = []
        for record in self._load_records(config.DUPLICATE_SCAN_LIMIT):
            if record.id == exclude_record_id:
                continue
            s = score(payload, record)
            if s >= config.DUPLICATE_MATCH_FLOOR:
                matches.append(DuplicateMatch(
                    record_id=record.id,
                    name=record.payload.name,
                    school=record.payload.school,
                    score=s,
                ))

        matches.sort(key=lambda m: (-m.score, m.record_id))
        passed = not any(m.score >= config.DUPLICATE_THRESHOLD for m in matches)
        return DuplicateCheckResult(passed=passed, matches=matches[:config.DUPLICATE_MAX_MATCHES])


# Global checker instance
duplicate_checker = DuplicateChecker()
