"""
Unified search for DevMind

Merges live session hits and stored memory bank hits into one ranking and
answers natural-language questions over both.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from bank_store import BankStore, ResultContext, UnifiedResult
from constants import (
    SESSION_BOOST,
    BANK_HIGH_RELEVANCE_THRESHOLD,
    BANK_HIGH_RELEVANCE_BOOST,
    RECENT_DAYS,
    RECENT_BOOST,
    SEMI_RECENT_DAYS,
    SEMI_RECENT_BOOST,
    EXACT_MATCH_BOOST,
    STOP_WORDS,
    MAX_KEY_TERMS,
    RELATED_PER_TERM,
    MAX_DIRECT_MATCHES,
    MAX_RELATED_INSIGHTS,
)
from session_scanner import SessionSearchResult
from timestamp_utils import parse_timestamp, to_iso, utc_now

logger = logging.getLogger(__name__)

SessionSearchFn = Callable[[str], List[SessionSearchResult]]

SECONDS_PER_DAY = 60 * 60 * 24

RECOMMEND_BROADEN = (
    "No direct matches found. Try broader search terms or check if patterns "
    "have been extracted from recent sessions."
)
RECOMMEND_EXTRACT = (
    "Most matches from recent sessions. Consider extracting patterns to build "
    "persistent memory."
)
RECOMMEND_DOCUMENTED = (
    "Strong matches in stored memory banks. Your development patterns are well documented!"
)
RECOMMEND_CROSS_PROJECT = (
    "Found multiple related insights. Consider exploring cross-project patterns "
    "for deeper understanding."
)


@dataclass
class QueryResult:
    """Answer to a natural-language query"""
    direct_matches: List[UnifiedResult] = field(default_factory=list)
    related_insights: List[UnifiedResult] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'directMatches': [r.to_dict() for r in self.direct_matches],
            'relatedInsights': [r.to_dict() for r in self.related_insights],
            'recommendations': list(self.recommendations),
        }


def extract_key_terms(query: str) -> List[str]:
    """Lowercased words longer than two characters that are not stop words, at most five"""
    terms = [
        word for word in query.lower().split()
        if len(word) > 2 and word not in STOP_WORDS
    ]
    return terms[:MAX_KEY_TERMS]


def calculate_final_score(result: UnifiedResult, query: str, now: Optional[datetime] = None) -> float:
    """
    Ranking key for a result. Multiplicative boosts:

    - session source: x1.1
    - memory bank source with relevance above 8: x1.15
    - age <= 30 days: x1.2, else age <= 90 days: x1.1
    - content contains the query (case-insensitive): x1.3
    """
    score = float(result.relevance_score)

    if result.source == 'session':
        score *= SESSION_BOOST

    if result.source == 'memory_bank' and result.relevance_score > BANK_HIGH_RELEVANCE_THRESHOLD:
        score *= BANK_HIGH_RELEVANCE_BOOST

    timestamp = parse_timestamp(result.context.timestamp)
    if timestamp is not None:
        now = now or utc_now()
        age_days = (now - timestamp).total_seconds() / SECONDS_PER_DAY
        if age_days <= RECENT_DAYS:
            score *= RECENT_BOOST
        elif age_days <= SEMI_RECENT_DAYS:
            score *= SEMI_RECENT_BOOST

    if query.lower() in result.content.lower():
        score *= EXACT_MATCH_BOOST

    return score


def rank_results(results: List[UnifiedResult], query: str, now: Optional[datetime] = None) -> List[UnifiedResult]:
    """Sort by final score, highest first; the score itself is not kept"""
    now = now or utc_now()
    scored = [(calculate_final_score(r, query, now), r) for r in results]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [r for _, r in scored]


def generate_recommendations(direct_matches: List[UnifiedResult],
                             related_insights: List[UnifiedResult]) -> List[str]:
    """Advisory hints about where the answers came from"""
    recommendations = []

    if not direct_matches:
        recommendations.append(RECOMMEND_BROADEN)
    else:
        session_sources = sum(1 for r in direct_matches if r.source == 'session')
        bank_sources = sum(1 for r in direct_matches if r.source == 'memory_bank')

        if session_sources > bank_sources:
            recommendations.append(RECOMMEND_EXTRACT)
        if bank_sources > session_sources:
            recommendations.append(RECOMMEND_DOCUMENTED)

    if len(related_insights) > 3:
        recommendations.append(RECOMMEND_CROSS_PROJECT)

    return recommendations


class UnifiedSearch:
    """
    Searches sessions AND memory banks.

    Session search is supplied by the caller as a callable so the ranker
    stays independent of where transcripts live.
    """

    def __init__(self, store: BankStore):
        self.store = store

    def _session_results(self, query: str, session_search_fn: SessionSearchFn) -> List[UnifiedResult]:
        results = []
        for hit in session_search_fn(query):
            timestamp = hit.timestamp if isinstance(hit.timestamp, str) else to_iso(hit.timestamp)
            results.append(UnifiedResult(
                source='session',
                content=' | '.join(hit.matched_content),
                relevance_score=hit.relevance,
                context=ResultContext(
                    project_id=hit.project_id,
                    session_id=hit.session_id,
                    timestamp=timestamp,
                ),
            ))
        return results

    def search_all(self, query: str, session_search_fn: SessionSearchFn,
                   now: Optional[datetime] = None) -> List[UnifiedResult]:
        """Session hits plus bank hits, ranked together"""
        session_results = self._session_results(query, session_search_fn)
        bank_results = self.store.search_all_banks(query)
        logger.debug("Query %r: %d session hits, %d bank hits",
                     query, len(session_results), len(bank_results))
        return rank_results(session_results + bank_results, query, now)

    def search_bank(self, bank_name: str, query: str) -> List[UnifiedResult]:
        return self.store.search_bank(bank_name, query)

    def query_natural_language(self, text: str, session_search_fn: SessionSearchFn,
                               now: Optional[datetime] = None) -> QueryResult:
        """
        Answer a free-text question.

        Direct matches search the whole text; related insights are the top
        hits for each key term, minus anything already in the direct matches.
        """
        key_terms = extract_key_terms(text)
        direct_matches = self.search_all(text, session_search_fn, now)

        related = []
        for term in key_terms:
            related.extend(self.search_all(term, session_search_fn, now)[:RELATED_PER_TERM])

        direct_keys = {(r.content, r.context.session_id) for r in direct_matches}
        unique_related = [
            r for r in related
            if (r.content, r.context.session_id) not in direct_keys
        ]

        return QueryResult(
            direct_matches=direct_matches[:MAX_DIRECT_MATCHES],
            related_insights=unique_related[:MAX_RELATED_INSIGHTS],
            recommendations=generate_recommendations(direct_matches, unique_related),
        )

    def get_stats(self) -> Dict[str, Any]:
        """Totals across every memory bank"""
        banks = self.store.list_banks()
        return {
            'totalBanks': len(banks),
            'totalEntities': sum(b['entityCount'] for b in banks),
            'totalRelations': sum(b['relationCount'] for b in banks),
            'bankStats': [
                {
                    'name': b['name'],
                    'entities': b['entityCount'],
                    'relations': b['relationCount'],
                    'description': b['description'],
                }
                for b in banks
            ],
        }
