"""
Memory orchestrator for DevMind

Wires pattern extraction to bank persistence and answers queries across
live sessions and stored memory banks.
"""

import logging
from typing import Any, Dict, List, Optional

from bank_store import BankStore, Entity, Relation, UnifiedResult
from config_manager import ConfigManager
from constants import UNIFIED_SESSION_LIMIT
from pattern_extractor import PatternExtractor
from session_scanner import SessionScanner, SessionSearchResult
from unified_search import UnifiedSearch

logger = logging.getLogger(__name__)


class MemoryOrchestrator:
    """
    Single entry point used by the CLI and the socket server.

    Components are built from a ConfigManager unless passed in directly.
    """

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        store: Optional[BankStore] = None,
        scanner: Optional[SessionScanner] = None,
        extractor: Optional[PatternExtractor] = None,
        session_limit: Optional[int] = None
    ):
        self.config = config

        if store is None:
            store = BankStore(config.get_banks() if config else None)
        self.store = store

        if scanner is None:
            if config:
                scanner = SessionScanner(
                    projects_dir=config.get_path('projects_dir'),
                    max_lines_scanned=config.get('search.max_lines_scanned'),
                    max_matches_per_session=config.get('search.max_matches_per_session'),
                    sample_lines=config.get('search.sample_lines'),
                )
            else:
                scanner = SessionScanner()
        self.scanner = scanner

        if extractor is None:
            if config:
                extractor = PatternExtractor(
                    max_content_chars=config.get('extraction.max_content_chars'),
                    quality_threshold=config.get('extraction.quality_threshold'),
                )
            else:
                extractor = PatternExtractor()
        self.extractor = extractor

        if session_limit is None:
            session_limit = config.get('search.session_limit', UNIFIED_SESSION_LIMIT) if config else UNIFIED_SESSION_LIMIT
        self.session_limit = session_limit

        self.search = UnifiedSearch(self.store)

    def _search_sessions(self, query: str) -> List[SessionSearchResult]:
        return self.scanner.search_sessions(query, self.session_limit)

    def initialize(self):
        """Create any missing bank files"""
        self.store.initialize_all_banks()
        logger.info("Memory banks initialized")

    def process_transcript(self, session_id: str, project_id: str, transcript: Any) -> Dict[str, Any]:
        """
        Extract patterns from a transcript and store them in their banks.

        Returns:
            Dict with 'extractedPatterns', 'storedEntities' (bank name -> stored
            entities, only banks that received any) and 'summary'
        """
        patterns = self.extractor.extract_patterns(transcript)
        _, bank_assignments = self.extractor.patterns_to_entities(patterns, session_id, project_id)

        stored: Dict[str, List[Entity]] = {}
        for bank_name, entities in bank_assignments.items():
            if not entities:
                continue
            stored[bank_name] = self.store.create_entities(bank_name, entities)

        total_stored = sum(len(entities) for entities in stored.values())
        summary = (
            f"Processed session {session_id}: Extracted {len(patterns)} patterns, "
            f"stored {total_stored} entities across {len(stored)} memory banks."
        )
        logger.info(summary)

        return {
            'extractedPatterns': [p.to_dict() for p in patterns],
            'storedEntities': {
                bank_name: [e.to_dict() for e in entities]
                for bank_name, entities in stored.items()
            },
            'summary': summary,
        }

    def extract_and_store_patterns(self, session_id: str, project_id: str) -> Dict[str, Any]:
        """Load a session from disk and run it through process_transcript"""
        transcript = self.scanner.load_transcript(session_id)
        return self.process_transcript(session_id, project_id, transcript)

    def query(self, text: str) -> Dict[str, Any]:
        """Natural-language query over sessions and banks, plus bank totals"""
        result = self.search.query_natural_language(text, self._search_sessions)
        return {
            **result.to_dict(),
            'stats': self.search.get_stats(),
        }

    def search_all(self, query: str) -> List[UnifiedResult]:
        return self.search.search_all(query, self._search_sessions)

    def search_bank(self, bank_name: str, query: str) -> List[UnifiedResult]:
        return self.search.search_bank(bank_name, query)

    def list_banks(self) -> List[Dict[str, Any]]:
        return self.store.list_banks()

    def get_bank_info(self, bank_name: str) -> Optional[Dict[str, Any]]:
        return self.store.get_bank_info(bank_name)

    def create_entities(self, bank_name: str, entities: List[Dict[str, Any]]) -> List[Entity]:
        return self.store.create_entities(bank_name, [Entity.from_dict(e) for e in entities])

    def create_relations(self, bank_name: str, relations: List[Dict[str, Any]]) -> List[Relation]:
        return self.store.create_relations(bank_name, [Relation.from_dict(r) for r in relations])

    def add_observations(self, bank_name: str, entity_name: str, observations: List[str]) -> List[str]:
        return self.store.add_observations(bank_name, entity_name, observations)

    def get_flow_stats(self) -> Dict[str, Any]:
        """Session totals alongside memory bank totals"""
        return {
            'sessions': self.scanner.get_stats(),
            'memory': self.search.get_stats(),
        }
