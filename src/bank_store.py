"""
Memory bank storage for DevMind

Each bank is one JSONL file holding a small knowledge graph: one JSON
object per line, tagged "entity" or "relation" plus the owning bank name.
Every operation reloads the file, mutates in memory and rewrites it whole.
"""

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from constants import (
    DEFAULT_BANKS,
    NAME_MATCH_SCORE,
    TYPE_MATCH_SCORE,
    OBSERVATION_MATCH_SCORE,
)
from timestamp_utils import to_iso

logger = logging.getLogger(__name__)


class BankStoreError(Exception):
    """Base error for bank store operations"""


class BankNotFoundError(BankStoreError):
    """Raised for a bank name that is not configured"""

    def __init__(self, bank_name: str):
        super().__init__(f"Memory bank '{bank_name}' not found")
        self.bank_name = bank_name


class EntityNotFoundError(BankStoreError):
    """Raised when an entity name does not exist in a bank"""

    def __init__(self, bank_name: str, entity_name: str):
        super().__init__(f"Entity '{entity_name}' not found in bank '{bank_name}'")
        self.bank_name = bank_name
        self.entity_name = entity_name


# attribute name -> key used on disk
_ENTITY_KEYS = {
    'name': 'name',
    'entity_type': 'entityType',
    'observations': 'observations',
    'memory_bank': 'memoryBank',
    'project_id': 'projectId',
    'session_id': 'sessionId',
    'created_at': 'createdAt',
    'extracted_from': 'extractedFrom',
    'confidence_score': 'confidenceScore',
}

_RELATION_KEYS = {
    'from_entity': 'from',
    'to_entity': 'to',
    'relation_type': 'relationType',
    'memory_bank': 'memoryBank',
    'from_bank': 'fromBank',
    'to_bank': 'toBank',
    'project_context': 'projectContext',
    'created_at': 'createdAt',
    'strength': 'strength',
}


def _to_record(obj: Any, keys: Dict[str, str]) -> Dict[str, Any]:
    record = dict(obj.metadata)
    for attr, key in keys.items():
        value = getattr(obj, attr)
        if value is not None:
            record[key] = value
    return record


def _from_record(data: Dict[str, Any], keys: Dict[str, str]) -> Dict[str, Any]:
    known = set(keys.values()) | {'type'}
    kwargs = {attr: data[key] for attr, key in keys.items() if key in data}
    kwargs['metadata'] = {k: v for k, v in data.items() if k not in known}
    return kwargs


def _require_str(obj: Any, attrs: Dict[str, str]):
    for attr, key in attrs.items():
        if not isinstance(getattr(obj, attr), str):
            raise TypeError(f"'{key}' must be a string, got {type(getattr(obj, attr)).__name__}")


@dataclass
class Entity:
    """A named knowledge unit with append-only observations"""
    name: str
    entity_type: str
    observations: List[str] = field(default_factory=list)
    memory_bank: Optional[str] = None
    project_id: Optional[str] = None
    session_id: Optional[str] = None
    created_at: Optional[str] = None
    extracted_from: Optional[str] = None
    confidence_score: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)  # unrecognised keys, kept round-trip

    def __post_init__(self):
        _require_str(self, {'name': 'name', 'entity_type': 'entityType'})

    def to_dict(self) -> Dict[str, Any]:
        return _to_record(self, _ENTITY_KEYS)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Entity':
        kwargs = _from_record(data, _ENTITY_KEYS)
        if 'name' not in kwargs or 'entity_type' not in kwargs:
            raise KeyError("entity record requires 'name' and 'entityType'")
        observations = kwargs.get('observations') or []
        if not isinstance(observations, list):
            raise TypeError("entity observations must be a list")
        kwargs['observations'] = [str(o) for o in observations]
        return cls(**kwargs)


@dataclass
class Relation:
    """Directed, typed edge between two entity names"""
    from_entity: str
    to_entity: str
    relation_type: str
    memory_bank: Optional[str] = None
    from_bank: Optional[str] = None
    to_bank: Optional[str] = None
    project_context: Optional[str] = None
    created_at: Optional[str] = None
    strength: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        _require_str(self, {'from_entity': 'from', 'to_entity': 'to', 'relation_type': 'relationType'})

    @property
    def key(self) -> tuple:
        return (self.from_entity, self.to_entity, self.relation_type)

    def to_dict(self) -> Dict[str, Any]:
        return _to_record(self, _RELATION_KEYS)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Relation':
        kwargs = _from_record(data, _RELATION_KEYS)
        for attr in ('from_entity', 'to_entity', 'relation_type'):
            if attr not in kwargs:
                raise KeyError(f"relation record requires '{_RELATION_KEYS[attr]}'")
        return cls(**kwargs)


@dataclass
class KnowledgeGraph:
    """Entities and relations of one bank"""
    entities: List[Entity] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)

    def find_entity(self, name: str) -> Optional[Entity]:
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entities': [e.to_dict() for e in self.entities],
            'relations': [r.to_dict() for r in self.relations],
        }


@dataclass
class MemoryBank:
    """Named, file-backed partition of the knowledge graph"""
    name: str
    file_path: Path
    description: str = ""
    entity_types: List[str] = field(default_factory=list)  # advisory only


@dataclass
class ResultContext:
    """Where a search result came from"""
    project_id: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        if self.project_id is not None:
            result['projectId'] = self.project_id
        if self.session_id is not None:
            result['sessionId'] = self.session_id
        if self.timestamp is not None:
            result['timestamp'] = self.timestamp
        return result


@dataclass
class UnifiedResult:
    """A search hit from either a session transcript or a memory bank"""
    source: str  # session, memory_bank
    content: str
    relevance_score: float
    context: ResultContext = field(default_factory=ResultContext)
    bank_name: Optional[str] = None
    entity_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'source': self.source}
        if self.bank_name is not None:
            result['bankName'] = self.bank_name
        if self.entity_name is not None:
            result['entityName'] = self.entity_name
        result['content'] = self.content
        result['relevanceScore'] = self.relevance_score
        result['context'] = self.context.to_dict()
        return result


class BankStore:
    """
    Manages the configured set of memory banks.

    The bank set is fixed at construction. Writes to one bank are serialised
    with a per-bank lock; different banks never block each other.
    """

    def __init__(self, config: Optional[Dict[str, Dict[str, Any]]] = None):
        bank_config = config if config is not None else DEFAULT_BANKS

        self.banks: Dict[str, MemoryBank] = {}
        for bank_name, settings in bank_config.items():
            self.banks[bank_name] = MemoryBank(
                name=bank_name,
                file_path=Path(settings['filePath']).expanduser(),
                description=settings.get('description', ''),
                entity_types=list(settings.get('entityTypes', [])),
            )

        self._locks = {name: threading.RLock() for name in self.banks}

    def _get_bank(self, bank_name: str) -> MemoryBank:
        bank = self.banks.get(bank_name)
        if bank is None:
            raise BankNotFoundError(bank_name)
        return bank

    @contextmanager
    def _bank_lock(self, bank_name: str) -> Iterator[MemoryBank]:
        bank = self._get_bank(bank_name)
        with self._locks[bank_name]:
            yield bank

    def _read_graph(self, bank: MemoryBank) -> KnowledgeGraph:
        graph = KnowledgeGraph()
        try:
            with open(bank.file_path, 'r', encoding='utf-8') as f:
                lines = f.read().split('\n')
        except FileNotFoundError:
            return graph

        for line_no, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                item = json.loads(line)
                if item.get('type') == 'entity':
                    graph.entities.append(Entity.from_dict(item))
                elif item.get('type') == 'relation':
                    graph.relations.append(Relation.from_dict(item))
            except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
                logger.warning("Skipping malformed line %d in bank %s: %s", line_no, bank.name, e)

        return graph

    def _write_graph(self, bank: MemoryBank, graph: KnowledgeGraph):
        lines = []
        for entity in graph.entities:
            lines.append(json.dumps({'type': 'entity', **entity.to_dict(), 'memoryBank': bank.name}))
        for relation in graph.relations:
            lines.append(json.dumps({'type': 'relation', **relation.to_dict(), 'memoryBank': bank.name}))

        bank.file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(bank.file_path, 'w', encoding='utf-8') as f:
            f.write('\n'.join(lines))

    def load_graph(self, bank_name: str) -> KnowledgeGraph:
        """Load a bank's graph from disk; a missing file is an empty graph"""
        with self._bank_lock(bank_name) as bank:
            return self._read_graph(bank)

    def save_graph(self, bank_name: str, graph: KnowledgeGraph):
        """Overwrite a bank's file with the given graph"""
        with self._bank_lock(bank_name) as bank:
            self._write_graph(bank, graph)

    def create_entities(self, bank_name: str, entities: List[Entity]) -> List[Entity]:
        """
        Store entities whose names are new to the bank.
        Returns only the entities that were actually stored.
        """
        with self._bank_lock(bank_name) as bank:
            graph = self._read_graph(bank)
            timestamp = to_iso()
            existing = {e.name for e in graph.entities}

            new_entities = []
            for entity in entities:
                if entity.name in existing:
                    continue
                existing.add(entity.name)
                new_entities.append(replace(
                    entity,
                    observations=list(entity.observations),
                    created_at=timestamp,
                    memory_bank=bank_name,
                ))

            graph.entities.extend(new_entities)
            self._write_graph(bank, graph)

        logger.debug("Stored %d/%d entities in %s", len(new_entities), len(entities), bank_name)
        return new_entities

    def create_relations(self, bank_name: str, relations: List[Relation]) -> List[Relation]:
        """Store relations whose (from, to, relationType) triple is new to the bank"""
        with self._bank_lock(bank_name) as bank:
            graph = self._read_graph(bank)
            timestamp = to_iso()
            existing = {r.key for r in graph.relations}

            new_relations = []
            for relation in relations:
                if relation.key in existing:
                    continue
                existing.add(relation.key)
                new_relations.append(replace(relation, created_at=timestamp, memory_bank=bank_name))

            graph.relations.extend(new_relations)
            self._write_graph(bank, graph)

        logger.debug("Stored %d/%d relations in %s", len(new_relations), len(relations), bank_name)
        return new_relations

    def add_observations(self, bank_name: str, entity_name: str, observations: List[str]) -> List[str]:
        """Append observations not already present on the entity"""
        with self._bank_lock(bank_name) as bank:
            graph = self._read_graph(bank)
            entity = graph.find_entity(entity_name)
            if entity is None:
                raise EntityNotFoundError(bank_name, entity_name)

            new_observations = []
            for observation in observations:
                if observation not in entity.observations:
                    entity.observations.append(observation)
                    new_observations.append(observation)

            self._write_graph(bank, graph)

        return new_observations

    def search_bank(self, bank_name: str, query: str) -> List[UnifiedResult]:
        """
        Case-insensitive substring search over one bank.

        Scoring: name match +10, type match +5, each matching observation +3.
        """
        graph = self.load_graph(bank_name)
        query_lower = query.lower()
        results = []

        for entity in graph.entities:
            score = 0
            matched = []

            if query_lower in entity.name.lower():
                score += NAME_MATCH_SCORE
                matched.append(f"Name: {entity.name}")

            if query_lower in entity.entity_type.lower():
                score += TYPE_MATCH_SCORE
                matched.append(f"Type: {entity.entity_type}")

            for observation in entity.observations:
                if query_lower in observation.lower():
                    score += OBSERVATION_MATCH_SCORE
                    matched.append(f"Observation: {observation}")

            if score > 0:
                results.append(UnifiedResult(
                    source='memory_bank',
                    bank_name=bank_name,
                    entity_name=entity.name,
                    content=' | '.join(matched),
                    relevance_score=score,
                    context=ResultContext(timestamp=entity.created_at),
                ))

        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results

    def search_all_banks(self, query: str) -> List[UnifiedResult]:
        """Search every bank and merge the hits by score"""
        results = []
        for bank_name in self.banks:
            results.extend(self.search_bank(bank_name, query))

        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results

    def list_banks(self) -> List[Dict[str, Any]]:
        """Name, description and record counts for every bank"""
        summary = []
        for bank in self.banks.values():
            graph = self.load_graph(bank.name)
            summary.append({
                'name': bank.name,
                'description': bank.description,
                'entityCount': len(graph.entities),
                'relationCount': len(graph.relations),
            })
        return summary

    def get_bank_info(self, bank_name: str) -> Optional[Dict[str, Any]]:
        """Bank descriptor plus its current graph, or None for an unknown bank"""
        bank = self.banks.get(bank_name)
        if bank is None:
            return None

        graph = self.load_graph(bank_name)
        return {
            'name': bank.name,
            'filePath': str(bank.file_path),
            'description': bank.description,
            'entityTypes': list(bank.entity_types),
            'graph': graph.to_dict(),
        }

    def initialize_all_banks(self):
        """Create every bank's directory and an empty file if missing"""
        for bank in self.banks.values():
            with self._locks[bank.name]:
                bank.file_path.parent.mkdir(parents=True, exist_ok=True)
                if not bank.file_path.exists():
                    bank.file_path.touch()
                    logger.info("Created memory bank %s at %s", bank.name, bank.file_path)
