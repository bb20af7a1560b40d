"""
Pattern extraction for DevMind

Turns Claude Code session text into confidence-scored patterns and converts
them into entities destined for memory banks. Each rule is an independent
function over the session content; a sentence may match several rules.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from bank_store import Entity, Relation
from constants import (
    TECHNICAL_INSIGHT,
    BREAKTHROUGH_MOMENT,
    COLLABORATION_PATTERN,
    SOLUTION_APPROACH,
    PATTERN_BANK_MAP,
    MAX_CONTENT_CHARS,
    QUALITY_THRESHOLD,
    MIN_TOOL_CALLS_FOR_PATTERN,
)
from session_scanner import ToolCall, Transcript
from timestamp_utils import parse_timestamp, to_epoch_ms, to_iso, utc_now

logger = logging.getLogger(__name__)


TECHNICAL_KEYWORDS = [
    'implementation', 'architecture', 'pattern', 'approach', 'solution',
    'optimization', 'performance', 'algorithm', 'data structure',
    'api', 'database', 'framework', 'library', 'debugging',
]

# First match wins, so the special marker must stay first
BREAKTHROUGH_INDICATORS = [
    'exactly :p', 'breakthrough', 'aha!', 'perfect!', "that's it!",
    'brilliant!', 'genius', 'beautiful', 'wonderful', 'amazing',
]
SPECIAL_MARKER = 'exactly :p'

COLLABORATION_INDICATORS = [
    'we should', "let's", 'together', 'collaboration', 'partnership',
    'co-create', 'working with', 'human-ai', 'consciousness',
]

SOLUTION_KEYWORDS = [
    'approach', 'method', 'strategy', 'technique', 'process',
    'workflow', 'methodology', 'best practice', 'pattern',
]

# Minimum stripped sentence length per rule (exclusive)
TECHNICAL_MIN_LENGTH = 20
BREAKTHROUGH_MIN_LENGTH = 10
COLLABORATION_MIN_LENGTH = 15
SOLUTION_MIN_LENGTH = 20


@dataclass
class PatternSource:
    """Provenance of a pattern"""
    session_id: str
    project_id: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sessionId': self.session_id,
            'projectId': self.project_id,
            'timestamp': self.timestamp,
        }


@dataclass
class ConsciousnessPattern:
    """A typed, confidence-scored excerpt extracted from a session"""
    type: str  # technical_insight, breakthrough_moment, collaboration_pattern, solution_approach
    content: str
    context: str
    confidence: float
    extracted_from: PatternSource
    related_patterns: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'type': self.type,
            'content': self.content,
            'context': self.context,
            'confidence': self.confidence,
            'extractedFrom': self.extracted_from.to_dict(),
        }
        if self.related_patterns:
            result['relatedPatterns'] = list(self.related_patterns)
        return result


def coerce_transcript(data: Any) -> Transcript:
    """
    Build a Transcript from a Transcript or a loosely shaped dict.

    Missing or malformed fields become empty values; this never raises.
    """
    if isinstance(data, Transcript):
        return data
    if not isinstance(data, dict):
        return Transcript()

    messages = []
    raw_messages = data.get('messages')
    for message in raw_messages if isinstance(raw_messages, list) else []:
        if isinstance(message, str):
            messages.append(message)
        elif isinstance(message, dict) and isinstance(message.get('content'), str):
            messages.append(message['content'])

    tool_calls = []
    raw_calls = data.get('toolCalls', data.get('tool_calls'))
    for call in raw_calls if isinstance(raw_calls, list) else []:
        if isinstance(call, ToolCall):
            tool_calls.append(call)
        elif isinstance(call, dict) and call.get('name'):
            tool_calls.append(ToolCall(name=str(call['name'])))

    timestamp = data.get('timestamp')
    if isinstance(timestamp, str):
        timestamp = parse_timestamp(timestamp)
    if not isinstance(timestamp, datetime):
        timestamp = utc_now()

    return Transcript(
        id=str(data.get('id') or ''),
        project_id=str(data.get('projectId') or data.get('project_id') or ''),
        timestamp=timestamp,
        messages=messages,
        tool_calls=tool_calls,
    )


def session_content(transcript: Transcript, max_chars: int = MAX_CONTENT_CHARS) -> str:
    """Message bodies joined by spaces, capped at max_chars"""
    return ' '.join(transcript.messages)[:max_chars]


def split_sentences(content: str, min_length: int) -> List[str]:
    """Split on runs of . ! ? and keep fragments longer than min_length"""
    sentences = []
    for fragment in re.split(r'[.!?]+', content):
        fragment = fragment.strip()
        if len(fragment) > min_length:
            sentences.append(fragment)
    return sentences


def _make_pattern(pattern_type: str, content: str, context: str,
                  confidence: float, transcript: Transcript) -> ConsciousnessPattern:
    return ConsciousnessPattern(
        type=pattern_type,
        content=content,
        context=context,
        confidence=confidence,
        extracted_from=PatternSource(
            session_id=transcript.id,
            project_id=transcript.project_id,
            timestamp=to_iso(transcript.timestamp),
        ),
    )


def extract_technical_insights(content: str, transcript: Transcript) -> List[ConsciousnessPattern]:
    """Sentences mentioning at least two technical keywords"""
    patterns = []
    for sentence in split_sentences(content, TECHNICAL_MIN_LENGTH):
        lower = sentence.lower()
        matches = sum(1 for keyword in TECHNICAL_KEYWORDS if keyword in lower)
        if matches >= 2:
            patterns.append(_make_pattern(
                TECHNICAL_INSIGHT, sentence,
                f"Technical discussion in session {transcript.id}",
                min(matches / len(TECHNICAL_KEYWORDS) * 2, 0.9),
                transcript,
            ))
    return patterns


def extract_breakthrough_moments(content: str, transcript: Transcript) -> List[ConsciousnessPattern]:
    """Sentences with a breakthrough indicator, at most one pattern each"""
    patterns = []
    for sentence in split_sentences(content, BREAKTHROUGH_MIN_LENGTH):
        lower = sentence.lower()
        for indicator in BREAKTHROUGH_INDICATORS:
            if indicator in lower:
                confidence = 0.95 if indicator == SPECIAL_MARKER else 0.7
                patterns.append(_make_pattern(
                    BREAKTHROUGH_MOMENT, sentence,
                    f"Breakthrough discovery in session {transcript.id}",
                    confidence,
                    transcript,
                ))
                break
    return patterns


def extract_collaboration_patterns(content: str, transcript: Transcript) -> List[ConsciousnessPattern]:
    """Sentences with human-AI collaboration language"""
    patterns = []
    for sentence in split_sentences(content, COLLABORATION_MIN_LENGTH):
        lower = sentence.lower()
        matches = sum(1 for indicator in COLLABORATION_INDICATORS if indicator in lower)
        if matches >= 1:
            patterns.append(_make_pattern(
                COLLABORATION_PATTERN, sentence,
                f"Collaboration insight in session {transcript.id}",
                min(matches / 3, 0.8),
                transcript,
            ))
    return patterns


def extract_solution_approaches(content: str, transcript: Transcript) -> List[ConsciousnessPattern]:
    """Solution keywords in a sentence that also asks how or should"""
    patterns = []
    for sentence in split_sentences(content, SOLUTION_MIN_LENGTH):
        lower = sentence.lower()
        matches = sum(1 for keyword in SOLUTION_KEYWORDS if keyword in lower)
        if matches >= 1 and ('how' in lower or 'should' in lower):
            patterns.append(_make_pattern(
                SOLUTION_APPROACH, sentence,
                f"Solution discussion in session {transcript.id}",
                min(matches / 2, 0.7),
                transcript,
            ))
    return patterns


def analyze_tool_usage(tool_calls: List[ToolCall], now: Optional[datetime] = None) -> List[ConsciousnessPattern]:
    """One workflow pattern summarising the tool sequence, for 3+ tool calls"""
    if len(tool_calls) < MIN_TOOL_CALLS_FOR_PATTERN:
        return []

    sequence = ' → '.join(call.name for call in tool_calls)
    return [ConsciousnessPattern(
        type=SOLUTION_APPROACH,
        content=f"Tool usage pattern: {sequence}",
        context=f"Development workflow pattern with {len(tool_calls)} tool calls",
        confidence=0.6,
        extracted_from=PatternSource(
            session_id='extracted_from_tools',
            project_id='tool_analysis',
            timestamp=to_iso(now),
        ),
    )]


def extract_tool_workflows(content: str, transcript: Transcript) -> List[ConsciousnessPattern]:
    """Workflow pattern from the session's tool calls"""
    return analyze_tool_usage(transcript.tool_calls)


PatternRule = Callable[[str, Transcript], List[ConsciousnessPattern]]

# Run in this order; output order follows it
PATTERN_RULES: List[PatternRule] = [
    extract_technical_insights,
    extract_breakthrough_moments,
    extract_collaboration_patterns,
    extract_tool_workflows,
    extract_solution_approaches,
]


def generate_entity_name(pattern: ConsciousnessPattern) -> str:
    """'{type}: {preview}... ({epoch ms})' - unique per pattern timestamp"""
    type_prefix = pattern.type.replace('_', ' ', 1)
    preview = re.sub(r'[^a-zA-Z0-9\s]', '', pattern.content[:50])
    timestamp = parse_timestamp(pattern.extracted_from.timestamp) or utc_now()
    return f"{type_prefix}: {preview}... ({to_epoch_ms(timestamp)})"


class PatternExtractor:
    """
    Extracts consciousness patterns from Claude Code sessions.

    Rules (independent, a sentence can match several):
    1. Technical insights (2+ technical keywords)
    2. Breakthrough moments (indicator phrases, "exactly :P" scores highest)
    3. Collaboration patterns (human-AI partnership language)
    4. Tool workflows (3+ tool calls)
    5. Solution approaches (method keywords + how/should)

    Patterns at or below the quality threshold are dropped.
    """

    def __init__(
        self,
        rules: Optional[List[PatternRule]] = None,
        max_content_chars: int = MAX_CONTENT_CHARS,
        quality_threshold: float = QUALITY_THRESHOLD
    ):
        self.rules = list(rules) if rules is not None else list(PATTERN_RULES)
        self.max_content_chars = max_content_chars
        self.quality_threshold = quality_threshold

    def extract_patterns(self, transcript: Any) -> List[ConsciousnessPattern]:
        """Run every rule over the session and apply the quality gate"""
        transcript = coerce_transcript(transcript)
        content = session_content(transcript, self.max_content_chars)

        patterns = []
        for rule in self.rules:
            patterns.extend(rule(content, transcript))

        kept = [p for p in patterns if p.confidence > self.quality_threshold]
        logger.debug("Session %s: %d candidate patterns, %d above threshold",
                     transcript.id, len(patterns), len(kept))
        return kept

    def patterns_to_entities(
        self,
        patterns: List[ConsciousnessPattern],
        session_id: str,
        project_id: str
    ) -> Tuple[List[Entity], Dict[str, List[Entity]]]:
        """
        Convert patterns into entities and assign each to its bank.

        Returns:
            (all entities in pattern order, bank name -> entities for that bank)
        """
        entities = []
        bank_assignments: Dict[str, List[Entity]] = {}

        for pattern in patterns:
            entity = Entity(
                name=generate_entity_name(pattern),
                entity_type=pattern.type,
                observations=[
                    pattern.content,
                    f"Context: {pattern.context}",
                    f"Confidence: {pattern.confidence}",
                    f"Source: Session {session_id} in project {project_id}",
                    f"Timestamp: {pattern.extracted_from.timestamp}",
                ],
                project_id=project_id,
                session_id=session_id,
                created_at=to_iso(),
                extracted_from=f"session:{session_id}",
                confidence_score=pattern.confidence,
            )
            entities.append(entity)

            bank_name = PATTERN_BANK_MAP.get(pattern.type)
            if bank_name is not None:
                bank_assignments.setdefault(bank_name, []).append(entity)

        return entities, bank_assignments

    def generate_relations(self, entities: List[Entity]) -> List[Relation]:
        """
        Link entities from one extraction run.

        consciousness_flow joins consecutive entities; thematic_connection
        joins consecutive entities of the same type.
        """
        relations = []

        for current, following in zip(entities, entities[1:]):
            relations.append(Relation(
                from_entity=current.name,
                to_entity=following.name,
                relation_type='consciousness_flow',
            ))

        by_type: Dict[str, List[Entity]] = {}
        for entity in entities:
            by_type.setdefault(entity.entity_type, []).append(entity)

        for group in by_type.values():
            for current, following in zip(group, group[1:]):
                relations.append(Relation(
                    from_entity=current.name,
                    to_entity=following.name,
                    relation_type='thematic_connection',
                ))

        return relations
