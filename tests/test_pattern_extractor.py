"""
Tests for pattern extraction
"""

import re
from datetime import datetime, timezone
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from bank_store import Entity
from pattern_extractor import (
    PatternExtractor,
    ConsciousnessPattern,
    PatternSource,
    analyze_tool_usage,
    coerce_transcript,
    extract_breakthrough_moments,
    extract_collaboration_patterns,
    extract_solution_approaches,
    extract_technical_insights,
    generate_entity_name,
    split_sentences,
)
from session_scanner import ToolCall, Transcript


SESSION_TIME = datetime(2025, 6, 22, 10, 0, tzinfo=timezone.utc)


def transcript(*messages, tool_calls=None):
    return Transcript(
        id='sess-1',
        project_id='proj-1',
        timestamp=SESSION_TIME,
        messages=list(messages),
        tool_calls=tool_calls or [],
    )


def make_pattern(pattern_type, content, confidence=0.8):
    return ConsciousnessPattern(
        type=pattern_type,
        content=content,
        context='ctx',
        confidence=confidence,
        extracted_from=PatternSource('sess-1', 'proj-1', '2025-06-22T10:00:00.000Z'),
    )


class TestSentenceSplitting:
    """Sentence splitting and length filters"""

    def test_split_on_terminators(self):
        """Runs of . ! ? separate sentences"""
        sentences = split_sentences("First sentence here... Second one!? Third", 5)
        assert sentences == ['First sentence here', 'Second one']

    def test_min_length_is_exclusive(self):
        """Fragments must be longer than the minimum"""
        assert split_sentences("abcde", 5) == []
        assert split_sentences("abcdef", 5) == ['abcdef']


class TestTechnicalInsights:
    """Technical keyword rule"""

    def test_one_keyword_is_not_enough(self):
        """A single technical keyword never produces a pattern"""
        t = transcript()
        assert extract_technical_insights("The implementation is nicely done and clean", t) == []

    def test_two_keywords_emit_pattern(self):
        """Two keywords emit with confidence 2/14*2"""
        t = transcript()
        patterns = extract_technical_insights("The implementation uses a good architecture here", t)
        assert len(patterns) == 1
        assert patterns[0].type == 'technical_insight'
        assert patterns[0].confidence == pytest.approx(2 / 14 * 2)
        assert patterns[0].context == 'Technical discussion in session sess-1'

    def test_two_keywords_fall_below_quality_gate(self):
        """The two-keyword pattern does not survive extraction"""
        extractor = PatternExtractor()
        patterns = extractor.extract_patterns(
            transcript("The implementation uses a good architecture here")
        )
        assert [p for p in patterns if p.type == 'technical_insight'] == []

    def test_many_keywords_capped(self):
        """Confidence never exceeds 0.9"""
        sentence = ("Implementation architecture pattern approach solution optimization "
                    "performance algorithm database framework library debugging")
        patterns = extract_technical_insights(sentence, transcript())
        assert patterns[0].confidence == 0.9


class TestBreakthroughMoments:
    """Breakthrough indicator rule"""

    def test_exactly_marker_scores_highest(self):
        """'exactly :p' gives 0.95"""
        patterns = extract_breakthrough_moments("That is exactly :P what I wanted", transcript())
        assert len(patterns) == 1
        assert patterns[0].confidence == 0.95

    def test_marker_is_case_insensitive(self):
        patterns = extract_breakthrough_moments("yes EXACTLY :p, ship it", transcript())
        assert patterns[0].confidence == 0.95

    def test_other_indicator_scores_lower(self):
        """Any other indicator gives 0.7"""
        patterns = extract_breakthrough_moments("This was a real breakthrough for us", transcript())
        assert patterns[0].confidence == 0.7

    def test_one_pattern_per_sentence(self):
        """Several indicators in one sentence produce one pattern"""
        patterns = extract_breakthrough_moments(
            "An amazing and beautiful breakthrough today", transcript()
        )
        assert len(patterns) == 1
        assert patterns[0].confidence == 0.7


class TestCollaborationPatterns:
    """Collaboration indicator rule"""

    def test_confidence_scales_with_matches(self):
        """matches / 3, capped at 0.8"""
        single = extract_collaboration_patterns("Let's refactor the parser now", transcript())
        double = extract_collaboration_patterns("We should work on this together", transcript())

        assert single[0].confidence == pytest.approx(1 / 3)
        assert double[0].confidence == pytest.approx(2 / 3)

    def test_cap(self):
        patterns = extract_collaboration_patterns(
            "We should keep working with consciousness together in partnership", transcript()
        )
        assert patterns[0].confidence == 0.8


class TestSolutionApproaches:
    """Solution keyword rule"""

    def test_requires_how_or_should(self):
        """Keywords alone are not a solution discussion"""
        assert extract_solution_approaches("The approach and method were fine", transcript()) == []

    def test_emits_with_question_word(self):
        """Two keywords with 'how' reach the 0.7 cap"""
        patterns = extract_solution_approaches("How do we pick the approach and method", transcript())
        assert len(patterns) == 1
        assert patterns[0].type == 'solution_approach'
        assert patterns[0].confidence == 0.7


class TestToolUsage:
    """Tool workflow analysis"""

    def test_fewer_than_three_calls(self):
        assert analyze_tool_usage([ToolCall('Read'), ToolCall('Edit')]) == []

    def test_three_calls_emit_workflow(self):
        """Three or more calls produce one workflow pattern"""
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        patterns = analyze_tool_usage([ToolCall('Read'), ToolCall('Grep'), ToolCall('Edit')], now=now)

        assert len(patterns) == 1
        pattern = patterns[0]
        assert pattern.content == 'Tool usage pattern: Read → Grep → Edit'
        assert pattern.confidence == 0.6
        assert pattern.type == 'solution_approach'
        assert pattern.extracted_from.session_id == 'extracted_from_tools'
        assert pattern.extracted_from.project_id == 'tool_analysis'
        assert pattern.extracted_from.timestamp == '2025-01-01T00:00:00.000Z'


class TestTranscriptCoercion:
    """Loose transcript input"""

    def test_none_becomes_empty(self):
        result = coerce_transcript(None)
        assert result.messages == []
        assert result.tool_calls == []

    def test_dict_with_mixed_messages(self):
        """String and {content} messages are accepted, others dropped"""
        result = coerce_transcript({
            'id': 's1',
            'projectId': 'p1',
            'timestamp': '2025-06-22T10:00:00.000Z',
            'messages': ['plain', {'content': 'wrapped'}, {'role': 'user'}, 42],
            'toolCalls': [{'name': 'Read'}, {'nope': True}],
        })

        assert result.id == 's1'
        assert result.project_id == 'p1'
        assert result.messages == ['plain', 'wrapped']
        assert [c.name for c in result.tool_calls] == ['Read']
        assert result.timestamp == SESSION_TIME

    def test_malformed_fields_ignored(self):
        result = coerce_transcript({'messages': 'not a list', 'timestamp': 'yesterday'})
        assert result.messages == []
        assert result.timestamp.tzinfo is not None


class TestExtractPatterns:
    """Full extraction run"""

    def test_quality_gate_is_strict(self):
        """Confidence must be above the threshold, not equal to it"""
        def rule(content, t):
            return [make_pattern('technical_insight', 'at', 0.5), make_pattern('technical_insight', 'above', 0.51)]

        extractor = PatternExtractor(rules=[rule])
        patterns = extractor.extract_patterns(transcript('anything'))
        assert [p.content for p in patterns] == ['above']

    def test_rules_run_in_order(self):
        """Output follows rule order"""
        extractor = PatternExtractor()
        patterns = extractor.extract_patterns(transcript(
            "We should build this together.",
            "That is exactly :P the right call.",
            "How should we choose the approach and workflow for this.",
            tool_calls=[ToolCall('Read'), ToolCall('Grep'), ToolCall('Edit')],
        ))

        types = [p.type for p in patterns]
        assert types.index('breakthrough_moment') < types.index('collaboration_pattern')
        assert types[-1] == 'solution_approach'
        assert any(p.content.startswith('Tool usage pattern') for p in patterns)

    def test_content_truncated(self):
        """Only the first max_content_chars characters are analysed"""
        extractor = PatternExtractor(max_content_chars=20)
        patterns = extractor.extract_patterns(transcript("x" * 30 + ". That is exactly :P right"))
        assert patterns == []

    def test_empty_transcript(self):
        assert PatternExtractor().extract_patterns({}) == []

    def test_provenance(self):
        """Patterns record the session they came from"""
        patterns = PatternExtractor().extract_patterns(transcript("That is exactly :P the right call"))
        source = patterns[0].extracted_from
        assert source.session_id == 'sess-1'
        assert source.project_id == 'proj-1'
        assert source.timestamp == '2025-06-22T10:00:00.000Z'


class TestEntityConversion:
    """Patterns to entities and bank routing"""

    def test_entity_name_format(self):
        """'{type}: {preview}... ({epoch ms})' with punctuation stripped"""
        name = generate_entity_name(make_pattern('technical_insight', 'Use JWT, not sessions!'))
        epoch_ms = int(SESSION_TIME.timestamp() * 1000)
        assert name == f'technical insight: Use JWT not sessions... ({epoch_ms})'

    def test_entity_name_preview_limited(self):
        name = generate_entity_name(make_pattern('breakthrough_moment', 'a' * 80))
        assert re.match(r'^breakthrough moment: a{50}\.\.\. \(\d+\)$', name)

    def test_patterns_to_entities(self):
        """Observations carry content, context, confidence, source and timestamp"""
        extractor = PatternExtractor()
        entities, assignments = extractor.patterns_to_entities(
            [make_pattern('technical_insight', 'Cache the tokens', 0.8)], 'sess-9', 'proj-9'
        )

        entity = entities[0]
        assert entity.entity_type == 'technical_insight'
        assert entity.observations == [
            'Cache the tokens',
            'Context: ctx',
            'Confidence: 0.8',
            'Source: Session sess-9 in project proj-9',
            'Timestamp: 2025-06-22T10:00:00.000Z',
        ]
        assert entity.extracted_from == 'session:sess-9'
        assert entity.confidence_score == 0.8
        assert assignments == {'development_patterns': [entity]}

    def test_bank_routing(self):
        """Each pattern type lands in its bank; evolution and wisdom get nothing"""
        extractor = PatternExtractor()
        patterns = [
            make_pattern('technical_insight', 'one'),
            make_pattern('solution_approach', 'two'),
            make_pattern('breakthrough_moment', 'three'),
            make_pattern('collaboration_pattern', 'four'),
        ]
        _, assignments = extractor.patterns_to_entities(patterns, 's', 'p')

        assert len(assignments['development_patterns']) == 2
        assert len(assignments['breakthrough_moments']) == 1
        assert len(assignments['collaboration_insights']) == 1
        assert 'project_evolution' not in assignments
        assert 'community_wisdom' not in assignments


class TestRelationGeneration:
    """Relations between entities of one run"""

    def test_flow_and_thematic_links(self):
        """Consecutive entities flow; consecutive same-type entities connect"""
        entities = [
            Entity('a', 'technical_insight'),
            Entity('b', 'breakthrough_moment'),
            Entity('c', 'technical_insight'),
        ]
        relations = PatternExtractor().generate_relations(entities)

        assert [r.key for r in relations] == [
            ('a', 'b', 'consciousness_flow'),
            ('b', 'c', 'consciousness_flow'),
            ('a', 'c', 'thematic_connection'),
        ]

    def test_single_entity_has_no_relations(self):
        assert PatternExtractor().generate_relations([Entity('a', 't')]) == []
