"""
Session scanner for DevMind
Reads Claude Code projects and their JSONL session transcripts.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from constants import (
    CLAUDE_PROJECTS_DIR,
    DEFAULT_SEARCH_LIMIT,
    MAX_LINES_SCANNED,
    MAX_MATCHES_PER_SESSION,
    SESSION_SAMPLE_LINES,
)
from timestamp_utils import to_iso, utc_now

logger = logging.getLogger(__name__)

# Raw marker in a transcript line -> session tag
SESSION_TAG_MARKERS = [
    ('exactly :P', 'exactly_moment'),
    ('breakthrough', 'breakthrough'),
    ('consciousness', 'consciousness'),
]


class SessionNotFoundError(Exception):
    """Raised for an unknown session id"""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


@dataclass
class ToolCall:
    """A tool invocation recorded in a transcript"""
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Transcript:
    """Message bodies and tool calls of one session, ready for extraction"""
    id: str = ""
    project_id: str = ""
    timestamp: datetime = field(default_factory=utc_now)
    messages: List[str] = field(default_factory=list)
    tool_calls: List[ToolCall] = field(default_factory=list)


@dataclass
class Session:
    """Summary of a session file"""
    id: str
    project_id: str
    file_path: Path
    timestamp: datetime
    message_count: int = 0
    tool_calls: int = 0
    patterns: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'projectId': self.project_id,
            'filePath': str(self.file_path),
            'timestamp': to_iso(self.timestamp),
            'messageCount': self.message_count,
            'toolCalls': self.tool_calls,
            'patterns': list(self.patterns),
        }


@dataclass
class Project:
    """A Claude Code project directory and its sessions, newest first"""
    id: str
    name: str
    path: Path
    sessions: List[Session] = field(default_factory=list)

    @property
    def session_count(self) -> int:
        return len(self.sessions)

    @property
    def last_activity(self) -> datetime:
        if self.sessions:
            return self.sessions[0].timestamp
        return datetime.fromtimestamp(0, tz=timezone.utc)

    def to_dict(self, include_sessions: bool = True) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'name': self.name,
            'path': str(self.path),
            'lastActivity': to_iso(self.last_activity),
            'sessionCount': self.session_count,
        }
        if include_sessions:
            result['sessions'] = [s.to_dict() for s in self.sessions]
        return result


@dataclass
class SessionSearchResult:
    """A session that matched a query"""
    session_id: str
    project_id: str
    timestamp: datetime
    relevance: float
    matched_content: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sessionId': self.session_id,
            'projectId': self.project_id,
            'timestamp': to_iso(self.timestamp),
            'relevance': self.relevance,
            'matchedContent': list(self.matched_content),
        }


def project_display_name(project_id: str) -> str:
    """'-home-me-my-app-' -> 'Home Me My App'"""
    name = re.sub(r'^-+', '', project_id)
    name = re.sub(r'-+$', '', name)
    name = name.replace('-', ' ')
    return re.sub(r'\b\w', lambda m: m.group(0).upper(), name)


def _content_blocks(entry: Dict[str, Any]) -> List[Any]:
    message = entry.get('message')
    if not isinstance(message, dict):
        return []
    content = message.get('content', [])
    if isinstance(content, str):
        return [{'type': 'text', 'text': content}]
    if isinstance(content, list):
        return content
    return []


def parse_transcript_lines(lines: List[str]) -> Dict[str, List[Any]]:
    """
    Pull message bodies and tool calls out of Claude Code JSONL lines.

    Transcript format: {"type": "user"|"assistant", "message": {"content": ...}}
    where content is a string or a list of text / tool_use / tool_result blocks.
    """
    messages = []
    tool_calls = []

    for line in lines:
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict) or entry.get('type') not in ('user', 'assistant'):
            continue

        texts = []
        for block in _content_blocks(entry):
            if not isinstance(block, dict):
                continue
            if block.get('type') == 'text' and block.get('text'):
                texts.append(block['text'])
            elif block.get('type') == 'tool_use':
                tool_calls.append(ToolCall(
                    name=str(block.get('name', 'unknown')),
                    input=block.get('input') if isinstance(block.get('input'), dict) else {},
                ))

        if texts:
            messages.append('\n'.join(texts))

    return {'messages': messages, 'tool_calls': tool_calls}


class SessionScanner:
    """
    Indexes the Claude Code projects directory.
    Each subdirectory is a project; each *.jsonl file in it is a session.
    """

    def __init__(
        self,
        projects_dir: Optional[Path] = None,
        max_lines_scanned: int = MAX_LINES_SCANNED,
        max_matches_per_session: int = MAX_MATCHES_PER_SESSION,
        sample_lines: int = SESSION_SAMPLE_LINES
    ):
        self.projects_dir = Path(projects_dir or CLAUDE_PROJECTS_DIR).expanduser()
        self.max_lines_scanned = max_lines_scanned
        self.max_matches_per_session = max_matches_per_session
        self.sample_lines = sample_lines

        self.projects: Dict[str, Project] = {}
        self.sessions: Dict[str, Session] = {}
        self._loaded = False

    def _ensure_loaded(self):
        if self._loaded:
            return
        self.refresh()

    def refresh(self):
        """Rescan the projects directory"""
        self.projects = {}
        self.sessions = {}
        self._loaded = True

        if not self.projects_dir.is_dir():
            logger.info("No Claude Code projects directory at %s", self.projects_dir)
            return

        for project_path in sorted(self.projects_dir.iterdir()):
            if project_path.name.startswith('.') or not project_path.is_dir():
                continue
            self._load_project(project_path)

        logger.info("Loaded %d projects with %d sessions", len(self.projects), len(self.sessions))

    def _load_project(self, project_path: Path):
        project_id = project_path.name
        sessions = []

        for session_file in sorted(project_path.glob('*.jsonl')):
            session = self._load_session(session_file.stem, project_id, session_file)
            if session is not None:
                sessions.append(session)
                self.sessions[session.id] = session

        sessions.sort(key=lambda s: s.timestamp, reverse=True)
        self.projects[project_id] = Project(
            id=project_id,
            name=project_display_name(project_id),
            path=project_path,
            sessions=sessions,
        )

    def _load_session(self, session_id: str, project_id: str, session_path: Path) -> Optional[Session]:
        """Summarise a session file from a sample of its first lines"""
        try:
            mtime = session_path.stat().st_mtime
            with open(session_path, 'r', encoding='utf-8', errors='replace') as f:
                lines = [line for line in f.read().split('\n') if line.strip()]
        except OSError as e:
            logger.error("Error loading session %s: %s", session_id, e)
            return None

        message_count = 0
        tool_calls = 0
        patterns = []

        for line in lines[:self.sample_lines]:
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(entry, dict):
                continue

            if entry.get('type') in ('user', 'assistant', 'message'):
                message_count += 1
            if entry.get('type') == 'tool_call':
                tool_calls += 1
            for block in _content_blocks(entry):
                if isinstance(block, dict) and block.get('type') == 'tool_use':
                    tool_calls += 1

            for marker, tag in SESSION_TAG_MARKERS:
                if marker in line and tag not in patterns:
                    patterns.append(tag)

        return Session(
            id=session_id,
            project_id=project_id,
            file_path=session_path,
            timestamp=datetime.fromtimestamp(mtime, tz=timezone.utc),
            message_count=message_count,
            tool_calls=tool_calls,
            patterns=patterns,
        )

    def search_sessions(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[SessionSearchResult]:
        """
        Keyword search across sessions.

        Scoring: project name +3, each session tag +2, each of the first
        scanned lines containing the query +1.
        """
        self._ensure_loaded()
        query_lower = query.lower()
        results = []

        for session in self.sessions.values():
            project = self.projects.get(session.project_id)
            if project is None:
                continue

            relevance = 0
            matched = []

            if query_lower in project.name.lower():
                relevance += 3
                matched.append(f"Project: {project.name}")

            for pattern in session.patterns:
                if query_lower in pattern.lower():
                    relevance += 2
                    matched.append(f"Pattern: {pattern}")

            try:
                with open(session.file_path, 'r', encoding='utf-8', errors='replace') as f:
                    lines = f.read().split('\n')
            except OSError as e:
                logger.debug("Skipping content search for %s: %s", session.id, e)
                lines = []

            for i, line in enumerate(lines[:self.max_lines_scanned]):
                if query_lower in line.lower():
                    relevance += 1
                    matched.append(f"Line {i + 1}: {line[:100]}...")
                    if len(matched) > self.max_matches_per_session:
                        break

            if relevance > 0:
                results.append(SessionSearchResult(
                    session_id=session.id,
                    project_id=project.id,
                    timestamp=session.timestamp,
                    relevance=relevance,
                    matched_content=matched,
                ))

        results.sort(key=lambda r: r.relevance, reverse=True)
        return results[:limit]

    def get_projects(self) -> List[Project]:
        """All projects, most recently active first"""
        self._ensure_loaded()
        return sorted(self.projects.values(), key=lambda p: p.last_activity, reverse=True)

    def get_project(self, project_id: str) -> Optional[Project]:
        self._ensure_loaded()
        return self.projects.get(project_id)

    def get_session(self, session_id: str) -> Optional[Session]:
        self._ensure_loaded()
        return self.sessions.get(session_id)

    def get_session_content(self, session_id: str, limit: Optional[int] = None) -> Optional[List[Dict[str, Any]]]:
        """Parsed JSONL records of a session; unparseable lines are kept as error records"""
        session = self.get_session(session_id)
        if session is None:
            return None

        try:
            with open(session.file_path, 'r', encoding='utf-8', errors='replace') as f:
                lines = [line for line in f.read().split('\n') if line.strip()]
        except OSError as e:
            logger.error("Error reading session content for %s: %s", session_id, e)
            return None

        records = []
        for line in lines:
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                records.append({'error': 'Invalid JSON', 'raw': line})

        if limit is not None:
            records = records[:limit]
        return records

    def load_transcript(self, session_id: str) -> Transcript:
        """Load a session as a Transcript for pattern extraction"""
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        try:
            with open(session.file_path, 'r', encoding='utf-8', errors='replace') as f:
                lines = f.read().split('\n')
        except OSError as e:
            logger.error("Failed to load session data for %s: %s", session_id, e)
            raise

        parsed = parse_transcript_lines(lines)
        return Transcript(
            id=session.id,
            project_id=session.project_id,
            timestamp=session.timestamp,
            messages=parsed['messages'],
            tool_calls=parsed['tool_calls'],
        )

    def get_stats(self) -> Dict[str, Any]:
        """Aggregate counts across all sessions"""
        self._ensure_loaded()
        sessions = list(self.sessions.values())

        pattern_counts: Dict[str, int] = {}
        for session in sessions:
            for pattern in session.patterns:
                pattern_counts[pattern] = pattern_counts.get(pattern, 0) + 1

        top_patterns = sorted(pattern_counts.items(), key=lambda item: item[1], reverse=True)[:10]
        timestamps = [s.timestamp for s in sessions]

        return {
            'totalProjects': len(self.projects),
            'totalSessions': len(sessions),
            'totalMessages': sum(s.message_count for s in sessions),
            'totalToolCalls': sum(s.tool_calls for s in sessions),
            'topPatterns': [list(item) for item in top_patterns],
            'oldestSession': to_iso(min(timestamps)) if timestamps else None,
            'newestSession': to_iso(max(timestamps)) if timestamps else None,
        }
