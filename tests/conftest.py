"""
Pytest configuration and fixtures for DevMind tests.
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bank_store import BankStore
from session_scanner import SessionScanner


BANK_NAMES = [
    'development_patterns',
    'breakthrough_moments',
    'collaboration_insights',
    'project_evolution',
    'community_wisdom',
]


def write_session(project_dir: Path, session_id: str, entries: list) -> Path:
    """Write a Claude Code style JSONL transcript."""
    project_dir.mkdir(parents=True, exist_ok=True)
    path = project_dir / f"{session_id}.jsonl"
    path.write_text('\n'.join(json.dumps(e) for e in entries) + '\n')
    return path


def user_message(text: str) -> dict:
    return {"type": "user", "message": {"role": "user", "content": text}}


def assistant_message(text: str, tools: list = None) -> dict:
    content = [{"type": "text", "text": text}]
    for name in tools or []:
        content.append({"type": "tool_use", "id": f"toolu_{name}", "name": name, "input": {}})
    return {"type": "assistant", "message": {"role": "assistant", "content": content}}


@pytest.fixture
def bank_config(tmp_path):
    """Bank table pointing every bank at a temporary file."""
    return {
        name: {
            "filePath": str(tmp_path / "banks" / f"{name}.json"),
            "description": f"{name.replace('_', ' ').title()} bank",
            "entityTypes": [],
        }
        for name in BANK_NAMES
    }


@pytest.fixture
def store(bank_config):
    """BankStore backed by temporary files."""
    return BankStore(bank_config)


@pytest.fixture
def projects_dir(tmp_path):
    """Claude Code projects directory with two projects and three sessions."""
    root = tmp_path / "projects"

    write_session(root / "-home-dev-auth-service", "session-auth", [
        user_message("How should we structure the JWT authentication approach?"),
        assistant_message(
            "We should keep the JWT validation in one middleware. "
            "That is exactly :P what the pattern needs.",
            tools=["Read", "Grep", "Edit"],
        ),
        user_message("Great, the JWT refresh flow works now"),
    ])

    write_session(root / "-home-dev-auth-service", "session-docs", [
        user_message("Update the README with install steps"),
        assistant_message("Done, the README now lists the install steps."),
    ])

    write_session(root / "-home-dev-web-ui", "session-ui", [
        user_message("The layout breakthrough: use a grid for the dashboard"),
        assistant_message("The grid version renders correctly."),
    ])

    # Hidden directories are not projects
    write_session(root / ".cache", "ignored", [user_message("JWT")])

    return root


@pytest.fixture
def scanner(projects_dir):
    """SessionScanner over the sample projects."""
    return SessionScanner(projects_dir=projects_dir)
