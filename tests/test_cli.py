"""
Tests for DevMind CLI.
"""

import json
import sys
from argparse import Namespace
from pathlib import Path
from unittest.mock import patch, MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cli import DevMindCLI, main
from orchestrator import MemoryOrchestrator


@pytest.fixture
def cli(store, scanner):
    """CLI over temporary banks and sample sessions."""
    config = MagicMock()
    return DevMindCLI(config=config, orchestrator=MemoryOrchestrator(store=store, scanner=scanner))


class TestCLIInitialization:
    """Test CLI initialization."""

    def test_cli_builds_orchestrator_from_config(self):
        """CLI should build its orchestrator from the config."""
        with patch('cli.ConfigManager') as mock_config:
            with patch('cli.MemoryOrchestrator') as mock_orchestrator:
                cli = DevMindCLI()
                mock_orchestrator.assert_called_once_with(mock_config.return_value)
                assert cli.orchestrator is mock_orchestrator.return_value


class TestBankCommands:
    """init, banks, search, add-entity, observe"""

    def test_init_creates_banks(self, cli, store, capsys):
        cli.cmd_init(Namespace())
        assert all(b.file_path.exists() for b in store.banks.values())
        assert "Memory banks initialized" in capsys.readouterr().out

    def test_banks_lists_counts(self, cli, capsys):
        cli.cmd_add_entity(Namespace(bank='development_patterns', name='a', type='note', observation=None))
        capsys.readouterr()

        cli.cmd_banks(Namespace())

        out = capsys.readouterr().out
        assert "development_patterns" in out
        assert "1 entities" in out

    def test_add_entity_and_search(self, cli, capsys):
        cli.cmd_add_entity(Namespace(
            bank='development_patterns', name='Auth Pattern', type='technical_insight',
            observation=['Uses JWT'],
        ))
        assert "✓ Added Auth Pattern" in capsys.readouterr().out

        cli.cmd_search(Namespace(bank='development_patterns', query='JWT', limit=10))
        out = capsys.readouterr().out
        assert "Auth Pattern" in out
        assert "Observation: Uses JWT" in out

    def test_add_entity_duplicate(self, cli, capsys):
        args = Namespace(bank='development_patterns', name='a', type='note', observation=None)
        cli.cmd_add_entity(args)
        cli.cmd_add_entity(args)
        assert "Already exists: a" in capsys.readouterr().out

    def test_search_unknown_bank_exits(self, cli, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.cmd_search(Namespace(bank='nope', query='x', limit=10))
        assert exc.value.code == 1
        assert "Error: Memory bank 'nope' not found" in capsys.readouterr().out

    def test_search_no_matches(self, cli, capsys):
        cli.cmd_search(Namespace(bank='development_patterns', query='x', limit=10))
        assert "No matches" in capsys.readouterr().out

    def test_observe(self, cli, capsys):
        cli.cmd_add_entity(Namespace(bank='development_patterns', name='a', type='note', observation=['one']))
        cli.cmd_observe(Namespace(bank='development_patterns', entity='a', observations=['one', 'two']))
        assert "Added 1 observation(s) to a" in capsys.readouterr().out

    def test_observe_unknown_entity_exits(self, cli, capsys):
        with pytest.raises(SystemExit):
            cli.cmd_observe(Namespace(bank='development_patterns', entity='ghost', observations=['x']))
        assert "Error:" in capsys.readouterr().out


class TestSessionCommands:
    """sessions, projects, extract, query, stats"""

    def test_sessions(self, cli, capsys):
        cli.cmd_sessions(Namespace(query='JWT', limit=20))
        out = capsys.readouterr().out
        assert "session-auth" in out
        assert "Line 1:" in out

    def test_sessions_none(self, cli, capsys):
        cli.cmd_sessions(Namespace(query='kubernetes', limit=20))
        assert "No sessions found" in capsys.readouterr().out

    def test_projects(self, cli, capsys):
        cli.cmd_projects(Namespace())
        out = capsys.readouterr().out
        assert "Home Dev Auth Service" in out
        assert "Sessions: 2" in out

    def test_extract_defaults_project(self, cli, store, capsys):
        cli.cmd_extract(Namespace(session_id='session-auth', project=None))
        out = capsys.readouterr().out
        assert "Processed session session-auth" in out
        assert store.load_graph('breakthrough_moments').entities

    def test_extract_unknown_session_exits(self, cli, capsys):
        with pytest.raises(SystemExit):
            cli.cmd_extract(Namespace(session_id='nope', project='p'))
        assert "Error: Session nope not found" in capsys.readouterr().out

    def test_query_json(self, cli, capsys):
        cli.cmd_query(Namespace(text='JWT', json=True))
        result = json.loads(capsys.readouterr().out)
        assert result['directMatches'][0]['source'] == 'session'

    def test_query_text(self, cli, capsys):
        cli.cmd_query(Namespace(text='kubernetes', json=False))
        assert "No direct matches found" in capsys.readouterr().out

    def test_stats(self, cli, capsys):
        cli.cmd_stats(Namespace())
        out = capsys.readouterr().out
        assert "Sessions: 3" in out
        assert "Memory banks: 5" in out


class TestConfigCommand:
    """config get/set/list"""

    def test_config_get(self, cli, capsys):
        cli.config.get.return_value = 50
        cli.cmd_config(Namespace(action='get', key='search.session_limit', value=None))
        assert "search.session_limit = 50" in capsys.readouterr().out

    def test_config_set_parses_json(self, cli):
        cli.cmd_config(Namespace(action='set', key='search.session_limit', value='25'))
        cli.config.set.assert_called_once_with('search.session_limit', 25)

    def test_config_set_plain_string(self, cli):
        cli.cmd_config(Namespace(action='set', key='logging.level', value='DEBUG'))
        cli.config.set.assert_called_once_with('logging.level', 'DEBUG')

    def test_config_get_without_key_exits(self, cli, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.cmd_config(Namespace(action='get', key=None, value=None))
        assert exc.value.code == 1
        assert "Error: config get requires a key" in capsys.readouterr().out
        cli.config.get.assert_not_called()

    def test_config_set_without_value_exits(self, cli, capsys):
        with pytest.raises(SystemExit):
            cli.cmd_config(Namespace(action='set', key='logging.level', value=None))
        assert "requires a value" in capsys.readouterr().out
        cli.config.set.assert_not_called()


class TestMain:
    """Argument parsing and dispatch"""

    def test_no_command_prints_help(self, capsys):
        with patch.object(sys, 'argv', ['devmind']):
            with pytest.raises(SystemExit):
                main()

    def test_dispatch(self):
        with patch.object(sys, 'argv', ['devmind', 'search', 'development_patterns', 'jwt']):
            with patch('cli.ConfigManager'), patch('cli.setup_logging'):
                with patch.object(DevMindCLI, 'cmd_search') as cmd_search:
                    with patch('cli.MemoryOrchestrator'):
                        main()
        args = cmd_search.call_args[0][0]
        assert args.bank == 'development_patterns'
        assert args.query == 'jwt'
