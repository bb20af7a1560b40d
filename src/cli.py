#!/usr/bin/env python3
"""
DevMind CLI
Search Claude Code sessions and memory banks, extract patterns into banks
"""

import argparse
import json
import sys
from typing import Optional

from bank_store import BankNotFoundError, BankStoreError, Entity
from config_manager import ConfigManager
from logging_config import setup_logging
from orchestrator import MemoryOrchestrator
from session_scanner import SessionNotFoundError


class DevMindCLI:
    """Command-line interface for DevMind"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        orchestrator: Optional[MemoryOrchestrator] = None
    ):
        self.config = config or ConfigManager()
        self.orchestrator = orchestrator or MemoryOrchestrator(self.config)

    def _print_result(self, i: int, result: dict):
        if result['source'] == 'memory_bank':
            origin = f"{result['bankName']}: {result['entityName']}"
        else:
            context = result['context']
            origin = f"session {context.get('sessionId')} ({context.get('projectId')})"
        print(f"{i}. [{result['source']}] {origin} (score: {result['relevanceScore']})")
        print(f"   {result['content'][:200]}")
        print()

    def cmd_init(self, args):
        """Create the memory bank files"""
        self.orchestrator.initialize()
        print("✓ Memory banks initialized")
        for bank in self.orchestrator.store.banks.values():
            print(f"  {bank.name.ljust(24)} {bank.file_path}")

    def cmd_banks(self, args):
        """List memory banks with their sizes"""
        banks = self.orchestrator.list_banks()

        print("🏦 Memory Banks")
        print("=" * 50)
        for bank in banks:
            print(f"{bank['name'].ljust(24)}: {bank['entityCount']} entities, "
                  f"{bank['relationCount']} relations")
            if bank['description']:
                print(f"   {bank['description']}")

    def cmd_search(self, args):
        """Search one memory bank"""
        try:
            results = self.orchestrator.search_bank(args.bank, args.query)
        except BankNotFoundError as e:
            print(f"Error: {e}")
            sys.exit(1)

        if not results:
            print(f"No matches for '{args.query}' in {args.bank}.")
            return

        print(f"🔍 {args.bank}: '{args.query}'")
        print("=" * 50)
        for i, result in enumerate(results[:args.limit], 1):
            self._print_result(i, result.to_dict())

    def cmd_query(self, args):
        """Ask a question across sessions and memory banks"""
        result = self.orchestrator.query(args.text)

        if args.json:
            print(json.dumps(result, indent=2))
            return

        print(f"🧠 {args.text}")
        print("=" * 50)

        if result['directMatches']:
            print("Direct matches:")
            for i, match in enumerate(result['directMatches'], 1):
                self._print_result(i, match)

        if result['relatedInsights']:
            print("Related insights:")
            for i, insight in enumerate(result['relatedInsights'], 1):
                self._print_result(i, insight)

        for recommendation in result['recommendations']:
            print(f"💡 {recommendation}")

    def cmd_extract(self, args):
        """Extract patterns from a session into the memory banks"""
        project_id = args.project
        if not project_id:
            session = self.orchestrator.scanner.get_session(args.session_id)
            if session is None:
                print(f"Error: Session {args.session_id} not found")
                sys.exit(1)
            project_id = session.project_id

        try:
            result = self.orchestrator.extract_and_store_patterns(args.session_id, project_id)
        except (SessionNotFoundError, OSError) as e:
            print(f"Error: {e}")
            sys.exit(1)

        print(f"✓ {result['summary']}")
        for bank_name, entities in result['storedEntities'].items():
            print(f"  {bank_name}: {len(entities)} new")

    def cmd_sessions(self, args):
        """Keyword search over Claude Code sessions"""
        results = self.orchestrator.scanner.search_sessions(args.query, args.limit)

        if not results:
            print("No sessions found matching that query.")
            return

        print(f"🔍 Sessions matching: {args.query}")
        print("=" * 50)
        for i, result in enumerate(results, 1):
            print(f"{i}. {result.session_id} [{result.project_id}] (relevance: {result.relevance})")
            for snippet in result.matched_content:
                print(f"   {snippet}")
            print()

    def cmd_projects(self, args):
        """List Claude Code projects"""
        projects = self.orchestrator.scanner.get_projects()

        if not projects:
            print("No Claude Code projects found.")
            return

        print("📁 Projects")
        print("=" * 50)
        for project in projects:
            info = project.to_dict(include_sessions=False)
            print(f"{project.name}")
            print(f"   ID: {project.id}")
            print(f"   Sessions: {info['sessionCount']} | Last activity: {info['lastActivity'][:10]}")
            print()

    def cmd_stats(self, args):
        """Show session and memory bank statistics"""
        stats = self.orchestrator.get_flow_stats()
        sessions = stats['sessions']
        memory = stats['memory']

        print("📊 DevMind Status")
        print("=" * 50)
        print(f"Projects: {sessions['totalProjects']}")
        print(f"Sessions: {sessions['totalSessions']}")
        print(f"Messages: {sessions['totalMessages']}")
        print(f"Tool calls: {sessions['totalToolCalls']}")
        print()

        print(f"Memory banks: {memory['totalBanks']}")
        print(f"Entities: {memory['totalEntities']}")
        print(f"Relations: {memory['totalRelations']}")
        for bank in memory['bankStats']:
            print(f"  {bank['name'].ljust(24)}: {bank['entities']} entities")

    def cmd_add_entity(self, args):
        """Add an entity to a memory bank by hand"""
        entity = Entity(
            name=args.name,
            entity_type=args.type,
            observations=args.observation or [],
        )

        try:
            created = self.orchestrator.store.create_entities(args.bank, [entity])
        except BankNotFoundError as e:
            print(f"Error: {e}")
            sys.exit(1)

        if created:
            print(f"✓ Added {args.name} to {args.bank}")
        else:
            print(f"Already exists: {args.name}")

    def cmd_observe(self, args):
        """Append observations to an existing entity"""
        try:
            added = self.orchestrator.add_observations(args.bank, args.entity, args.observations)
        except BankStoreError as e:
            print(f"Error: {e}")
            sys.exit(1)

        print(f"✓ Added {len(added)} observation(s) to {args.entity}")

    def cmd_config(self, args):
        """Configure DevMind settings"""
        if args.action in ('get', 'set') and not args.key:
            print(f"Error: config {args.action} requires a key")
            sys.exit(1)

        if args.action == 'get':
            value = self.config.get(args.key)
            print(f"{args.key} = {value}")

        elif args.action == 'set':
            if args.value is None:
                print(f"Error: config set requires a value for {args.key}")
                sys.exit(1)

            # Try to parse value as JSON for complex types
            try:
                value = json.loads(args.value)
            except json.JSONDecodeError:
                value = args.value

            self.config.set(args.key, value)
            print(f"✓ Set {args.key} = {value}")

        elif args.action == 'list':
            print("Current Configuration:")
            print(json.dumps(self.config.config, indent=2))


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description='DevMind - Search and remember your Claude Code sessions',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    subparsers.add_parser('init', help='Create memory bank files')

    subparsers.add_parser('banks', help='List memory banks')

    search_parser = subparsers.add_parser('search', help='Search one memory bank')
    search_parser.add_argument('bank', help='Memory bank name')
    search_parser.add_argument('query', help='Search query')
    search_parser.add_argument('--limit', type=int, default=10, help='Max results to show')

    query_parser = subparsers.add_parser(
        'query',
        help='Ask a question across sessions and memory banks'
    )
    query_parser.add_argument('text', help='Question or keywords')
    query_parser.add_argument('--json', action='store_true', help='Print raw JSON result')

    extract_parser = subparsers.add_parser(
        'extract',
        help='Extract patterns from a session into memory banks'
    )
    extract_parser.add_argument('session_id', help='Session ID (transcript file name)')
    extract_parser.add_argument('--project', help='Project ID (default: the session\'s project)')

    sessions_parser = subparsers.add_parser('sessions', help='Search Claude Code sessions')
    sessions_parser.add_argument('query', help='Search query')
    sessions_parser.add_argument('--limit', type=int, default=None, help='Max sessions to show')

    subparsers.add_parser('projects', help='List Claude Code projects')

    subparsers.add_parser('stats', help='Show session and memory bank statistics')

    add_entity_parser = subparsers.add_parser('add-entity', help='Add an entity to a memory bank')
    add_entity_parser.add_argument('bank', help='Memory bank name')
    add_entity_parser.add_argument('name', help='Entity name')
    add_entity_parser.add_argument('--type', default='note', help='Entity type (default: note)')
    add_entity_parser.add_argument(
        '--observation', '-o',
        action='append',
        help='Observation text (repeatable)'
    )

    observe_parser = subparsers.add_parser('observe', help='Add observations to an entity')
    observe_parser.add_argument('bank', help='Memory bank name')
    observe_parser.add_argument('entity', help='Entity name')
    observe_parser.add_argument('observations', nargs='+', help='Observation text')

    config_parser = subparsers.add_parser(
        'config',
        help='Configure DevMind settings'
    )
    config_parser.add_argument(
        'action',
        choices=['get', 'set', 'list'],
        help='Config action'
    )
    config_parser.add_argument('key', nargs='?', help='Config key (dot notation)')
    config_parser.add_argument('value', nargs='?', help='Config value')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = ConfigManager()
    setup_logging('DEBUG' if args.verbose else config.get('logging.level'))

    cli = DevMindCLI(config)

    if args.command == 'sessions' and args.limit is None:
        args.limit = config.get('search.default_limit')

    command_map = {
        'init': cli.cmd_init,
        'banks': cli.cmd_banks,
        'search': cli.cmd_search,
        'query': cli.cmd_query,
        'extract': cli.cmd_extract,
        'sessions': cli.cmd_sessions,
        'projects': cli.cmd_projects,
        'stats': cli.cmd_stats,
        'add-entity': cli.cmd_add_entity,
        'observe': cli.cmd_observe,
        'config': cli.cmd_config
    }

    handler = command_map.get(args.command)
    if handler:
        handler(args)
    else:
        print(f"Unknown command: {args.command}")
        sys.exit(1)


if __name__ == '__main__':
    main()
