#!/usr/bin/env python3
"""
DevMind Sidecar Server
Runs in the background to provide session search and memory bank services via Unix socket IPC
"""

import os
import sys
import json
import socket
import signal
import logging
import threading
from datetime import datetime
from typing import Dict, Any, List, Optional

from config_manager import ConfigManager
from constants import DEFAULT_SOCKET_PATH, DEFAULT_SEARCH_LIMIT
from logging_config import setup_logging
from orchestrator import MemoryOrchestrator

logger = logging.getLogger(__name__)


class DevMindServer:
    """
    Background server that handles session and memory bank operations
    Communicates via Unix socket for low-latency IPC
    """

    def __init__(
        self,
        config: ConfigManager,
        socket_path: Optional[str] = None,
        orchestrator: Optional[MemoryOrchestrator] = None
    ):
        self.config = config
        self.orchestrator = orchestrator or MemoryOrchestrator(config)
        self.socket_path = socket_path or config.get('server.socket_path', DEFAULT_SOCKET_PATH)
        self.pid_file = config.get_path('pid_file')
        self.running = False
        self.server_socket = None

        self.stats = {
            'started_at': datetime.now().isoformat(),
            'requests_handled': 0,
            'errors': 0
        }

        self.handlers = {
            'search_sessions': self._search_sessions,
            'list_projects': self._list_projects,
            'get_project_info': self._get_project_info,
            'get_session_info': self._get_session_info,
            'get_session_content': self._get_session_content,
            'get_session_stats': self._get_session_stats,
            'query_all': self._query_all,
            'extract_and_store_patterns': self._extract_and_store_patterns,
            'search_bank': self._search_bank,
            'list_banks': self._list_banks,
            'get_flow_stats': self._get_flow_stats,
            'create_entities': self._create_entities,
            'create_relations': self._create_relations,
            'add_observations': self._add_observations,
            'ping': self._ping,
            'shutdown': self._shutdown,
        }

    def start(self):
        """Start the server"""
        if self.pid_file.exists():
            try:
                with open(self.pid_file, 'r') as f:
                    old_pid = int(f.read().strip())

                # Signal 0 only checks that the process exists
                os.kill(old_pid, 0)
                print(f"Server already running with PID {old_pid}")
                sys.exit(1)
            except (OSError, ValueError):
                self.pid_file.unlink()

        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.pid_file, 'w') as f:
            f.write(str(os.getpid()))

        logger.info("DevMind server starting (PID %d)", os.getpid())

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.orchestrator.initialize()
        self._setup_socket()

        self.running = True
        logger.info("Server listening on %s", self.socket_path)
        self._listen()

    def _setup_socket(self):
        """Setup Unix domain socket"""
        if os.path.exists(self.socket_path):
            os.remove(self.socket_path)

        self.server_socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.server_socket.bind(self.socket_path)
        self.server_socket.listen(5)

        os.chmod(self.socket_path, 0o600)

    def _listen(self):
        """Main server loop"""
        while self.running:
            try:
                client_socket, _ = self.server_socket.accept()

                # One thread per client; bank writes are serialised by the store
                thread = threading.Thread(
                    target=self._handle_client,
                    args=(client_socket,)
                )
                thread.daemon = True
                thread.start()

            except OSError as e:
                if self.running:
                    logger.error("Error accepting connection: %s", e)
                    self.stats['errors'] += 1

    def _handle_client(self, client_socket: socket.socket):
        """Handle a client request"""
        request = {}
        try:
            data = b''
            while True:
                chunk = client_socket.recv(4096)
                if not chunk:
                    break
                data += chunk
                # Simple protocol: newline-terminated JSON
                if b'\n' in chunk:
                    break

            if not data:
                return

            request = json.loads(data.decode('utf-8'))
            response = self._process_request(request)

            response_json = json.dumps(response) + '\n'
            client_socket.sendall(response_json.encode('utf-8'))

            self.stats['requests_handled'] += 1

        except (OSError, ValueError) as e:
            logger.error("Failed to handle request: %s", e)
            error_response = {
                'status': 'error',
                'error': str(e)
            }
            try:
                client_socket.sendall(
                    (json.dumps(error_response) + '\n').encode('utf-8')
                )
            except OSError:
                pass
            self.stats['errors'] += 1

        finally:
            client_socket.close()

        if request.get('action') == 'shutdown':
            self.stop()

    def _process_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Dispatch a request to its handler; any failure becomes an error response"""
        action = request.get('action')
        handler = self.handlers.get(action)

        if handler is None:
            return {
                'status': 'error',
                'error': f'Unknown action: {action}'
            }

        try:
            result = handler(request)
        except Exception as e:
            logger.warning("Action %s failed: %s", action, e)
            self.stats['errors'] += 1
            return {
                'status': 'error',
                'error': str(e)
            }

        return {'status': 'success', **result}

    def _search_sessions(self, request: Dict[str, Any]) -> Dict[str, Any]:
        results = self.orchestrator.scanner.search_sessions(
            request['query'],
            request.get('limit', DEFAULT_SEARCH_LIMIT)
        )
        return {'results': [r.to_dict() for r in results]}

    def _list_projects(self, request: Dict[str, Any]) -> Dict[str, Any]:
        projects = self.orchestrator.scanner.get_projects()
        return {'projects': [p.to_dict(include_sessions=False) for p in projects]}

    def _get_project_info(self, request: Dict[str, Any]) -> Dict[str, Any]:
        project = self.orchestrator.scanner.get_project(request['project_id'])
        if project is None:
            raise ValueError(f"Project {request['project_id']} not found")
        return {'project': project.to_dict()}

    def _get_session_info(self, request: Dict[str, Any]) -> Dict[str, Any]:
        session = self.orchestrator.scanner.get_session(request['session_id'])
        if session is None:
            raise ValueError(f"Session {request['session_id']} not found")
        return {'session': session.to_dict()}

    def _get_session_content(self, request: Dict[str, Any]) -> Dict[str, Any]:
        content = self.orchestrator.scanner.get_session_content(
            request['session_id'],
            request.get('limit')
        )
        if content is None:
            raise ValueError(f"Session {request['session_id']} not found")
        return {'content': content}

    def _get_session_stats(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {'stats': self.orchestrator.scanner.get_stats()}

    def _query_all(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {'result': self.orchestrator.query(request['query'])}

    def _extract_and_store_patterns(self, request: Dict[str, Any]) -> Dict[str, Any]:
        result = self.orchestrator.extract_and_store_patterns(
            request['session_id'],
            request['project_id']
        )
        return {'result': result}

    def _search_bank(self, request: Dict[str, Any]) -> Dict[str, Any]:
        results = self.orchestrator.search_bank(request['bank'], request['query'])
        return {'results': [r.to_dict() for r in results]}

    def _list_banks(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {'banks': self.orchestrator.list_banks()}

    def _get_flow_stats(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {'stats': self.orchestrator.get_flow_stats(), 'server_stats': self.stats}

    def _create_entities(self, request: Dict[str, Any]) -> Dict[str, Any]:
        created = self.orchestrator.create_entities(request['bank'], request['entities'])
        return {'created': [e.to_dict() for e in created]}

    def _create_relations(self, request: Dict[str, Any]) -> Dict[str, Any]:
        created = self.orchestrator.create_relations(request['bank'], request['relations'])
        return {'created': [r.to_dict() for r in created]}

    def _add_observations(self, request: Dict[str, Any]) -> Dict[str, Any]:
        added = self.orchestrator.add_observations(
            request['bank'],
            request['entity'],
            request['observations']
        )
        return {'added': added}

    def _ping(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'message': 'pong',
            'uptime': (datetime.now() - datetime.fromisoformat(self.stats['started_at'])).total_seconds()
        }

    def _shutdown(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {'message': 'shutting down'}

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        logger.info("Received signal %d, shutting down", signum)
        self.stop()

    def stop(self):
        """Stop the server gracefully"""
        if not self.running:
            return
        self.running = False

        if self.server_socket:
            # shutdown() wakes an accept() blocked in the listener thread
            try:
                self.server_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self.server_socket.close()

        if os.path.exists(self.socket_path):
            os.remove(self.socket_path)

        if self.pid_file.exists():
            self.pid_file.unlink()

        logger.info("Server stopped (handled %d requests)", self.stats['requests_handled'])


class DevMindClientError(Exception):
    """The server answered with an error or could not be reached"""
    pass


class DevMindClient:
    """
    Client for communicating with DevMind server
    """

    def __init__(self, socket_path: str = DEFAULT_SOCKET_PATH):
        self.socket_path = socket_path

    def _send_request(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Send a request to the server and get response"""
        try:
            client_socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            client_socket.connect(self.socket_path)

            request_json = json.dumps(request) + '\n'
            client_socket.sendall(request_json.encode('utf-8'))

            data = b''
            while True:
                chunk = client_socket.recv(4096)
                if not chunk:
                    break
                data += chunk
                if b'\n' in chunk:
                    break

            response = json.loads(data.decode('utf-8'))
            client_socket.close()

            return response

        except (OSError, ValueError) as e:
            return {
                'status': 'error',
                'error': f'Failed to communicate with server: {e}'
            }

    def _call(self, request: Dict[str, Any]) -> Dict[str, Any]:
        response = self._send_request(request)
        if response.get('status') == 'success':
            return response
        raise DevMindClientError(response.get('error', 'Unknown error'))

    def search_sessions(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[Dict[str, Any]]:
        return self._call({'action': 'search_sessions', 'query': query, 'limit': limit})['results']

    def list_projects(self) -> List[Dict[str, Any]]:
        return self._call({'action': 'list_projects'})['projects']

    def get_project_info(self, project_id: str) -> Dict[str, Any]:
        return self._call({'action': 'get_project_info', 'project_id': project_id})['project']

    def get_session_info(self, session_id: str) -> Dict[str, Any]:
        return self._call({'action': 'get_session_info', 'session_id': session_id})['session']

    def get_session_content(self, session_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self._call({'action': 'get_session_content', 'session_id': session_id, 'limit': limit})['content']

    def get_session_stats(self) -> Dict[str, Any]:
        return self._call({'action': 'get_session_stats'})['stats']

    def query_all(self, query: str) -> Dict[str, Any]:
        """Natural-language query across sessions and memory banks"""
        return self._call({'action': 'query_all', 'query': query})['result']

    def extract_and_store_patterns(self, session_id: str, project_id: str) -> Dict[str, Any]:
        return self._call({
            'action': 'extract_and_store_patterns',
            'session_id': session_id,
            'project_id': project_id
        })['result']

    def search_bank(self, bank: str, query: str) -> List[Dict[str, Any]]:
        return self._call({'action': 'search_bank', 'bank': bank, 'query': query})['results']

    def list_banks(self) -> List[Dict[str, Any]]:
        return self._call({'action': 'list_banks'})['banks']

    def get_flow_stats(self) -> Dict[str, Any]:
        """Session, memory bank and server statistics"""
        response = self._call({'action': 'get_flow_stats'})
        return {
            **response['stats'],
            'server': response['server_stats']
        }

    def create_entities(self, bank: str, entities: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self._call({'action': 'create_entities', 'bank': bank, 'entities': entities})['created']

    def create_relations(self, bank: str, relations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self._call({'action': 'create_relations', 'bank': bank, 'relations': relations})['created']

    def add_observations(self, bank: str, entity: str, observations: List[str]) -> List[str]:
        return self._call({
            'action': 'add_observations',
            'bank': bank,
            'entity': entity,
            'observations': observations
        })['added']

    def ping(self) -> bool:
        """Check if server is running"""
        response = self._send_request({'action': 'ping'})
        return response.get('status') == 'success'

    def shutdown(self):
        """Shutdown the server"""
        self._send_request({'action': 'shutdown'})


def main():
    """Main entry point for server"""
    import argparse

    parser = argparse.ArgumentParser(description='DevMind Server')
    parser.add_argument(
        'command',
        choices=['start', 'stop', 'status'],
        help='Server command'
    )
    parser.add_argument(
        '--socket',
        default=None,
        help=f'Unix socket path (default: {DEFAULT_SOCKET_PATH})'
    )

    args = parser.parse_args()

    config = ConfigManager()
    setup_logging(config.get('logging.level'), config.get_path('log_file'))
    socket_path = args.socket or config.get('server.socket_path', DEFAULT_SOCKET_PATH)

    if args.command == 'start':
        server = DevMindServer(config, socket_path=socket_path)
        server.start()

    elif args.command == 'stop':
        client = DevMindClient(socket_path=socket_path)
        if not client.ping():
            print("✗ Server is not running")
            sys.exit(1)
        client.shutdown()
        print("✓ Server stopped")

    elif args.command == 'status':
        client = DevMindClient(socket_path=socket_path)
        if client.ping():
            stats = client.get_flow_stats()
            print("✓ Server is running")
            print(f"  Socket: {socket_path}")
            print(f"  Requests handled: {stats['server']['requests_handled']}")
            print(f"  Errors: {stats['server']['errors']}")
            print(f"  Sessions: {stats['sessions']['totalSessions']}")
            print(f"  Stored entities: {stats['memory']['totalEntities']}")
        else:
            print("✗ Server is not running")
            sys.exit(1)


if __name__ == '__main__':
    main()
