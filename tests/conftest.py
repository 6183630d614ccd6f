"""Shared fixtures: scriptable local repository servers and resolution contexts."""
from __future__ import annotations

import socket
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from common.http_client import HttpClient
from registry.maven.context import ResolutionContext

POM = b"""<project>
    <groupId>org.springframework.cloud</groupId>
    <artifactId>spring-cloud-dataflow-build</artifactId>
    <version>2.10.0-SNAPSHOT</version>
</project>
"""

# dispatch(request) -> (status, body), or None to drop the connection unanswered
Dispatch = Callable[["RecordedRequest"], Optional[Tuple[int, bytes]]]


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: Dict[str, str]

    @property
    def authorization(self) -> Optional[str]:
        for key, value in self.headers.items():
            if key.lower() == "authorization":
                return value
        return None


@dataclass
class _ServerState:
    dispatch: Dispatch
    requests: List[RecordedRequest] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)


class _StatefulServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, handler, state: _ServerState):
        super().__init__(address, handler)
        self.state = state


class _Handler(BaseHTTPRequestHandler):
    server: _StatefulServer  # type: ignore[assignment]

    def log_message(self, format: str, *args):  # noqa: D401 - silence server logs
        """Suppress default HTTP server logging."""

    def do_GET(self) -> None:  # noqa: D401
        state = self.server.state
        recorded = RecordedRequest(self.command, self.path, dict(self.headers.items()))
        with state.lock:
            state.requests.append(recorded)
        result = state.dispatch(recorded)
        if result is None:
            self.close_connection = True
            return
        status, body = result
        self.send_response(status)
        self.send_header("Content-Type", "application/xml")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body:
            self.wfile.write(body)


class RepoServer:
    """Handle to a running scripted server."""

    def __init__(self, server: _StatefulServer):
        self._server = server
        host, port = server.server_address[:2]
        self.base = f"http://{host}:{port}"
        self.url = f"{self.base}/maven"

    @property
    def requests(self) -> List[RecordedRequest]:
        with self._server.state.lock:
            return list(self._server.state.requests)

    @property
    def request_count(self) -> int:
        return len(self.requests)

    def paths(self) -> List[str]:
        return [r.path for r in self.requests]


@pytest.fixture
def repo_server():
    """Factory starting one server per call; all are shut down after the test."""
    servers: List[_StatefulServer] = []

    def _start(dispatch: Dispatch) -> RepoServer:
        server = _StatefulServer(("127.0.0.1", 0), _Handler, _ServerState(dispatch=dispatch))
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append(server)
        return RepoServer(server)

    yield _start
    for server in servers:
        server.shutdown()
        server.server_close()


def status_server(status: int, body: bytes = b"") -> Dispatch:
    return lambda request: (status, body)


@pytest.fixture
def closed_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def http_client():
    client = HttpClient(connect_timeout=2, read_timeout=2, retry_delay=0)
    yield client
    client.close()


@pytest.fixture
def context(http_client):
    """Context allowing loopback repositories, as the test servers run on 127.0.0.1."""
    return ResolutionContext(http_client=http_client, allow_local_addresses=True, add_central_repository=False)
