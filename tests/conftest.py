"""Shared fixtures: a scripted fake of the Marzban API behind aiohttp."""

from __future__ import annotations

import copy
import json
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import patch

import pytest

BASE_URL = "http://panel.test"


class AsyncContextManagerMock:
    """Helper for mocking async context managers like aiohttp.ClientSession."""

    def __init__(self, return_value):
        self.return_value = return_value

    async def __aenter__(self):
        return self.return_value

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeResponse:
    """Minimal stand-in for aiohttp.ClientResponse."""

    def __init__(self, status: int, body: str | bytes):
        self.status = status
        self._body = body.encode() if isinstance(body, str) else body

    async def read(self) -> bytes:
        return self._body

    async def text(self) -> str:
        return self._body.decode()


@dataclass
class RecordedCall:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    data: dict[str, str] | None = None


class FakePanel:
    """Scripted responses keyed by method and path.

    Responses queued for a route are consumed in order; the last one is
    repeated once the queue is down to a single entry. An exception instance
    is raised instead of returning a response.
    """

    def __init__(self):
        self.calls: list[RecordedCall] = []
        self._routes: dict[tuple[str, str], deque] = defaultdict(deque)

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        json_body: Any = None,
        body: str | bytes | None = None,
        exc: BaseException | None = None,
    ) -> None:
        if exc is not None:
            entry: Any = exc
        else:
            entry = FakeResponse(status, body if body is not None else json.dumps(json_body))
        self._routes[(method, BASE_URL + path)].append(entry)

    def login_ok(self, token: str = "token-1") -> None:
        self.add("POST", "/api/admin/token", json_body={"access_token": token, "token_type": "bearer"})

    def calls_to(self, method: str, path: str | None = None) -> list[RecordedCall]:
        return [
            c for c in self.calls
            if c.method == method and (path is None or c.url == BASE_URL + path)
        ]

    def _respond(self, method: str, url: str) -> AsyncContextManagerMock:
        queue = self._routes.get((method, url))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {url}")
        entry = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(entry, BaseException):
            raise entry
        return AsyncContextManagerMock(entry)

    # aiohttp.ClientSession interface

    def get(self, url, headers=None, timeout=None, **kwargs):
        self.calls.append(RecordedCall("GET", url, headers=dict(headers or {})))
        return self._respond("GET", url)

    def post(self, url, data=None, timeout=None, **kwargs):
        self.calls.append(RecordedCall("POST", url, data=dict(data or {})))
        return self._respond("POST", url)

    def session(self, *args, **kwargs) -> AsyncContextManagerMock:
        return AsyncContextManagerMock(self)


NODES = [
    {
        "name": "node-1",
        "address": "10.0.0.1",
        "port": 62050,
        "api_port": 62051,
        "usage_coefficient": 1.0,
        "id": 1,
        "xray_version": "1.8.4",
        "status": "connected",
        "message": None,
    },
    {
        "name": "node-2",
        "address": "10.0.0.2",
        "port": 62050,
        "api_port": 62051,
        "usage_coefficient": 1.5,
        "id": 2,
        "xray_version": None,
        "status": "error",
        "message": "connection refused",
    },
]

NODE_USAGES = {
    "usages": [
        {"node_id": None, "node_name": "Master", "uplink": 100, "downlink": 200},
        {"node_id": 1, "node_name": "node-1", "uplink": 3000, "downlink": 4000},
    ]
}

SYSTEM = {
    "version": "0.8.4",
    "mem_total": 1000,
    "mem_used": 400,
    "cpu_cores": 4,
    "cpu_usage": 12.5,
    "total_user": 10,
    "online_users": 3,
    "users_active": 7,
    "users_on_hold": 0,
    "users_disabled": 1,
    "users_expired": 1,
    "users_limited": 1,
    "incoming_bandwidth": 123456789,
    "outgoing_bandwidth": 987654321,
    "incoming_bandwidth_speed": 1024,
    "outgoing_bandwidth_speed": 2048,
}

CORE = {"version": "1.8.4", "started": True, "logs_websocket": "/api/core/logs"}

USERS = {
    "users": [
        {"username": "alice", "status": "active", "used_traffic": 5000, "proxies": {}},
        {"username": "bob", "status": "limited", "used_traffic": 0, "proxies": {}},
    ],
    "total": 2,
}


@pytest.fixture
def panel():
    """Fake panel patched into aiohttp.ClientSession."""
    fake = FakePanel()
    with patch("marzban_exporter.client.aiohttp.ClientSession", side_effect=fake.session):
        yield fake


@pytest.fixture
def healthy_panel(panel):
    """Fake panel answering every endpoint successfully."""
    panel.login_ok()
    panel.add("GET", "/api/nodes", json_body=NODES)
    panel.add("GET", "/api/nodes/usage", json_body=NODE_USAGES)
    panel.add("GET", "/api/system", json_body=SYSTEM)
    panel.add("GET", "/api/core", json_body=CORE)
    panel.add("GET", "/api/users", json_body=USERS)
    return panel


@pytest.fixture
def payloads() -> dict[str, Any]:
    """Fresh copies of realistic API response bodies."""
    return copy.deepcopy(
        {
            "nodes": NODES,
            "node_usages": NODE_USAGES,
            "system": SYSTEM,
            "core": CORE,
            "users": USERS,
        }
    )


@pytest.fixture
def client():
    """Client pointed at the fake panel."""
    from marzban_exporter.client import MarzbanClient

    return MarzbanClient(BASE_URL, "admin", "secret")
