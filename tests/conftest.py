import asyncio
import base64
import json
import re
import uuid
from functools import partial
from typing import Dict, List, Optional
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio

from consulop.common.config import ConsulConfig
from consulop.sync.operator import ConsulOperator, default_backend_factory

_WAIT_RE = re.compile(r"^(\d+)(ms|s|m)$")


def _wait_seconds(value: Optional[str]) -> float:
    if not value:
        return 300.0
    m = _WAIT_RE.match(value)
    amount, unit = int(m.group(1)), m.group(2)
    return amount * {"ms": 0.001, "s": 1.0, "m": 60.0}[unit]


class FakeConsul:
    """In-memory consul agent speaking enough of the v1 HTTP API for the tests."""

    def __init__(self, leader: str = "10.0.0.1:8300"):
        self.leader = leader
        self.down = False
        self.stall_leader = False
        self.index = 1
        self.kv: Dict[str, dict] = {}
        self.sessions: Dict[str, dict] = {}
        self.services: Dict[str, dict] = {}
        self.requests: List[httpx.Request] = []
        self._changed = asyncio.Condition()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls(self, method: str, prefix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.startswith(prefix)]

    async def _bump(self) -> int:
        self.index += 1
        async with self._changed:
            self._changed.notify_all()
        return self.index

    def _key_index(self, key: str) -> int:
        entry = self.kv.get(key)
        return entry["ModifyIndex"] if entry else self.index

    async def invalidate_session(self, session_id: str):
        self.sessions.pop(session_id, None)
        for entry in self.kv.values():
            if entry.get("Session") == session_id:
                entry["Session"] = None
                entry["ModifyIndex"] = self.index + 1
        await self._bump()

    @staticmethod
    def _json(status: int, body, index: Optional[int] = None) -> httpx.Response:
        headers = {"X-Consul-Index": str(index)} if index is not None else None
        return httpx.Response(status, json=body, headers=headers)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        method = request.method
        params = request.url.params

        if path == "/v1/status/leader":
            if self.stall_leader:
                await asyncio.sleep(3600)
            return self._json(200, self.leader)
        if path.startswith("/v1/kv/"):
            return await self._kv(method, unquote(path[len("/v1/kv/"):]), params, request.content)
        if path == "/v1/session/create":
            session_id = str(uuid.uuid4())
            self.sessions[session_id] = json.loads(request.content or b"{}")
            return self._json(200, {"ID": session_id})
        if path.startswith("/v1/session/renew/"):
            session_id = path.rsplit("/", 1)[1]
            if session_id not in self.sessions:
                return httpx.Response(404, text=f"Session id '{session_id}' not found")
            return self._json(200, [dict(self.sessions[session_id], ID=session_id)])
        if path.startswith("/v1/session/destroy/"):
            await self.invalidate_session(path.rsplit("/", 1)[1])
            return self._json(200, True)
        if path == "/v1/agent/service/register":
            body = json.loads(request.content)
            if not isinstance(body.get("Port", 0), int) or body.get("Port", 0) < 0:
                return httpx.Response(400, text="Invalid service port")
            self.services[body["ID"]] = body
            return httpx.Response(200)
        if path.startswith("/v1/agent/service/deregister/"):
            service_id = unquote(path.rsplit("/", 1)[1])
            if service_id not in self.services:
                return httpx.Response(404, text=f'Unknown service ID "{service_id}"')
            del self.services[service_id]
            return httpx.Response(200)
        if path == "/v1/catalog/services":
            listing = {"consul": []}
            for svc in self.services.values():
                listing[svc["Name"]] = svc.get("Tags") or []
            return self._json(200, listing, self.index)
        if path.startswith("/v1/catalog/service/"):
            name = unquote(path.rsplit("/", 1)[1])
            entries = [
                {
                    "ID": "node-id-1",
                    "Node": "node-1",
                    "Address": "127.0.0.1",
                    "Datacenter": "dc1",
                    "ServiceID": svc["ID"],
                    "ServiceName": svc["Name"],
                    "ServiceAddress": svc.get("Address", ""),
                    "ServicePort": svc.get("Port", 0),
                    "ServiceTags": svc.get("Tags"),
                }
                for svc in self.services.values()
                if svc["Name"] == name
            ]
            return self._json(200, entries, self.index)
        return httpx.Response(404, text="no route")

    async def _kv(self, method: str, key: str, params, body: bytes) -> httpx.Response:
        if method == "GET":
            index = int(params.get("index", 0))
            if index:
                wait = _wait_seconds(params.get("wait"))
                async with self._changed:
                    try:
                        await asyncio.wait_for(
                            self._changed.wait_for(lambda: self._key_index(key) > index), timeout=wait
                        )
                    except asyncio.TimeoutError:
                        pass
            entry = self.kv.get(key)
            if entry is None:
                return httpx.Response(404, headers={"X-Consul-Index": str(self.index)})
            value = entry["Value"]
            out = dict(entry, Key=key, Value=base64.b64encode(value).decode() if value else None)
            return self._json(200, [out], entry["ModifyIndex"])

        if method == "DELETE":
            self.kv.pop(key, None)
            await self._bump()
            return self._json(200, True)

        flags = int(params.get("flags", 0))
        acquire = params.get("acquire")
        release = params.get("release")
        entry = self.kv.get(key)

        if acquire is not None:
            if acquire not in self.sessions:
                return httpx.Response(500, text=f"invalid session \"{acquire}\"")
            if entry and entry.get("Session") and entry["Session"] != acquire:
                return self._json(200, False)
            lock_index = (entry or {}).get("LockIndex", 0) + 1
            self._store(key, body, flags, session=acquire, lock_index=lock_index)
        elif release is not None:
            if not entry or entry.get("Session") != release:
                return self._json(200, False)
            self._store(key, body, flags, session=None, lock_index=entry["LockIndex"])
        else:
            session = entry.get("Session") if entry else None
            lock_index = entry.get("LockIndex", 0) if entry else 0
            self._store(key, body, flags, session=session, lock_index=lock_index)

        await self._bump()
        return self._json(200, True)

    def _store(self, key: str, value: bytes, flags: int, session: Optional[str], lock_index: int):
        existing = self.kv.get(key)
        self.kv[key] = {
            "Value": value,
            "Flags": flags,
            "Session": session,
            "LockIndex": lock_index,
            "CreateIndex": existing["CreateIndex"] if existing else self.index + 1,
            "ModifyIndex": self.index + 1,
        }


@pytest.fixture
def consul() -> FakeConsul:
    return FakeConsul()


@pytest.fixture
def make_operator(consul):
    """Build operators wired to the in-memory agent, with short lock timings."""
    def _make(**kwargs) -> ConsulOperator:
        cfg = kwargs.pop("config", None) or ConsulConfig(
            lock_wait_time=1.0,
            lock_retry_time=0.05,
            session_ttl="10s",
            lock_delay="0s",
        )
        kwargs.setdefault("agent", "127.0.0.1:8500")
        op = ConsulOperator(
            config=cfg,
            backend_factory=partial(default_backend_factory, transport=consul.transport()),
            **kwargs,
        )
        return op

    return _make


@pytest_asyncio.fixture
async def connected(make_operator):
    op = make_operator(name="svc-a", ip="10.0.0.1", port=9000, path="health", interval="10s")
    await op.connect()
    yield op
    await op.close()
