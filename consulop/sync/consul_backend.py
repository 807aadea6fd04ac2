"""
Consul HTTP API implementation of CoordinationBackend
"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from consulop.common.agent_url import split_host_port
from consulop.common.models import KVPair, ServiceRegistration, CatalogService
from consulop.errors import BackendFaultError
from .backend import CoordinationBackend
from .lock import ConsulLock, LockOptions

logger = logging.getLogger(__name__)

class ConsulBackend(CoordinationBackend):
    """Talks to a Consul agent over its v1 HTTP API"""

    def __init__(
        self,
        agent: str,
        scheme: str = "http",
        token: Optional[str] = None,
        dc: Optional[str] = None,
        timeout: float = 30.0,
        lock_options: Optional[LockOptions] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        # raises ConfigError for anything that is not host:port
        host, port = split_host_port(agent)
        self.agent = agent
        self.dc = dc
        self.timeout = timeout
        self.lock_options = lock_options or LockOptions()

        headers = {"X-Consul-Token": token} if token else None
        if ":" in host:
            host = f"[{host}]"
        self._client = httpx.AsyncClient(
            base_url=f"{scheme}://{host}:{port}",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        content: Optional[bytes] = None,
        json_body: Any = None,
        timeout: Optional[float] = None,
        allow_404: bool = False,
    ) -> httpx.Response:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if self.dc:
            query.setdefault("dc", self.dc)

        kwargs: Dict[str, Any] = {"params": query}
        if content is not None:
            kwargs["content"] = content
        if json_body is not None:
            kwargs["json"] = json_body
        if timeout is not None:
            kwargs["timeout"] = timeout

        if self._client.is_closed:
            raise BackendFaultError(f"{method} /v1/{path} failed: client for {self.agent} is closed")
        try:
            resp = await self._client.request(method, f"/v1/{path}", **kwargs)
        except httpx.HTTPError as e:
            raise BackendFaultError(f"{method} /v1/{path} failed", e) from e

        if resp.status_code == 404 and allow_404:
            return resp
        if resp.status_code >= 400:
            raise BackendFaultError(
                f"{method} /v1/{path} unexpected response code {resp.status_code}: {resp.text.strip()}"
            )
        return resp

    @staticmethod
    def _index(resp: httpx.Response) -> int:
        try:
            return int(resp.headers.get("X-Consul-Index", "0"))
        except ValueError:
            return 0

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise BackendFaultError(f"invalid json from {resp.request.url}", e) from e

    async def kv_get(self, key: str, index: Optional[int] = None, wait: Optional[float] = None) -> Tuple[int, Optional[KVPair]]:
        params: Dict[str, Any] = {}
        timeout = None
        if index:
            params["index"] = index
            if wait:
                params["wait"] = f"{int(wait * 1000)}ms"
                # the agent adds up to wait/16 of jitter on top of wait
                timeout = self.timeout + wait + wait / 16
        resp = await self._request("GET", f"kv/{quote(key, safe='/')}", params=params, timeout=timeout, allow_404=True)
        last_index = self._index(resp)
        if resp.status_code == 404:
            return last_index, None
        entries = self._json(resp)
        if not entries:
            return last_index, None
        return last_index, KVPair.from_api(entries[0])

    async def kv_put(
        self,
        key: str,
        value: bytes,
        flags: Optional[int] = None,
        acquire: Optional[str] = None,
        release: Optional[str] = None,
    ) -> bool:
        params = {"flags": flags, "acquire": acquire, "release": release}
        resp = await self._request("PUT", f"kv/{quote(key, safe='/')}", params=params, content=value)
        return self._json(resp) is True

    async def kv_delete(self, key: str) -> bool:
        resp = await self._request("DELETE", f"kv/{quote(key, safe='/')}")
        return self._json(resp) is True

    async def session_create(self, name: str, ttl: str, lock_delay: str, behavior: str = "release") -> str:
        body = {"Name": name, "TTL": ttl, "LockDelay": lock_delay, "Behavior": behavior}
        resp = await self._request("PUT", "session/create", json_body=body)
        session_id = (self._json(resp) or {}).get("ID")
        if not session_id:
            raise BackendFaultError("session create returned no ID")
        return session_id

    async def session_renew(self, session_id: str) -> bool:
        resp = await self._request("PUT", f"session/renew/{quote(session_id, safe='')}", allow_404=True)
        return resp.status_code != 404

    async def session_destroy(self, session_id: str) -> bool:
        resp = await self._request("PUT", f"session/destroy/{quote(session_id, safe='')}")
        return self._json(resp) is True

    def lock_key(self, key: str) -> ConsulLock:
        return ConsulLock(self, key, self.lock_options)

    async def service_register(self, registration: ServiceRegistration) -> None:
        await self._request("PUT", "agent/service/register", json_body=registration.to_api())

    async def service_deregister(self, service_id: str) -> None:
        await self._request("PUT", f"agent/service/deregister/{quote(service_id, safe='')}")

    async def catalog_service(self, name: str) -> List[CatalogService]:
        resp = await self._request("GET", f"catalog/service/{quote(name, safe='')}")
        return [CatalogService.model_validate(entry) for entry in (self._json(resp) or [])]

    async def catalog_services(self) -> Dict[str, List[str]]:
        resp = await self._request("GET", "catalog/services")
        return {name: tags or [] for name, tags in (self._json(resp) or {}).items()}

    async def leader(self) -> str:
        resp = await self._request("GET", "status/leader")
        return self._json(resp) or ""
