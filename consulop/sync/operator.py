"""
ConsulOperator - one logical client of the coordination backend.

Bundles the service identity (agent, ip, port, name, health path and
interval), the backend handle created by connect(), and the per-name lock
handle cache.
"""
import asyncio
import json
import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from consulop.common.agent_url import parse_consul_url
from consulop.common.config import ConsulConfig
from consulop.common.models import (
    AcquireResult, AgentServiceCheck, CatalogService, KVLookup, LookupStatus, ServiceRegistration,
    DEREGISTER_CRITICAL_AFTER,
)
from consulop.errors import (
    BackendFaultError, ConfigError, ConnectionFailedError, NotConnectedError, NotFoundError,
)
from consulop.utils.netinfo import detect_ip
from .backend import CoordinationBackend
from .consul_backend import ConsulBackend
from .lock import LockOptions
from .lock_manager import LockManager

logger = logging.getLogger(__name__)

DEFAULT_AGENT = "localhost:8500"
DEFAULT_HEALTH_PATH = "health"
DEFAULT_SERVICE_PORT = 80
DEFAULT_CHECK_INTERVAL = "10s"
DEFAULT_AGENT_PORT = 8500

BackendFactory = Callable[["ConsulOperator"], CoordinationBackend]


def default_backend_factory(op: "ConsulOperator", transport: Optional[httpx.AsyncBaseTransport] = None) -> CoordinationBackend:
    cfg = op.config
    return ConsulBackend(
        op.agent,
        scheme=cfg.scheme,
        token=cfg.token,
        dc=cfg.dc,
        timeout=cfg.timeout,
        lock_options=LockOptions(
            session_ttl=cfg.session_ttl,
            lock_delay=cfg.lock_delay,
            wait_time=cfg.lock_wait_time,
            retry_time=cfg.lock_retry_time,
        ),
        transport=transport,
    )


class ConsulOperator:
    """
    Client of one consul agent: KV, locks, service registration and catalog.

    Every method is a coroutine bound to the event loop that ran connect():
    the connect lock, the httpx client and the lock renew tasks all live on
    that loop. Threads running their own loops need an operator each.
    """

    def __init__(
        self,
        agent: str = "",
        ip: str = "",
        port: int = 0,
        name: str = "",
        path: str = "",
        interval: str = "",
        check_http: str = "",
        check_tcp: str = "",
        config: Optional[ConsulConfig] = None,
        backend_factory: Optional[BackendFactory] = None,
    ):
        self.agent = agent
        self.ip = ip
        self.port = port
        self.name = name
        self.path = path
        self.interval = interval
        self.check_http = check_http
        self.check_tcp = check_tcp
        self.config = config or ConsulConfig()

        self._backend_factory = backend_factory or default_backend_factory
        self._backend: Optional[CoordinationBackend] = None
        self._locks: Optional[LockManager] = None
        self._connect_lock = asyncio.Lock()
        self._connect_attempted = False
        self._connect_error: Optional[ConnectionFailedError] = None
        self._closed = False

    @classmethod
    def from_config(cls, config: ConsulConfig, backend_factory: Optional[BackendFactory] = None) -> "ConsulOperator":
        return cls(
            agent=config.agent,
            ip=config.ip,
            port=config.port,
            name=config.name,
            path=config.path,
            interval=config.interval,
            config=config,
            backend_factory=backend_factory,
        )

    def fix_defaults(self, ip_strategies: Optional[Sequence[str]] = None) -> "ConsulOperator":
        """Fill unset fields in place and normalise a consul:// agent url to host:port."""
        if not self.agent:
            self.agent = DEFAULT_AGENT
        else:
            try:
                info = parse_consul_url(self.agent)
            except ConfigError as e:
                logger.debug(f"Agent {self.agent} is not a consul url ({e}), used as host:port")
            else:
                self.agent = f"{info.consul_host}:{info.consul_port or DEFAULT_AGENT_PORT}"
                if info.check_interval:
                    self.interval = info.check_interval
                if info.check_http:
                    self.check_http = info.check_http
                if info.check_tcp:
                    self.check_tcp = info.check_tcp

        if not self.path:
            self.path = DEFAULT_HEALTH_PATH
        if not self.port:
            self.port = DEFAULT_SERVICE_PORT
        if not self.ip:
            self.ip = detect_ip(ip_strategies or self.config.ip_strategies)
            if not self.ip:
                logger.warning("Could not detect own ip, service address left empty")
        if not self.interval:
            self.interval = DEFAULT_CHECK_INTERVAL
        return self

    @property
    def connected(self) -> bool:
        return self._backend is not None

    async def connect(self) -> None:
        """
        Create the backend handle exactly once.

        Concurrent and repeated calls wait for and re-report the single
        attempt; a failed attempt is never retried on this operator.
        """
        if self._closed:
            raise NotConnectedError(f"consul operator for {self.agent} closed")
        async with self._connect_lock:
            if not self._connect_attempted:
                try:
                    backend = await self._open_backend()
                except Exception as e:
                    self._connect_error = (
                        e if isinstance(e, ConnectionFailedError)
                        else ConnectionFailedError(f"New consul client for {self.agent} error", e)
                    )
                    logger.error(str(self._connect_error), extra={"agent": self.agent})
                else:
                    self._backend = backend
                    self._locks = LockManager(backend)
                    logger.info(f"Connected to consul agent {self.agent}", extra={"agent": self.agent})
                # a cancelled attempt never gets here and may be retried
                self._connect_attempted = True

        if self._connect_error is not None:
            raise self._connect_error

    async def _open_backend(self) -> CoordinationBackend:
        backend = self._backend_factory(self)
        if not self.config.verify_on_connect:
            return backend
        try:
            leader = await backend.leader()
        except BackendFaultError as e:
            await backend.close()
            raise ConnectionFailedError(f"consul agent {self.agent} unreachable", e) from e
        except BaseException:
            # cancelled mid-probe
            await backend.close()
            raise
        if not leader:
            await backend.close()
            raise ConnectionFailedError(f"consul cluster behind {self.agent} has no leader")
        return backend

    async def close(self) -> None:
        """
        Release held locks and shut the backend handle.

        The operator is unusable afterwards: every operation, connect()
        included, raises NotConnectedError.
        """
        self._closed = True
        backend, locks = self._backend, self._locks
        self._backend = None
        self._locks = None
        if locks is not None:
            await locks.close()
        if backend is not None:
            await backend.close()
            logger.info(f"Closed consul operator for {self.agent}", extra={"agent": self.agent})

    def _require_backend(self) -> CoordinationBackend:
        if self._backend is None:
            state = "closed" if self._closed else "not connected"
            raise NotConnectedError(f"consul operator for {self.agent or 'unset agent'} {state}")
        return self._backend

    # key-value

    async def get(self, key: str) -> bytes:
        value, _ = await self.get_with_version(key)
        return value

    async def get_with_version(self, key: str) -> Tuple[bytes, int]:
        backend = self._require_backend()
        try:
            _, pair = await backend.kv_get(key)
        except BackendFaultError as e:
            raise BackendFaultError(f"get {key}", e) from e
        if pair is None:
            raise NotFoundError(key)
        return pair.value, pair.modify_index

    async def lookup(self, key: str) -> KVLookup:
        backend = self._require_backend()
        try:
            _, pair = await backend.kv_get(key)
        except BackendFaultError as e:
            return KVLookup(key=key, status=LookupStatus.FAULT, error=e)
        if pair is None:
            return KVLookup(key=key, status=LookupStatus.NOT_FOUND)
        return KVLookup(key=key, status=LookupStatus.FOUND, pair=pair)

    async def put(self, key: str, value: bytes) -> None:
        backend = self._require_backend()
        try:
            await backend.kv_put(key, value)
        except BackendFaultError as e:
            raise BackendFaultError(f"put {key}", e) from e

    async def delete(self, key: str) -> None:
        backend = self._require_backend()
        try:
            await backend.kv_delete(key)
        except BackendFaultError as e:
            raise BackendFaultError(f"delete {key}", e) from e

    # locks

    @property
    def locks(self) -> LockManager:
        self._require_backend()
        return self._locks

    async def acquire(self, name: str, cancel: Optional[asyncio.Event] = None) -> AcquireResult:
        """Block until lock ``name`` is held cluster-wide or ``cancel`` is set."""
        return await self.locks.acquire(name, cancel)

    async def release(self, name: str) -> None:
        await self.locks.release(name)

    # service registration

    def build_registration(self) -> ServiceRegistration:
        if self.check_tcp:
            check = AgentServiceCheck(interval=self.interval, tcp=self.check_tcp)
        else:
            http = self.check_http or f"http://{self.ip}:{self.port}/{self.path.lstrip('/')}"
            check = AgentServiceCheck(interval=self.interval, http=http)
        check.deregister_critical_service_after = DEREGISTER_CRITICAL_AFTER
        return ServiceRegistration(
            id=self.name,
            name=self.name,
            address=self.ip,
            port=self.port,
            check=check,
        )

    async def register_service(self) -> ServiceRegistration:
        backend = self._require_backend()
        registration = self.build_registration()
        logger.info(
            "register service: %s",
            json.dumps(registration.to_api(), indent="\t"),
            extra={"service": self.name},
        )
        try:
            await backend.service_register(registration)
        except BackendFaultError as e:
            raise BackendFaultError(f"register service {self.name}", e) from e
        return registration

    async def deregister_service(self) -> None:
        backend = self._require_backend()
        try:
            await backend.service_deregister(self.name)
        except BackendFaultError as e:
            raise BackendFaultError(f"deregister service {self.name}", e) from e
        logger.info(f"Service {self.name} deregistered", extra={"service": self.name})

    # catalog

    async def list_service(self, name: str) -> List[CatalogService]:
        backend = self._require_backend()
        try:
            return await backend.catalog_service(name)
        except BackendFaultError as e:
            raise BackendFaultError(f"list service {name}", e) from e

    async def list_services(self) -> Dict[str, List[str]]:
        backend = self._require_backend()
        try:
            return await backend.catalog_services()
        except BackendFaultError as e:
            raise BackendFaultError("list services", e) from e

    async def print_services(self, name: str) -> List[CatalogService]:
        services = await self.list_service(name)
        logger.info("LIST services:")
        for entry in services:
            logger.info(json.dumps(entry.model_dump(by_alias=True), indent="\t"))
        return services
