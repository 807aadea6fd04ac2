"""
Coordination Backend - Abstract interface for the Consul-style coordination service
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

from consulop.common.models import KVPair, ServiceRegistration, CatalogService

if TYPE_CHECKING:
    from .lock import ConsulLock

class CoordinationBackend(ABC):
    """
    Abstract backend for distributed coordination operations.
    Provides key-value storage, sessions, distributed locks and the service catalog.
    """

    @abstractmethod
    async def kv_get(self, key: str, index: Optional[int] = None, wait: Optional[float] = None) -> Tuple[int, Optional[KVPair]]:
        """Read key, returning (blocking index, pair or None when absent).

        With ``index`` set this is a blocking query: it returns once the
        index moves past ``index`` or ``wait`` seconds elapse.
        """
        pass

    @abstractmethod
    async def kv_put(
        self,
        key: str,
        value: bytes,
        flags: Optional[int] = None,
        acquire: Optional[str] = None,
        release: Optional[str] = None,
    ) -> bool:
        """Write key; with acquire/release the write takes or drops a session lock"""
        pass

    @abstractmethod
    async def kv_delete(self, key: str) -> bool:
        """Delete key"""
        pass

    @abstractmethod
    async def session_create(self, name: str, ttl: str, lock_delay: str, behavior: str = "release") -> str:
        """Create a session and return its id"""
        pass

    @abstractmethod
    async def session_renew(self, session_id: str) -> bool:
        """Renew session TTL, False when the backend no longer knows the session"""
        pass

    @abstractmethod
    async def session_destroy(self, session_id: str) -> bool:
        """Destroy session, releasing every lock it holds"""
        pass

    @abstractmethod
    def lock_key(self, key: str) -> "ConsulLock":
        """Return a new, unheld lock handle bound to key. No network traffic."""
        pass

    @abstractmethod
    async def service_register(self, registration: ServiceRegistration) -> None:
        """Register a service with the local agent"""
        pass

    @abstractmethod
    async def service_deregister(self, service_id: str) -> None:
        """Deregister a service from the local agent"""
        pass

    @abstractmethod
    async def catalog_service(self, name: str) -> List[CatalogService]:
        """List catalog entries of one service"""
        pass

    @abstractmethod
    async def catalog_services(self) -> Dict[str, List[str]]:
        """Map every known service name to its tags"""
        pass

    @abstractmethod
    async def leader(self) -> str:
        """Address of the current raft leader, empty when there is none"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections"""
        pass
