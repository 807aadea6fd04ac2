from .kv import KVPair, KVLookup, LookupStatus
from .service import AgentServiceCheck, ServiceRegistration, CatalogService, HealthCheck, DEREGISTER_CRITICAL_AFTER
from .lock import AcquireResult
