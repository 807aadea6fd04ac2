from .common.models import AcquireResult, KVLookup, KVPair, LookupStatus
from .errors import (
    ConsulOpError, ConnectionFailedError, NotConnectedError, NotFoundError, BackendFaultError,
    LockNotAcquiredError
)
from .sync import ConsulOperator

__version__ = "0.1.0"
