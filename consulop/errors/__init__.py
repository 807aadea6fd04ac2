from .error import (
    ConsulOpError, ConfigError, ConnectionFailedError, NotConnectedError, NotFoundError,
    BackendFaultError, LockHeldError, LockNotHeldError, LockConflictError, LockNotAcquiredError
)
