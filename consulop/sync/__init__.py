from .backend import CoordinationBackend
from .consul_backend import ConsulBackend
from .lock import ConsulLock, LockOptions, LOCK_FLAG_VALUE
from .lock_manager import LockManager
from .operator import ConsulOperator

__all__ = [
    'CoordinationBackend',
    'ConsulBackend',
    'ConsulLock',
    'LockOptions',
    'LOCK_FLAG_VALUE',
    'LockManager',
    'ConsulOperator',
]
