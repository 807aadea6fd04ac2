class ConsulOpError(Exception):
    """Base error for consulop"""
    def __init__(self, message: str = None, source: Exception = None):
        self.message = message
        self.source = source
        super().__init__(self.__str__())

    def __str__(self):
        msg = self.message or self.__class__.__name__
        if self.source:
            return f"{msg}: {self.source}"
        return msg

class ConfigError(ConsulOpError):
    pass

class ConnectionFailedError(ConsulOpError):
    pass

class NotConnectedError(ConsulOpError):
    pass

class NotFoundError(ConsulOpError):
    def __init__(self, key: str, message: str = None):
        self.key = key
        super().__init__(message or f"{key} not exist")

class BackendFaultError(ConsulOpError):
    pass

class LockHeldError(BackendFaultError):
    pass

class LockNotHeldError(BackendFaultError):
    pass

class LockConflictError(BackendFaultError):
    pass

class LockNotAcquiredError(ConsulOpError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} lock not exist")
