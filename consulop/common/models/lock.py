from enum import Enum

class AcquireResult(str, Enum):
    HELD = "held"
    CANCELLED = "cancelled"
