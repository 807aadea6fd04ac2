import base64
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict

class KVPair(BaseModel):
    key: str
    value: bytes = b""
    flags: int = 0
    session: Optional[str] = None
    lock_index: int = 0
    create_index: int = 0
    modify_index: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "KVPair":
        # Consul sends Value base64 encoded, null for a key without value
        raw = data.get("Value")
        return cls(
            key=data.get("Key", ""),
            value=base64.b64decode(raw) if raw else b"",
            flags=data.get("Flags") or 0,
            session=data.get("Session") or None,
            lock_index=data.get("LockIndex") or 0,
            create_index=data.get("CreateIndex") or 0,
            modify_index=data.get("ModifyIndex") or 0,
        )

class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    FAULT = "fault"

class KVLookup(BaseModel):
    """Outcome of a key read: found with a pair, absent, or a backend fault."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    key: str
    status: LookupStatus
    pair: Optional[KVPair] = None
    error: Optional[Exception] = None

    @property
    def found(self) -> bool:
        return self.status == LookupStatus.FOUND

    @property
    def value(self) -> Optional[bytes]:
        return self.pair.value if self.pair else None

    @property
    def version(self) -> Optional[int]:
        return self.pair.modify_index if self.pair else None
