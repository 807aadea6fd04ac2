import os
import sys
import pytest

# ensure project root on path for imports
sys.path.append(os.getcwd())

from consulop.common.models import LookupStatus
from consulop.errors import BackendFaultError, NotFoundError
from consulop.sync import ConsulBackend


@pytest.mark.asyncio
async def test_get_missing_key_is_not_found(connected):
    with pytest.raises(NotFoundError) as exc_info:
        await connected.get("never/written")
    assert exc_info.value.key == "never/written"


@pytest.mark.asyncio
async def test_put_get_roundtrip(connected):
    payload = bytes(range(256))
    await connected.put("config/blob", payload)

    assert await connected.get("config/blob") == payload


@pytest.mark.asyncio
async def test_empty_value_is_distinct_from_missing(connected):
    await connected.put("empty", b"")

    assert await connected.get("empty") == b""
    lookup = await connected.lookup("empty")
    assert lookup.status is LookupStatus.FOUND
    assert lookup.value == b""


@pytest.mark.asyncio
async def test_put_is_idempotent(connected):
    await connected.put("k", b"same")
    await connected.put("k", b"same")

    assert await connected.get("k") == b"same"


@pytest.mark.asyncio
async def test_version_increases_on_write(connected):
    await connected.put("counter", b"1")
    value1, version1 = await connected.get_with_version("counter")
    await connected.put("counter", b"2")
    value2, version2 = await connected.get_with_version("counter")

    assert (value1, value2) == (b"1", b"2")
    assert version2 > version1


@pytest.mark.asyncio
async def test_delete_then_get_is_not_found(connected):
    await connected.put("doomed", b"x")
    await connected.delete("doomed")

    with pytest.raises(NotFoundError):
        await connected.get("doomed")


@pytest.mark.asyncio
async def test_delete_missing_key_is_not_an_error(connected):
    await connected.delete("nothing/here")
    await connected.delete("nothing/here")


@pytest.mark.asyncio
async def test_backend_fault_is_not_not_found(consul, connected):
    consul.down = True

    with pytest.raises(BackendFaultError) as exc_info:
        await connected.get("k")
    assert not isinstance(exc_info.value, NotFoundError)
    assert "get k" in str(exc_info.value)

    with pytest.raises(BackendFaultError):
        await connected.put("k", b"v")
    with pytest.raises(BackendFaultError):
        await connected.delete("k")


@pytest.mark.asyncio
async def test_lookup_outcomes(consul, connected):
    await connected.put("present", b"v")

    found = await connected.lookup("present")
    missing = await connected.lookup("absent")
    consul.down = True
    fault = await connected.lookup("present")

    assert found.status is LookupStatus.FOUND and found.value == b"v" and found.version > 0
    assert missing.status is LookupStatus.NOT_FOUND and missing.value is None
    assert fault.status is LookupStatus.FAULT
    assert isinstance(fault.error, BackendFaultError)


@pytest.mark.asyncio
async def test_closed_backend_raises_backend_fault(consul):
    backend = ConsulBackend("127.0.0.1:8500", transport=consul.transport())
    await backend.close()

    with pytest.raises(BackendFaultError) as exc_info:
        await backend.kv_get("k")
    assert "closed" in str(exc_info.value)
    assert consul.requests == []
