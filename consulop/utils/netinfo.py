import ipaddress
import logging
import socket
from typing import Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

def get_host_ip() -> Optional[str]:
    """Address the hostname resolves to, skipping loopback."""
    try:
        ip = socket.gethostbyname(socket.gethostname())
    except OSError as e:
        logger.debug(f"Resolve hostname failed: {e}")
        return None
    if ip.startswith("127."):
        return None
    return ip

def get_internal_ip() -> Optional[str]:
    """Private address of the interface that routes outbound traffic."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.settimeout(0.1)
        # doesn't even have to be reachable
        s.connect(("8.8.8.8", 1))
        ip = s.getsockname()[0]
    except OSError as e:
        logger.debug(f"Probe outbound interface failed: {e}")
        return None
    finally:
        s.close()
    if not ipaddress.ip_address(ip).is_private or ip.startswith("127."):
        return None
    return ip

IP_STRATEGIES: Dict[str, Callable[[], Optional[str]]] = {
    "host": get_host_ip,
    "internal": get_internal_ip,
}

def detect_ip(strategies: Iterable[str] = ("host", "internal")) -> str:
    """Try each named strategy in order and return the first address found, or ''."""
    for name in strategies:
        probe = IP_STRATEGIES.get(name)
        if probe is None:
            logger.warning(f"Unknown ip strategy {name}, skipped")
            continue
        ip = probe()
        if ip:
            return ip
    return ""
