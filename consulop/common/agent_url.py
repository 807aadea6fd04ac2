"""
Agent address parsing for ``consul://host:port/config?check_interval=..&check_http=..&check_tcp=..``
"""
from typing import Dict, List
from urllib.parse import parse_qs, urlsplit
from pydantic import BaseModel, Field

from consulop.errors import ConfigError

class ConsulAppInfo(BaseModel):
    consul_host: str = ""
    consul_port: int = 0
    config: str = ""
    values: Dict[str, List[str]] = Field(default_factory=dict)
    check_interval: str = ""
    check_http: str = ""
    check_tcp: str = ""

    @property
    def agent(self) -> str:
        return f"{self.consul_host}:{self.consul_port}"


def _first(values: Dict[str, List[str]], key: str) -> str:
    items = values.get(key)
    return items[0] if items else ""


def parse_consul_url(consul_url: str) -> ConsulAppInfo:
    parts = urlsplit(consul_url)
    if parts.scheme != "consul":
        raise ConfigError(f"expect scheme consul, not {parts.scheme}")

    try:
        port = parts.port or 0
    except ValueError as e:
        raise ConfigError(f"invalid port in {consul_url}", e) from e

    values = parse_qs(parts.query)
    return ConsulAppInfo(
        consul_host=parts.hostname or "",
        consul_port=port,
        config=parts.path,
        values=values,
        check_interval=_first(values, "check_interval"),
        check_http=_first(values, "check_http"),
        check_tcp=_first(values, "check_tcp"),
    )


def split_host_port(agent: str) -> tuple[str, int]:
    """Split a bare ``host:port`` agent address, raising ConfigError when malformed."""
    host, sep, port_str = agent.rpartition(":")
    if not sep or not host or not port_str.isdigit():
        raise ConfigError(f"malformed agent address {agent!r}, expect host:port")
    port = int(port_str)
    if not 0 < port < 65536:
        raise ConfigError(f"agent port out of range in {agent!r}")
    return host.strip("[]"), port
