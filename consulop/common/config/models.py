from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict

class ConsulConfig(BaseSettings):
    agent: str = ""
    ip: str = ""
    port: int = 0
    name: str = ""
    path: str = ""
    interval: str = ""
    scheme: str = "http"
    token: Optional[str] = None
    dc: Optional[str] = None
    timeout: float = 30.0
    verify_on_connect: bool = True

    # lock recipe
    session_ttl: str = "15s"
    lock_delay: str = "15s"
    lock_wait_time: float = 15.0
    lock_retry_time: float = 5.0

    # self-ip discovery order, see utils.netinfo
    ip_strategies: List[str] = ["host", "internal"]

    model_config = SettingsConfigDict(env_prefix="CONSUL_")

class LoggingConfig(BaseSettings):
    level: str = "INFO"
    format: str = "json"

    model_config = SettingsConfigDict(env_prefix="LOG_")

class AppConfig(BaseSettings):
    name: str = "consulop"
    node_id: str = "node-1"
    environment: str = "development"

    consul: ConsulConfig = ConsulConfig()
    logging: LoggingConfig = LoggingConfig()

    model_config = SettingsConfigDict(env_file=".env", env_nested_delimiter="__")
