from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEREGISTER_CRITICAL_AFTER = "1m"

class AgentServiceCheck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    interval: Optional[str] = Field(default=None, alias="Interval")
    http: Optional[str] = Field(default=None, alias="HTTP")
    tcp: Optional[str] = Field(default=None, alias="TCP")
    deregister_critical_service_after: Optional[str] = Field(
        default=DEREGISTER_CRITICAL_AFTER, alias="DeregisterCriticalServiceAfter"
    )

class ServiceRegistration(BaseModel):
    """Body of PUT /v1/agent/service/register."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="ID")
    name: str = Field(alias="Name")
    address: str = Field(default="", alias="Address")
    port: int = Field(default=0, alias="Port")
    tags: List[str] = Field(default_factory=list, alias="Tags")
    check: Optional[AgentServiceCheck] = Field(default=None, alias="Check")

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

class HealthCheck(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    node: str = Field(default="", alias="Node")
    check_id: str = Field(default="", alias="CheckID")
    name: str = Field(default="", alias="Name")
    status: str = Field(default="", alias="Status")
    output: str = Field(default="", alias="Output")
    service_id: str = Field(default="", alias="ServiceID")
    service_name: str = Field(default="", alias="ServiceName")

class CatalogService(BaseModel):
    """One entry of GET /v1/catalog/service/<name>."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default="", alias="ID")
    node: str = Field(default="", alias="Node")
    address: str = Field(default="", alias="Address")
    datacenter: str = Field(default="", alias="Datacenter")
    service_id: str = Field(default="", alias="ServiceID")
    service_name: str = Field(default="", alias="ServiceName")
    service_address: str = Field(default="", alias="ServiceAddress")
    service_port: int = Field(default=0, alias="ServicePort")
    service_tags: List[str] = Field(default_factory=list, alias="ServiceTags")
    checks: List[HealthCheck] = Field(default_factory=list, alias="Checks")
    create_index: int = Field(default=0, alias="CreateIndex")
    modify_index: int = Field(default=0, alias="ModifyIndex")

    @field_validator("service_tags", "checks", mode="before")
    @classmethod
    def _null_as_empty(cls, v):
        return v or []
