from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import List

DEFAULT_NETWORK_DRIVER = "bridge"


class PortMapping(BaseModel):
    internal: int = Field(ge=1, le=65535)  # port inside the container
    external: int = Field(ge=1, le=65535)  # port published on the host


class ContainerSpec(BaseModel):
    name: str = Field(min_length=1)
    image: str = Field(min_length=1)
    ports: List[PortMapping] = Field(min_length=1)

    @field_validator("ports")
    @classmethod
    def internal_ports_unique(cls, ports):
        seen = set()
        for mapping in ports:
            if mapping.internal in seen:
                raise ValueError(f"duplicate internal port {mapping.internal}")
            seen.add(mapping.internal)
        return ports


class NetworkSpec(BaseModel):
    name: str = Field(min_length=1)
    driver: str = DEFAULT_NETWORK_DRIVER


class ContainerState(BaseModel):
    """Container as observed at the runtime"""

    id: str
    name: str
    image: str
    ports: List[PortMapping] = []
    networks: List[str] = []  # attached network ids


class NetworkState(BaseModel):
    """Network as observed at the runtime"""

    id: str
    name: str
    driver: str


class ChangeKind(str, Enum):
    NONE = "none"
    IN_PLACE = "in_place"
    REPLACE = "replace"


class ContainerDiff(BaseModel):
    changed: List[str] = []
    replace_fields: List[str] = []

    @property
    def kind(self) -> ChangeKind:
        if self.replace_fields:
            return ChangeKind.REPLACE
        if self.changed:
            return ChangeKind.IN_PLACE
        return ChangeKind.NONE


class ResourceId(BaseModel):
    id: str
