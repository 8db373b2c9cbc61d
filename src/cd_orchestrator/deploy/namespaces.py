"""Explicit service-to-namespace routing table."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from cd_orchestrator.errors import UnknownNamespaceMapping


@dataclass(frozen=True, slots=True)
class NamespaceTable:
    """Read-only lookup of the namespace each service is released into."""

    mapping: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        cleaned = {str(service).strip(): str(namespace).strip() for service, namespace in self.mapping.items()}
        object.__setattr__(self, "mapping", MappingProxyType(cleaned))

    def resolve(self, service: str) -> str:
        namespace = self.mapping.get(service)
        if not namespace:
            raise UnknownNamespaceMapping(service, "no namespace mapping configured")
        return namespace

    def __contains__(self, service: object) -> bool:
        return service in self.mapping
