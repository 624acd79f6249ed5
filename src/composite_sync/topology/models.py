"""
Pydantic models for the derived composite topology and its destination payload.

JSON renderings omit absent roles, an absent baseline and an empty satellite list.
"""

from __future__ import annotations

import json
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class NamespaceRoles(BaseModel):
    """Blue-green roles of one namespace group; every role is optional."""

    controller: Optional[str] = None
    origin: Optional[str] = None
    peer: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.controller is None and self.origin is None and self.peer is None

    def to_dict(self) -> dict[str, str]:
        return self.model_dump(exclude_none=True)


class CompositeStructure(BaseModel):
    """Baseline group plus satellite groups ordered by satellite key."""

    baseline: Optional[NamespaceRoles] = None
    satellites: List[NamespaceRoles] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out = self.model_dump(exclude_none=True)
        if not self.satellites:
            out.pop("satellites", None)
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def namespaces(self) -> list[str]:
        """All namespaces named in the structure, sorted."""
        names: set[str] = set()
        for group in ([self.baseline] if self.baseline else []) + list(self.satellites):
            names.update(v for v in (group.controller, group.origin, group.peer) if v)
        return sorted(names)


class CompositeStructurePayload(BaseModel):
    """What the writer sends to the destination artifact."""

    cloud_provider: Optional[str] = Field(default=None, alias="cloudProvider")
    cloud_oidc_proxy_url: Optional[str] = Field(default=None, alias="cloudOIDCProxyUrl")
    composite: CompositeStructure = Field(default_factory=CompositeStructure)

    model_config = {"populate_by_name": True}

    def to_dict(self) -> dict[str, Any]:
        out = self.model_dump(by_alias=True, exclude_none=True, exclude={"composite"})
        composite = self.composite.to_dict()
        if composite:
            out["composite"] = composite
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))
