"""
Declared composite specification.

A spec without a baseline describes a baseline itself; a spec with a baseline
describes a satellite whose composite is identified by the baseline's origin.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from ..errors import SpecValidationError


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class CompositeSpecBaseline(BaseModel):
    controller_namespace: Optional[str] = Field(default=None, alias="controllerNamespace")
    origin_namespace: Optional[str] = Field(default=None, alias="originNamespace")
    peer_namespace: Optional[str] = Field(default=None, alias="peerNamespace")

    model_config = {"populate_by_name": True}


class CompositeSpec(BaseModel):
    controller_namespace: Optional[str] = Field(default=None, alias="controllerNamespace")
    origin_namespace: Optional[str] = Field(default=None, alias="originNamespace")
    peer_namespace: Optional[str] = Field(default=None, alias="peerNamespace")
    baseline: Optional[CompositeSpecBaseline] = None

    model_config = {"populate_by_name": True}

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "CompositeSpec":
        return cls.model_validate(dict(raw))

    def ensure_valid(self) -> None:
        """Check the declared invariants.

        Raises:
            SpecValidationError: with a message naming the broken rule
        """
        _check_bg_domain(
            "",
            self.origin_namespace,
            self.controller_namespace,
            self.peer_namespace,
            self,
        )
        if self.baseline is not None:
            _check_bg_domain(
                "Baseline ",
                self.baseline.origin_namespace,
                self.baseline.controller_namespace,
                self.baseline.peer_namespace,
                self,
            )

    @property
    def is_baseline(self) -> bool:
        return self.baseline is None or _blank(self.baseline.origin_namespace)

    @property
    def composite_id(self) -> str:
        if not self.is_baseline:
            return self.baseline.origin_namespace.strip()
        if not _blank(self.origin_namespace):
            return self.origin_namespace.strip()
        raise SpecValidationError(f"Can't resolve composite id from spec: {self.describe()}")

    def describe(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


def _check_bg_domain(
    label: str,
    origin: Optional[str],
    controller: Optional[str],
    peer: Optional[str],
    spec: CompositeSpec,
) -> None:
    if _blank(origin):
        what = f"{label}origin" if label else "Origin"
        raise SpecValidationError(f"{what} namespace cannot be null or empty: {spec.describe()}")
    if not _blank(controller) and _blank(peer):
        raise SpecValidationError(f"{label}BG domain missed value for peer namespace: {spec.describe()}")
    if _blank(controller) and not _blank(peer):
        raise SpecValidationError(f"{label}BG domain missed value for controller namespace: {spec.describe()}")
