"""
Immutable KV snapshot model.

A Snapshot is produced once per successful blocking query and never mutated.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple


@dataclass(frozen=True)
class Snapshot:
    """Key→value view of a KV path plus the store's modify index.

    Attributes:
        entries: Read-only mapping of full key to decoded value (None for
            keys stored without a value, e.g. folder markers)
        index: X-Consul-Index of the response (0 when unknown)
    """

    entries: Mapping[str, Optional[str]] = field(default_factory=dict)
    index: int = 0

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError("index must be >= 0")
        # read-only private copy
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    @classmethod
    def empty(cls, index: int = 0) -> "Snapshot":
        return cls({}, index)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, Optional[str]]], index: int = 0) -> "Snapshot":
        return cls(dict(pairs), index)

    def get(self, key: str) -> Optional[str]:
        return self.entries.get(key)

    def keys(self) -> list[str]:
        return sorted(self.entries)

    def items(self) -> list[Tuple[str, Optional[str]]]:
        return sorted(self.entries.items())

    def __len__(self) -> int:
        return len(self.entries)

    def to_json(self) -> str:
        """Stable JSON rendering (sorted keys) for logs and CLI output."""
        return json.dumps(dict(self.entries), sort_keys=True)
