"""Shared type aliases for readability and contract enforcement."""
from __future__ import annotations

from typing import Any, Mapping, TypeAlias

JSONLike: TypeAlias = Mapping[str, Any]
