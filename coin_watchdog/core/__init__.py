"""Core primitives shared across all subsystems.

Enums, type aliases and the error hierarchy live here so that higher level
packages can import them without introducing circular dependencies.
"""

from . import enums, errors, types

__all__ = ["enums", "errors", "types"]
