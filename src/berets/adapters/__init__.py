"""Adapters — the boundary between the engine and the host system.

Public re-exports for convenient access.
"""

from berets.adapters.process import ProcessResult, ProcessRunner

__all__ = [
    "ProcessResult",
    "ProcessRunner",
]
