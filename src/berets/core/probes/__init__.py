"""Probe registry and built-in probes."""

from berets.core.probes.builtin import BUILTIN_PROBES, default_probe_registry
from berets.core.probes.registry import ProbeFn, ProbeRegistry

__all__ = [
    "BUILTIN_PROBES",
    "ProbeFn",
    "ProbeRegistry",
    "default_probe_registry",
]
