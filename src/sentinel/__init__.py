"""Sentinel — playbook-driven discovery of grants, residencies and exhibitions."""

from __future__ import annotations

try:
    from importlib.metadata import version

    __version__ = version("sentinel-playbooks")
except Exception:
    __version__ = "0.0.0"
