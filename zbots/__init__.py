"""ZBØTS Backend.

Per-guild encrypted LLM credentials, a Discord command relay and a
multi-tenant bot session supervisor.
"""
from .version import __version__

__all__ = ["__version__"]
