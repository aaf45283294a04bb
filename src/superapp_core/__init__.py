"""Resilience layer between a mobile super-app and its hosted backend."""

from superapp_core.client import ResilientBackend, build_resilient_backend
from superapp_core.settings import CoreSettings

__all__ = ["CoreSettings", "ResilientBackend", "build_resilient_backend"]
