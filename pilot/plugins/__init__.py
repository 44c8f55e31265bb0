"""Plugin loading utilities for Pilot extension points."""

from .loader import build_from_spec, load_callable_from_spec

__all__ = ["build_from_spec", "load_callable_from_spec"]
