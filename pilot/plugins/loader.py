"""Dynamic plugin loading for pluggable collaborators.

Plugin specs use the format ``package.module:factory``. The factory is
called with keyword arguments and returns the collaborator (a chat provider,
a credential source or a tool executor).
"""

from __future__ import annotations

import importlib
from functools import lru_cache
from typing import Any, Callable


def _parse_spec(spec: str) -> tuple[str, str]:
    text = spec.strip()
    if not text or ":" not in text:
        raise ValueError(f"Invalid plugin spec '{spec}'. Expected module:function")
    module_name, fn_name = (part.strip() for part in text.split(":", 1))
    if not module_name or not fn_name:
        raise ValueError(f"Invalid plugin spec '{spec}'. Expected module:function")
    return module_name, fn_name


@lru_cache(maxsize=64)
def load_callable_from_spec(spec: str) -> Callable[..., Any]:
    """Load and cache a callable from one plugin spec string."""
    module_name, fn_name = _parse_spec(spec)
    try:
        module = importlib.import_module(module_name)
    except Exception as err:
        raise ValueError(f"Failed to import plugin module '{module_name}' for spec '{spec}': {err}") from err
    fn = getattr(module, fn_name, None)
    if fn is None or not callable(fn):
        raise ValueError(f"Plugin callable '{fn_name}' not found in module '{module_name}'")
    return fn


def build_from_spec(spec: str, *, required_method: str, **kwargs: Any) -> Any:
    """Call the factory named by `spec` and check the result quacks right.

    `required_method` names the one method every instance of the expected
    collaborator must expose (e.g. ``execute`` for tool executors).
    """
    factory = load_callable_from_spec(spec)
    out = factory(**kwargs)
    if not callable(getattr(out, required_method, None)):
        raise ValueError(f"Plugin '{spec}' returned {type(out).__name__}, which has no {required_method}() method")
    return out
