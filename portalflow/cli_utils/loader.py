"""Utility functions to locate workflow registries for the CLI."""

from __future__ import annotations

import importlib
import json
import os
import sys
from typing import Any, Optional

from portalflow.registry import StepRegistry


def load_registry(target: str) -> StepRegistry:
    """Import ``module:attribute`` and return the :class:`StepRegistry` it names.

    The current working directory is importable so project-local modules
    such as ``guides.api_registration:registry`` resolve.

    Raises:
        ValueError: If ``target`` is malformed or does not name a registry.
        ImportError: If the module cannot be imported.
    """
    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got '{target}'")

    cwd = os.getcwd()
    if cwd not in sys.path:
        sys.path.insert(0, cwd)

    module = importlib.import_module(module_name)
    try:
        registry = getattr(module, attribute)
    except AttributeError:
        raise ValueError(f"Module '{module_name}' has no attribute '{attribute}'") from None
    if callable(registry) and not isinstance(registry, StepRegistry):
        registry = registry()
    if not isinstance(registry, StepRegistry):
        raise ValueError(f"'{target}' is not a StepRegistry")
    return registry


def parse_payload(raw: Optional[str]) -> Any:
    """Decode the ``--input`` JSON option; ``None`` stays ``None``."""
    if raw is None:
        return None
    return json.loads(raw)
