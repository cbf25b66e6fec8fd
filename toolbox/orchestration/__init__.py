from __future__ import annotations

from .module_exec import execute_module_runner, resolve_inputs, run_module
from .registry import MODULE_KIND_VALUES, RepoModuleRegistry

__all__ = [
    "execute_module_runner",
    "resolve_inputs",
    "run_module",
    "MODULE_KIND_VALUES",
    "RepoModuleRegistry",
]
