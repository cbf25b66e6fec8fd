from __future__ import annotations

import importlib.util
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from ..engine.container import HostDirectory, HostFile, Secret
from ..engine.errors import ValidationError
from ..engine.factory import ToolboxBundle, build_toolbox
from .registry import RepoModuleRegistry


def _import_module_runner(module_path: Path):
    runner_path = module_path / "src" / "run.py"
    if not runner_path.exists():
        raise FileNotFoundError(str(runner_path))
    spec = importlib.util.spec_from_file_location(f"module_{module_path.name}_runner", runner_path)
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Failed to load module runner: {runner_path}")
    # Allow module runners to import sibling helper modules from the same src/ directory.
    src_dir = str(runner_path.parent)
    inserted = False
    if src_dir not in sys.path:
        sys.path.insert(0, src_dir)
        inserted = True

    mod = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(mod)
    finally:
        if inserted:
            try:
                sys.path.remove(src_dir)
            except ValueError:
                pass
    if not hasattr(mod, "run"):
        raise AttributeError(f"Module runner must define run(params, outputs_dir): {runner_path}")
    return mod


def _secret_from(iid: str, value: Any) -> Secret:
    """Accept a Secret, {"env": NAME}, {"file": PATH}, {"plaintext": V} or "env:NAME"/"file:PATH"."""
    if isinstance(value, Secret):
        return value
    if isinstance(value, dict):
        if value.get("env"):
            return Secret.from_env(str(value["env"]), name=iid)
        if value.get("file"):
            return Secret.from_file(str(value["file"]), name=iid)
        if "plaintext" in value:
            return Secret.from_plaintext(iid, str(value["plaintext"]))
    if isinstance(value, str):
        if value.startswith("env:"):
            return Secret.from_env(value[len("env:") :], name=iid)
        if value.startswith("file:"):
            return Secret.from_file(value[len("file:") :], name=iid)
    raise ValidationError(f"input {iid!r} must reference a secret via env:NAME or file:PATH")


def _coerce(iid: str, itype: str, value: Any) -> Any:
    if itype == "string":
        return str(value)
    if itype == "bool":
        if isinstance(value, bool):
            return value
        s = str(value).strip().lower()
        if s in ("1", "true", "yes", "on"):
            return True
        if s in ("0", "false", "no", "off", ""):
            return False
        raise ValidationError(f"input {iid!r} must be a boolean, got {value!r}")
    if itype == "int":
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"input {iid!r} must be an integer, got {value!r}")
    if itype in ("list", "int_list"):
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            raise ValidationError(f"input {iid!r} must be a list, got {value!r}")
        if itype == "list":
            return [str(v) for v in value]
        try:
            return [int(v) for v in value]
        except (TypeError, ValueError):
            raise ValidationError(f"input {iid!r} must be a list of integers, got {value!r}")
    if itype == "secret":
        return _secret_from(iid, value)
    if itype == "file":
        return value if isinstance(value, HostFile) else HostFile(Path(str(value)))
    if itype == "directory":
        return value if isinstance(value, HostDirectory) else HostDirectory(Path(str(value)))
    raise ValidationError(f"input {iid!r} has unsupported type {itype!r}")


def resolve_inputs(fdef: Dict[str, Any], raw: Dict[str, Any]) -> Dict[str, Any]:
    """Apply defaults and turn raw JSON values into typed inputs for a runner."""
    out: Dict[str, Any] = {}
    for iid, idef in fdef["inputs"].items():
        value = (raw or {}).get(iid)
        if value is None:
            value = idef.get("default")
        if value is None:
            continue
        out[iid] = _coerce(iid, idef["type"], value)
    return out


@contextmanager
def injected_env(env: Optional[Dict[str, str]]) -> Iterator[None]:
    """Set env vars for the duration of a module run only."""
    old: Dict[str, Optional[str]] = {}
    for k, v in (env or {}).items():
        if not k:
            continue
        old[k] = os.environ.get(k)
        os.environ[k] = str(v)
    try:
        yield
    finally:
        for k, prev in old.items():
            if prev is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = prev


def execute_module_runner(
    module_path: Path,
    params: Dict[str, Any],
    outputs_dir: Path,
    env: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    runner = _import_module_runner(module_path)
    outputs_dir.mkdir(parents=True, exist_ok=True)
    with injected_env(env):
        return runner.run(params=params, outputs_dir=outputs_dir)


def run_module(
    *,
    repo_root: Path,
    module_id: str,
    function: str,
    inputs: Dict[str, Any],
    outputs_dir: Path,
    bundle: Optional[ToolboxBundle] = None,
    runtime_profile: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Validate a module call against module.yml and execute its runner.

    Without a ``bundle`` one is built from the runtime profile and closed once
    the runner returns, so engines remove what they created.
    """
    registry = RepoModuleRegistry(repo_root)
    fdef = registry.validate_call(module_id, function, inputs)

    with injected_env(env):
        # Secrets referenced as env:NAME may come from the injected env.
        resolved = resolve_inputs(fdef, inputs)
        owned = bundle is None
        if bundle is None:
            bundle = build_toolbox(repo_root, runtime_profile)
        params: Dict[str, Any] = {
            "module_id": module_id,
            "function": function,
            "inputs": resolved,
            "_toolbox": {
                "repo_root": str(repo_root),
                "runtime_profile": runtime_profile or "",
                "bundle": bundle,
            },
        }
        try:
            return execute_module_runner(registry.module_path(module_id), params, outputs_dir)
        finally:
            if owned:
                bundle.close()
