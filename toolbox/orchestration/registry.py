from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

from ..engine.errors import NotFoundError, ValidationError
from ..utils.yamlio import read_yaml

# Canonical module classification. "reference" modules document a workflow and
# are runnable, but are not meant to be wired into pipelines as-is.
MODULE_KIND_VALUES = ("tool", "reference")

INPUT_TYPE_VALUES = ("string", "bool", "int", "list", "int_list", "secret", "file", "directory")


def is_valid_module_kind(value: Any) -> bool:
    return str(value or "").strip() in MODULE_KIND_VALUES


def _parse_inputs(module_id: str, where: str, raw: Any) -> Dict[str, Dict[str, Any]]:
    if raw is None:
        return {}
    if not isinstance(raw, list):
        raise ValidationError(f"module.yml {where} inputs must be a list for {module_id}")
    out: Dict[str, Dict[str, Any]] = {}
    for inp in raw:
        if not isinstance(inp, dict):
            continue
        iid = str(inp.get("id") or "").strip()
        if not iid:
            continue
        itype = str(inp.get("type") or "string").strip()
        if itype not in INPUT_TYPE_VALUES:
            raise ValidationError(
                f"module.yml input {iid!r} of {module_id} has invalid type={itype!r} (allowed: {list(INPUT_TYPE_VALUES)})"
            )
        out[iid] = {
            "id": iid,
            "type": itype,
            "required": bool(inp.get("required")) if "required" in inp else False,
            "default": inp.get("default"),
            "description": str(inp.get("description") or ""),
        }
    return out


class RepoModuleRegistry:
    """Module registry reading modules/<module_id>/module.yml."""

    def __init__(self, repo_root: Path):
        self.repo_root = repo_root

    def list_modules(self) -> List[str]:
        modules_dir = self.repo_root / "modules"
        if not modules_dir.exists():
            return []
        out: List[str] = []
        for p in sorted(modules_dir.iterdir()):
            if p.is_dir() and (p / "module.yml").exists():
                out.append(p.name)
        return out

    def module_path(self, module_id: str) -> Path:
        p = self.repo_root / "modules" / str(module_id)
        if not p.exists():
            raise NotFoundError(f"Module not found: {module_id}")
        return p

    def load_module_yaml(self, module_id: str) -> Dict[str, Any]:
        p = self.module_path(module_id) / "module.yml"
        if not p.exists():
            raise NotFoundError(f"Missing module.yml for {module_id}")
        data = read_yaml(p)
        if not data:
            raise ValidationError(f"Invalid module.yml format for {module_id}")

        kind = str(data.get("kind") or "").strip()
        if not kind:
            raise ValidationError(
                f"module.yml missing required field 'kind' for {module_id} (allowed: {list(MODULE_KIND_VALUES)})"
            )
        if not is_valid_module_kind(kind):
            raise ValidationError(
                f"module.yml has invalid kind={kind!r} for {module_id} (allowed: {list(MODULE_KIND_VALUES)})"
            )
        return data

    def get_contract(self, module_id: str) -> Dict[str, Any]:
        cfg = self.load_module_yaml(module_id)
        shared = _parse_inputs(module_id, "top-level", cfg.get("inputs"))

        functions_cfg = cfg.get("functions") or {}
        if not isinstance(functions_cfg, dict) or not functions_cfg:
            raise ValidationError(f"module.yml must declare at least one function for {module_id}")

        functions: Dict[str, Dict[str, Any]] = {}
        for fname, fdef in functions_cfg.items():
            fdef = fdef if isinstance(fdef, dict) else {}
            own = _parse_inputs(module_id, f"function {fname!r}", fdef.get("inputs"))
            functions[str(fname)] = {
                "name": str(fname),
                "description": str(fdef.get("description") or ""),
                "inputs": {**shared, **own},
            }

        return {
            "module_id": str(cfg.get("module_id") or module_id),
            "kind": str(cfg.get("kind")),
            "description": str(cfg.get("description") or ""),
            "functions": functions,
        }

    def validate_call(self, module_id: str, function: str, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Check a call against the contract and return the function definition."""
        contract = self.get_contract(module_id)
        fdef = contract["functions"].get(function)
        if fdef is None:
            raise ValidationError(
                f"unknown function {function!r} for module {module_id} (available: {sorted(contract['functions'])})"
            )
        unknown = sorted(set(inputs or {}) - set(fdef["inputs"]))
        if unknown:
            raise ValidationError(f"unknown inputs for {module_id}.{function}: {unknown}")
        missing = [
            iid
            for iid, idef in fdef["inputs"].items()
            if idef["required"] and idef["default"] is None and (inputs or {}).get(iid) in (None, "", [])
        ]
        if missing:
            raise ValidationError(f"missing required inputs for {module_id}.{function}: {missing}")
        return fdef
