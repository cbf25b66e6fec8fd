from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import jsonschema

from ..utils.yamlio import read_yaml
from .errors import ValidationError


# Adapter kinds are strict. Any unknown kind is rejected.
ALLOWED_ADAPTER_KINDS: Dict[str, Tuple[str, ...]] = {
    "container_engine": ("docker_cli", "dry_run"),
    "parameter_store": ("aws_cli_container", "ssm_boto3"),
}

REQUIRED_ADAPTER_KEYS = ("container_engine",)

OPTIONAL_ADAPTER_KEYS = ("parameter_store",)

DEFAULT_PROFILE: Dict[str, Any] = {
    "profile_name": "default",
    "adapters": {
        "container_engine": {"kind": "docker_cli", "settings": {}},
        "parameter_store": {"kind": "aws_cli_container", "settings": {}},
    },
}


@dataclass(frozen=True)
class AdapterSpec:
    kind: str
    settings: Dict[str, Any]


@dataclass(frozen=True)
class RuntimeProfile:
    profile_name: str
    adapters: Dict[str, AdapterSpec]
    source_path: str = ""


def resolve_runtime_profile_path(repo_root: Path, cli_path: Optional[str] = None) -> Path:
    """Resolve the runtime profile YAML path.

    Precedence:
      1) CLI flag --runtime-profile
      2) TOOLBOX_RUNTIME_PROFILE
      3) <repo_root>/config/runtime_profile.yml
    """
    if cli_path and str(cli_path).strip():
        return Path(str(cli_path).strip()).expanduser().resolve()

    env_path = str(os.environ.get("TOOLBOX_RUNTIME_PROFILE", "") or "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()

    return (repo_root / "config" / "runtime_profile.yml").resolve()


def _adapter_schema_for_kind(allowed_kinds: Tuple[str, ...]) -> Dict[str, Any]:
    return {
        "type": "object",
        "required": ["kind"],
        "properties": {
            "kind": {"type": "string", "enum": list(allowed_kinds)},
            "settings": {"type": "object"},
        },
        "additionalProperties": False,
    }


def _adapters_schema() -> Dict[str, Any]:
    keys = REQUIRED_ADAPTER_KEYS + OPTIONAL_ADAPTER_KEYS
    return {
        "type": "object",
        "required": list(REQUIRED_ADAPTER_KEYS),
        "properties": {k: _adapter_schema_for_kind(ALLOWED_ADAPTER_KINDS[k]) for k in keys},
        "additionalProperties": False,
    }


def _profile_schema_single() -> Dict[str, Any]:
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["profile_name", "adapters"],
        "properties": {
            "profile_name": {"type": "string", "minLength": 1},
            "description": {"type": "string"},
            "adapters": _adapters_schema(),
        },
        "additionalProperties": False,
    }


def _profile_schema_multi() -> Dict[str, Any]:
    """Schema for a multi-profile YAML file.

    Shape:
      default_profile: local
      profiles:
        local:
          adapters: { ... }
        plan:
          adapters: { ... }
    """

    profile_obj = {
        "type": "object",
        "required": ["adapters"],
        "properties": {
            "description": {"type": "string"},
            "adapters": _adapters_schema(),
        },
        "additionalProperties": False,
    }

    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["profiles"],
        "properties": {
            "default_profile": {"type": "string"},
            "profiles": {
                "type": "object",
                "minProperties": 1,
                "additionalProperties": profile_obj,
            },
        },
        "additionalProperties": False,
    }


def _validate_dict(data: Dict[str, Any]) -> None:
    schemas = [_profile_schema_single(), _profile_schema_multi()]
    last_err: Optional[Exception] = None
    for sch in schemas:
        try:
            jsonschema.validate(instance=data, schema=sch)
            return
        except jsonschema.ValidationError as e:
            last_err = e
    raise ValidationError(f"runtime profile schema validation failed: {getattr(last_err, 'message', last_err)}")


def _select_profile(data: Dict[str, Any], path: Path) -> Tuple[str, Dict[str, Any]]:
    if "profile_name" in data and "adapters" in data:
        return str(data.get("profile_name", "")).strip(), data

    profiles = data.get("profiles")
    if not isinstance(profiles, dict) or not profiles:
        raise ValidationError(f"runtime profile missing profiles mapping: {path}")

    wanted = str(os.environ.get("TOOLBOX_PROFILE_NAME", "") or "").strip()
    default_profile = str(data.get("default_profile", "") or "").strip()

    if wanted:
        if wanted not in profiles:
            raise ValidationError(f"TOOLBOX_PROFILE_NAME={wanted!r} not found in profiles: {path}")
        return wanted, profiles[wanted]

    if default_profile:
        if default_profile not in profiles:
            raise ValidationError(f"default_profile={default_profile!r} not found in profiles: {path}")
        return default_profile, profiles[default_profile]

    # Deterministic fallback: first key by sorted name.
    first = sorted(profiles.keys())[0]
    return first, profiles[first]


def _adapters_from(adapters_raw: Dict[str, Any]) -> Dict[str, AdapterSpec]:
    adapters: Dict[str, AdapterSpec] = {}
    for k in REQUIRED_ADAPTER_KEYS + OPTIONAL_ADAPTER_KEYS:
        spec = adapters_raw.get(k)
        if spec is None and k in OPTIONAL_ADAPTER_KEYS:
            continue
        if not isinstance(spec, dict):
            raise ValidationError(f"runtime profile adapter {k!r} must be object")
        kind = str(spec.get("kind", "") or "").strip()
        if kind not in ALLOWED_ADAPTER_KINDS[k]:
            raise ValidationError(
                f"runtime profile adapter kind invalid: adapter={k!r} kind={kind!r} allowed={list(ALLOWED_ADAPTER_KINDS[k])}"
            )
        settings = spec.get("settings") or {}
        if not isinstance(settings, dict):
            raise ValidationError(f"runtime profile adapter settings must be object: adapter={k!r}")
        adapters[k] = AdapterSpec(kind=kind, settings=dict(settings))
    return adapters


def load_runtime_profile(repo_root: Path, cli_path: Optional[str] = None) -> RuntimeProfile:
    """Load and validate a runtime profile.

    A missing default profile file falls back to the built-in docker_cli
    profile; an explicitly requested file that does not exist is an error.

    Environment overrides:
      - TOOLBOX_RUNTIME_PROFILE (file path)
      - TOOLBOX_PROFILE_NAME (select profile when YAML contains multiple profiles)
    """
    path = resolve_runtime_profile_path(repo_root, cli_path)
    explicit = bool(cli_path) or bool(str(os.environ.get("TOOLBOX_RUNTIME_PROFILE", "") or "").strip())
    if not path.exists():
        if explicit:
            raise ValidationError(f"runtime profile not found: {path}")
        data: Dict[str, Any] = DEFAULT_PROFILE
        source = ""
    else:
        data = read_yaml(path)
        source = str(path)

    _validate_dict(data)
    profile_name, profile_dict = _select_profile(data, path)

    adapters_raw = profile_dict.get("adapters")
    if not isinstance(adapters_raw, dict):
        raise ValidationError(f"runtime profile adapters must be mapping: {path}")

    return RuntimeProfile(profile_name=profile_name, adapters=_adapters_from(adapters_raw), source_path=source)
