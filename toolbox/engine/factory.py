from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

from .adapters import (
    AwsCliParameterStore,
    AwsCliParameterStoreSettings,
    DockerCliEngine,
    DockerCliSettings,
    DryRunEngine,
    DryRunSettings,
    SsmParameterStore,
    SsmParameterStoreSettings,
)
from .config import AdapterSpec, RuntimeProfile, load_runtime_profile
from .contracts import ContainerEngine, ParameterStore
from .errors import NotConfiguredError, ValidationError

T = TypeVar("T")


@dataclass
class ToolboxBundle:
    profile: RuntimeProfile
    engine: ContainerEngine
    parameter_store: Optional[ParameterStore] = None

    def require_parameter_store(self) -> ParameterStore:
        if self.parameter_store is None:
            raise NotConfiguredError(
                f"runtime profile {self.profile.profile_name!r} does not configure a parameter_store adapter"
            )
        return self.parameter_store

    def close(self) -> None:
        self.engine.close()

    def describe(self) -> Dict[str, Any]:
        return {
            "profile_name": self.profile.profile_name,
            "source_path": self.profile.source_path,
            "adapters": {
                "container_engine": self.engine.describe(),
                "parameter_store": self.parameter_store.describe() if self.parameter_store is not None else {"class": "NotConfigured"},
            },
        }


def _settings(cls: Type[T], adapter: str, raw: Dict[str, Any]) -> T:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValidationError(f"unknown settings for adapter={adapter!r}: {unknown} (allowed: {sorted(known)})")
    return cls(**raw)


def build_engine(spec: AdapterSpec, repo_root: Optional[Path] = None) -> ContainerEngine:
    if spec.kind == "docker_cli":
        return DockerCliEngine(settings=_settings(DockerCliSettings, "container_engine", spec.settings))
    if spec.kind == "dry_run":
        settings = _settings(DryRunSettings, "container_engine", spec.settings)
        if settings.plan_path and repo_root is not None and not Path(settings.plan_path).is_absolute():
            settings = replace(settings, plan_path=str((repo_root / settings.plan_path).resolve()))
        return DryRunEngine(settings=settings)
    raise ValidationError(f"unsupported container_engine kind: {spec.kind!r}")


def build_parameter_store(spec: AdapterSpec, engine: ContainerEngine) -> ParameterStore:
    if spec.kind == "aws_cli_container":
        return AwsCliParameterStore(
            engine=engine,
            settings=_settings(AwsCliParameterStoreSettings, "parameter_store", spec.settings),
        )
    if spec.kind == "ssm_boto3":
        return SsmParameterStore(settings=_settings(SsmParameterStoreSettings, "parameter_store", spec.settings))
    raise ValidationError(f"unsupported parameter_store kind: {spec.kind!r}")


def build_toolbox(repo_root: Path, cli_path: Optional[str] = None) -> ToolboxBundle:
    profile = load_runtime_profile(repo_root, cli_path)
    engine = build_engine(profile.adapters["container_engine"], repo_root)
    store: Optional[ParameterStore] = None
    if "parameter_store" in profile.adapters:
        store = build_parameter_store(profile.adapters["parameter_store"], engine)
    return ToolboxBundle(profile=profile, engine=engine, parameter_store=store)
