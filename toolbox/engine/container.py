from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .errors import ValidationError


@dataclass(frozen=True)
class Secret:
    """A named sensitive value.

    The value never appears in ``repr`` and is only handed to the engine when a
    container is evaluated (as a client-side env var or a read-only file mount).
    """

    name: str
    value: str = field(repr=False)

    @classmethod
    def from_plaintext(cls, name: str, value: str) -> "Secret":
        return cls(name=name, value=str(value))

    @classmethod
    def from_env(cls, env_name: str, name: str = "") -> "Secret":
        v = os.environ.get(env_name)
        if v is None:
            raise ValidationError(f"secret env var not set: {env_name}")
        return cls(name=name or env_name.lower(), value=v)

    @classmethod
    def from_file(cls, path: Union[str, Path], name: str = "") -> "Secret":
        p = Path(path).expanduser()
        if not p.is_file():
            raise ValidationError(f"secret file not found: {p}")
        return cls(name=name or p.name, value=p.read_text(encoding="utf-8"))

    def plaintext(self) -> str:
        return self.value


@dataclass(frozen=True)
class HostFile:
    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path).expanduser())

    def contents(self) -> str:
        if not self.path.is_file():
            raise ValidationError(f"host file not found: {self.path}")
        return self.path.read_text(encoding="utf-8")


@dataclass(frozen=True)
class HostDirectory:
    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path).expanduser())

    def file(self, rel: str) -> HostFile:
        return HostFile(self.path / rel)


@dataclass(frozen=True)
class CacheVolume:
    name: str


@dataclass(frozen=True)
class Step:
    """One layered instruction of a container description.

    Only ``exec`` and file steps produce a new image when evaluated; the other
    kinds update the state that later steps run with.
    """

    kind: str
    path: str = ""
    name: str = ""
    value: Any = None
    args: Tuple[str, ...] = ()
    use_entrypoint: bool = False
    insecure_root_capabilities: bool = False
    permissions: int = 0o644


LAYER_KINDS = ("exec", "file", "new_file")


@dataclass(frozen=True)
class ServiceBinding:
    alias: str
    service: "Container"


@dataclass
class ContainerState:
    """Accumulated state of a container at a given step."""

    workdir: str = ""
    env: Dict[str, str] = field(default_factory=dict)
    secret_env: Dict[str, Secret] = field(default_factory=dict)
    secret_mounts: Dict[str, Secret] = field(default_factory=dict)
    directory_mounts: Dict[str, HostDirectory] = field(default_factory=dict)
    cache_mounts: Dict[str, CacheVolume] = field(default_factory=dict)
    entrypoint: Optional[Tuple[str, ...]] = None
    services: Dict[str, "Container"] = field(default_factory=dict)
    readiness_check: Tuple[str, ...] = ()

    def apply(self, step: Step) -> None:
        k = step.kind
        if k == "workdir":
            self.workdir = step.path
        elif k == "env":
            self.secret_env.pop(step.name, None)
            self.env[step.name] = str(step.value)
        elif k == "secret_env":
            self.env.pop(step.name, None)
            self.secret_env[step.name] = step.value
        elif k == "mount_secret":
            self.secret_mounts[step.path] = step.value
        elif k == "mount_dir":
            self.directory_mounts[step.path] = step.value
        elif k == "mount_cache":
            self.cache_mounts[step.path] = step.value
        elif k == "entrypoint":
            self.entrypoint = tuple(step.args) if step.args else None
        elif k == "service":
            self.services[step.value.alias] = step.value.service
        elif k == "readiness_check":
            self.readiness_check = tuple(step.args)

    def command_for(self, step: Step) -> List[str]:
        args = list(step.args)
        if step.use_entrypoint and self.entrypoint:
            return list(self.entrypoint) + args
        return args


FileSource = Union[HostFile, "ContainerFile"]


@dataclass(frozen=True)
class Container:
    """Immutable, lazily-evaluated container description.

    Builder methods return new containers, so a base container can be shared
    and extended by several callers. Nothing runs until an engine evaluates it.
    """

    image: str = ""
    steps: Tuple[Step, ...] = ()

    def _add(self, step: Step) -> "Container":
        return replace(self, steps=self.steps + (step,))

    def from_(self, image: str) -> "Container":
        if not str(image or "").strip():
            raise ValidationError("container image must be non-empty")
        return Container(image=str(image).strip(), steps=())

    def with_exec(
        self,
        args: Sequence[str],
        *,
        use_entrypoint: bool = False,
        insecure_root_capabilities: bool = False,
    ) -> "Container":
        if isinstance(args, str):
            raise ValidationError("with_exec expects a list of arguments, not a string")
        return self._add(
            Step(
                kind="exec",
                args=tuple(str(a) for a in args),
                use_entrypoint=use_entrypoint,
                insecure_root_capabilities=insecure_root_capabilities,
            )
        )

    def with_workdir(self, path: str) -> "Container":
        return self._add(Step(kind="workdir", path=path))

    def with_env_variable(self, name: str, value: str) -> "Container":
        return self._add(Step(kind="env", name=name, value=str(value)))

    def with_secret_variable(self, name: str, secret: Secret) -> "Container":
        return self._add(Step(kind="secret_env", name=name, value=secret))

    def with_mounted_secret(self, path: str, secret: Secret) -> "Container":
        return self._add(Step(kind="mount_secret", path=path, value=secret))

    def with_file(self, path: str, source: FileSource, permissions: Optional[int] = None) -> "Container":
        if not isinstance(source, (HostFile, ContainerFile)):
            raise ValidationError(f"unsupported file source: {source!r}")
        return self._add(Step(kind="file", path=path, value=source, permissions=permissions or 0o644))

    def with_new_file(self, path: str, contents: str, permissions: int = 0o644) -> "Container":
        return self._add(Step(kind="new_file", path=path, value=str(contents), permissions=permissions))

    def with_mounted_directory(self, path: str, directory: HostDirectory) -> "Container":
        return self._add(Step(kind="mount_dir", path=path, value=directory))

    def with_mounted_cache(self, path: str, cache: CacheVolume) -> "Container":
        return self._add(Step(kind="mount_cache", path=path, value=cache))

    def with_entrypoint(self, args: Sequence[str]) -> "Container":
        return self._add(Step(kind="entrypoint", args=tuple(args)))

    def without_entrypoint(self) -> "Container":
        return self._add(Step(kind="entrypoint", args=()))

    def with_service_binding(self, alias: str, service: "Container") -> "Container":
        return self._add(Step(kind="service", name=alias, value=ServiceBinding(alias=alias, service=service)))

    def with_readiness_check(self, args: Sequence[str]) -> "Container":
        """Command that exits 0 once this container, run as a service, accepts clients."""
        if isinstance(args, str):
            raise ValidationError("with_readiness_check expects a list of arguments, not a string")
        return self._add(Step(kind="readiness_check", args=tuple(str(a) for a in args)))

    def with_(self, fn: Callable[["Container"], "Container"]) -> "Container":
        return fn(self)

    def file(self, path: str) -> "ContainerFile":
        return ContainerFile(container=self, path=path)

    # Inspection helpers

    def state(self) -> ContainerState:
        st = ContainerState()
        for s in self.steps:
            st.apply(s)
        return st

    def execs(self) -> List[List[str]]:
        st = ContainerState()
        out: List[List[str]] = []
        for s in self.steps:
            st.apply(s)
            if s.kind == "exec":
                out.append(st.command_for(s))
        return out

    def files(self) -> Dict[str, Any]:
        return {s.path: s.value for s in self.steps if s.kind in ("file", "new_file")}

    def without_last_exec(self) -> Tuple["Container", Optional[Step]]:
        for i in range(len(self.steps) - 1, -1, -1):
            if self.steps[i].kind == "exec":
                return replace(self, steps=self.steps[:i] + self.steps[i + 1 :]), self.steps[i]
        return self, None


@dataclass(frozen=True)
class ContainerFile:
    """A file produced inside a container, resolved by an engine."""

    container: Container
    path: str


def container() -> Container:
    """Return an empty container description; call ``from_`` next."""
    return Container()
