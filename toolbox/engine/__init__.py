from __future__ import annotations

from .container import (
    CacheVolume,
    Container,
    ContainerFile,
    ContainerState,
    HostDirectory,
    HostFile,
    Secret,
    ServiceBinding,
    Step,
    container,
)

from .errors import (
    ToolboxError,
    NotFoundError,
    ValidationError,
    NotConfiguredError,
    ExecError,
    GitError,
)

from .contracts import (
    ContainerEngine,
    ParameterStore,
)

from .config import (
    RuntimeProfile,
    AdapterSpec,
    load_runtime_profile,
    resolve_runtime_profile_path,
)

from .factory import (
    ToolboxBundle,
    build_toolbox,
)

__all__ = [
    "CacheVolume",
    "Container",
    "ContainerFile",
    "ContainerState",
    "HostDirectory",
    "HostFile",
    "Secret",
    "ServiceBinding",
    "Step",
    "container",
    "ToolboxError",
    "NotFoundError",
    "ValidationError",
    "NotConfiguredError",
    "ExecError",
    "GitError",
    "ContainerEngine",
    "ParameterStore",
    "RuntimeProfile",
    "AdapterSpec",
    "load_runtime_profile",
    "resolve_runtime_profile_path",
    "ToolboxBundle",
    "build_toolbox",
]
