from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Protocol, Union

from .container import Container, ContainerFile, HostDirectory, Secret


class ContainerEngine(Protocol):
    # True when execs are recorded, not run. Output is empty.
    dry_run: bool = False

    def stdout(self, container: Container) -> str:
        raise NotImplementedError

    def sync(self, container: Container) -> None:
        raise NotImplementedError

    def file_contents(self, file: ContainerFile) -> str:
        raise NotImplementedError

    def export_file(self, file: ContainerFile, dest: Union[str, Path]) -> Path:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def describe(self) -> Dict[str, Any]:
        raise NotImplementedError


class ParameterStore(Protocol):
    """Store for named string parameters (connection strings and similar).

    Credentials come from an AWS CLI style directory (``config`` and
    ``credentials`` files) and a profile name.
    """

    def put_parameter(self, *, aws_dir: HostDirectory, aws_profile: str, name: str, value: Secret) -> str:
        raise NotImplementedError

    def delete_parameter(self, *, aws_dir: HostDirectory, aws_profile: str, name: str) -> str:
        raise NotImplementedError

    def describe(self) -> Dict[str, Any]:
        raise NotImplementedError
