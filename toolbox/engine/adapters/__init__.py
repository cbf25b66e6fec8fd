from __future__ import annotations

from .docker_cli import DockerCliEngine, DockerCliSettings
from .dry_run import DryRunEngine, DryRunSettings
from .params_aws_cli import AwsCliParameterStore, AwsCliParameterStoreSettings
from .params_ssm import SsmParameterStore, SsmParameterStoreSettings

__all__ = [
    "DockerCliEngine",
    "DockerCliSettings",
    "DryRunEngine",
    "DryRunSettings",
    "AwsCliParameterStore",
    "AwsCliParameterStoreSettings",
    "SsmParameterStore",
    "SsmParameterStoreSettings",
]
