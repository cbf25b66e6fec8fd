from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict

from ..container import Container, HostDirectory, Secret, container
from ..contracts import ContainerEngine, ParameterStore


@dataclass(frozen=True)
class AwsCliParameterStoreSettings:
    image: str = "amazon/aws-cli:latest"
    region: str = "us-east-2"


class AwsCliParameterStore(ParameterStore):
    """ParameterStore running ``aws ssm`` inside the official AWS CLI image.

    The AWS directory is mounted at ``/root/.aws``. Values are mounted as a
    secret file and passed with ``file://`` so they never reach argv.
    """

    def __init__(self, *, engine: ContainerEngine, settings: AwsCliParameterStoreSettings = AwsCliParameterStoreSettings()):
        self.engine = engine
        self.settings = settings

    def _aws_cli(self, aws_dir: HostDirectory, aws_profile: str) -> Container:
        return (
            container()
            .from_(self.settings.image)
            .with_mounted_directory("/root/.aws", aws_dir)
            .with_env_variable("AWS_PROFILE", aws_profile)
            .with_env_variable("AWS_REGION", self.settings.region)
            .with_env_variable("CACHE_BUST", str(time.time_ns()))
        )

    def put_parameter(self, *, aws_dir: HostDirectory, aws_profile: str, name: str, value: Secret) -> str:
        ctr = (
            self._aws_cli(aws_dir, aws_profile)
            .with_mounted_secret("/tmp/parameter-value", value)
            .with_exec(
                [
                    "aws", "ssm", "put-parameter",
                    "--type", "String",
                    "--name", name,
                    "--overwrite",
                    "--value", "file:///tmp/parameter-value",
                ]
            )
        )
        return self.engine.stdout(ctr)

    def delete_parameter(self, *, aws_dir: HostDirectory, aws_profile: str, name: str) -> str:
        ctr = self._aws_cli(aws_dir, aws_profile).with_exec(["aws", "ssm", "delete-parameter", "--name", name])
        return self.engine.stdout(ctr)

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__, "image": self.settings.image, "region": self.settings.region}
