from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict

from ..container import HostDirectory, Secret
from ..contracts import ParameterStore
from ..errors import NotFoundError, ValidationError


@dataclass(frozen=True)
class SsmParameterStoreSettings:
    """Settings for SsmParameterStore.

    region falls back to AWS_REGION then AWS_DEFAULT_REGION when empty.
    """

    region: str = "us-east-2"


class SsmParameterStore(ParameterStore):
    """ParameterStore backed by AWS SSM through boto3.

    Credentials come from the ``credentials``/``config`` files of the given AWS
    directory and the named profile, like the AWS CLI would read them.
    """

    def __init__(self, *, settings: SsmParameterStoreSettings = SsmParameterStoreSettings()):
        self.settings = settings

    def _region(self) -> str:
        r = str(self.settings.region or "").strip()
        if r:
            return r
        return str(os.environ.get("AWS_REGION", "") or os.environ.get("AWS_DEFAULT_REGION", "") or "").strip()

    def _client(self, aws_dir: HostDirectory, aws_profile: str):
        import boto3
        import botocore.session

        if not aws_dir.path.is_dir():
            raise ValidationError(f"AWS directory not found: {aws_dir.path}")

        core = botocore.session.Session(profile=aws_profile or None)
        creds = aws_dir.path / "credentials"
        cfg = aws_dir.path / "config"
        if creds.exists():
            core.set_config_variable("credentials_file", str(creds))
        if cfg.exists():
            core.set_config_variable("config_file", str(cfg))

        region = self._region()
        session = boto3.session.Session(botocore_session=core, region_name=region or None)
        return session.client("ssm")

    def put_parameter(self, *, aws_dir: HostDirectory, aws_profile: str, name: str, value: Secret) -> str:
        from botocore.exceptions import ClientError

        client = self._client(aws_dir, aws_profile)
        try:
            resp = client.put_parameter(Name=name, Value=value.plaintext(), Type="String", Overwrite=True)
        except ClientError as e:
            raise ValidationError(f"SSM put-parameter failed: {name} ({e})")
        return json.dumps({"Version": resp.get("Version"), "Tier": resp.get("Tier")})

    def delete_parameter(self, *, aws_dir: HostDirectory, aws_profile: str, name: str) -> str:
        from botocore.exceptions import ClientError

        client = self._client(aws_dir, aws_profile)
        try:
            client.delete_parameter(Name=name)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code == "ParameterNotFound":
                raise NotFoundError(f"SSM parameter not found: {name}")
            raise ValidationError(f"SSM delete-parameter failed: {name} ({e})")
        return ""

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__, "region": self._region()}
