from __future__ import annotations

from typing import Any, Dict, Optional

import yaml

from toolbox.engine import Container, ContainerEngine, HostDirectory, Secret, ValidationError, container
from toolbox.utils.yamlio import parse_yaml

# Dependency install command per Pulumi runtime. dotnet restores on first run.
RUNTIME_DEP_COMMANDS: Dict[str, str] = {
    "go": "go mod tidy",
    "nodejs": "npm install",
    "python": "pip install -r requirements.txt",
    "dotnet": "",
}

ESC_INSTALL_CMD = "curl -fsSL https://get.pulumi.com/esc/install.sh | sh"
DOCKER_ENGINE_IMAGE = "docker:dind"


def docker_engine() -> Container:
    """A docker daemon listening without TLS on port 2375."""
    return (
        container()
        .from_(DOCKER_ENGINE_IMAGE)
        .with_env_variable("DOCKER_TLS_CERTDIR", "")
        .with_readiness_check(["docker", "-H", "tcp://127.0.0.1:2375", "info"])
        .with_exec(
            ["dockerd-entrypoint.sh", "dockerd", "--host=tcp://0.0.0.0:2375", "--tls=false"],
            insecure_root_capabilities=True,
        )
    )


def project_runtime(src: HostDirectory) -> str:
    """Return the runtime declared in ``Pulumi.yaml``."""
    f = src.file("Pulumi.yaml")
    if not f.path.is_file():
        raise ValidationError(f"a Pulumi.yaml file not found in {src.path}")
    try:
        project = parse_yaml(f.contents())
    except yaml.YAMLError as e:
        raise ValidationError(f"invalid Pulumi.yaml in {src.path}: {e}")
    if not isinstance(project, dict):
        raise ValidationError(f"invalid Pulumi.yaml in {src.path}")
    runtime: Any = project.get("runtime")
    # runtime may be a plain string or {name: ..., options: {...}}
    if isinstance(runtime, dict):
        runtime = runtime.get("name")
    return str(runtime or "").strip()


class Pulumi:
    """Pulumi CLI against a project directory.

    Set a pulumi token and either AWS keys or an ESC environment before
    running commands.
    """

    def __init__(self, *, engine: ContainerEngine):
        self.engine = engine
        self.aws_access_key: Optional[Secret] = None
        self.aws_secret_key: Optional[Secret] = None
        self.pulumi_token: Optional[Secret] = None
        self.esc_env = ""
        self.version = ""
        self.docker = False

    def from_version(self, version: str) -> "Pulumi":
        """Tag of Pulumi's docker image to use as base."""
        self.version = version
        return self

    def with_aws_credentials(self, aws_access_key: Secret, aws_secret_key: Secret) -> "Pulumi":
        self.aws_access_key = aws_access_key
        self.aws_secret_key = aws_secret_key
        return self

    def with_esc(self, env: str) -> "Pulumi":
        """Use Pulumi ESC as the provider of AWS OIDC credentials."""
        self.esc_env = env
        return self

    def with_pulumi_token(self, pulumi_token: Secret) -> "Pulumi":
        self.pulumi_token = pulumi_token
        return self

    def with_docker(self) -> "Pulumi":
        self.docker = True
        return self

    def up(self, src: HostDirectory, stack: str) -> str:
        # NOTE: this changes resources in your cloud.
        return self._command_output(src, f"pulumi up --stack {stack} --yes --non-interactive")

    def preview(self, src: HostDirectory, stack: str) -> str:
        return self._command_output(src, f"pulumi preview --stack {stack} --non-interactive --diff")

    def refresh(self, src: HostDirectory, stack: str) -> str:
        return self._command_output(src, f"pulumi refresh --stack {stack} --non-interactive --diff")

    def destroy(self, src: HostDirectory, stack: str) -> str:
        # NOTE: this destroys every resource created by the stack.
        return self._command_output(src, f"pulumi destroy --stack {stack} --non-interactive --yes")

    def run(self, src: HostDirectory, command: str) -> str:
        return self._command_output(src, f"pulumi {command}")

    def output(self, src: HostDirectory, property: str, stack: str) -> str:
        return self._command_output(src, f"pulumi stack select {stack} && pulumi stack output {property}")

    def _command_output(self, src: HostDirectory, command: str) -> str:
        ctr = self.authenticated_container(src)
        return self.engine.stdout(ctr.with_exec(["/bin/bash", "-c", command]))

    def authenticated_container(self, src: HostDirectory) -> Container:
        if self.pulumi_token is None:
            raise ValidationError("pulumi token is required. Use `with_pulumi_token` to set it")

        ct = self.container(src)

        if not self.esc_env:
            if self.aws_access_key is None or self.aws_secret_key is None:
                raise ValidationError("no cloud provider credentials were provided")
            ct = ct.with_secret_variable("AWS_ACCESS_KEY_ID", self.aws_access_key).with_secret_variable(
                "AWS_SECRET_ACCESS_KEY", self.aws_secret_key
            )
        return ct

    def container(self, src: HostDirectory) -> Container:
        """Base container with the Pulumi CLI, project dependencies and ESC installed."""
        if self.pulumi_token is None:
            raise ValidationError("pulumi token is required. Use `with_pulumi_token` to set it")

        runtime = project_runtime(src)
        if runtime not in RUNTIME_DEP_COMMANDS:
            raise ValidationError(f"unsupported pulumi runtime: {runtime}")

        ct = (
            container()
            .from_(f"pulumi/pulumi-{runtime}:{self.version or 'latest'}")
            .with_secret_variable("PULUMI_ACCESS_TOKEN", self.pulumi_token)
            .with_mounted_directory("/infra", src)
            .with_workdir("/infra")
        )
        dep_cmd = RUNTIME_DEP_COMMANDS[runtime]
        if dep_cmd:
            ct = ct.with_exec(["/bin/bash", "-c", dep_cmd])
        ct = ct.with_exec(["/bin/bash", "-c", ESC_INSTALL_CMD])
        if self.esc_env:
            ct = ct.with_exec(["/bin/bash", "-c", f"$HOME/.pulumi/bin/esc env open {self.esc_env}"])

        if self.docker:
            ct = ct.with_env_variable("DOCKER_HOST", "tcp://docker:2375").with_service_binding("docker", docker_engine())
        return ct
