from __future__ import annotations

from typing import Optional, Sequence

from toolbox.engine import Container, ContainerEngine, ContainerFile, HostFile, Secret, container

BASE_IMAGE = "alpine:3.19"
AWS_IAM_AUTHENTICATOR_URL = (
    "https://github.com/kubernetes-sigs/aws-iam-authenticator/releases/download/"
    "v0.6.14/aws-iam-authenticator_0.6.14_linux_amd64"
)
CLUSTER_PATH = "/cluster.yaml"
KUBECONFIG_PATH = "/kubeconfig.yaml"


def release_asset(version: str) -> str:
    if not version or version == "latest":
        return "https://github.com/eksctl-io/eksctl/releases/latest/download/eksctl_Linux_amd64.tar.gz"
    return f"https://github.com/eksctl-io/eksctl/releases/download/{version}/eksctl_Linux_amd64.tar.gz"


def eksctl_container(
    version: str,
    aws_creds: Secret,
    aws_profile: str,
    aws_config: Optional[HostFile],
    cluster: HostFile,
) -> Container:
    def _aws_config(c: Container) -> Container:
        if aws_config is not None:
            return c.with_file("/root/.aws/config", aws_config)
        return c

    return (
        container()
        .from_(BASE_IMAGE)
        .with_exec(["apk", "add", "--no-cache", "--update", "curl", "tar"])
        .with_workdir("/")
        .with_exec(["curl", "-sL", "-o", "eksctl.tar.gz", release_asset(version)])
        .with_exec(["tar", "-xzf", "eksctl.tar.gz", "-C", "/bin"])
        .with_exec(["rm", "eksctl.tar.gz"])
        .with_exec(["curl", "-sL", "-o", "/bin/aws-iam-authenticator", AWS_IAM_AUTHENTICATOR_URL])
        .with_exec(["chmod", "+x", "/bin/aws-iam-authenticator"])
        .with_mounted_secret("/root/.aws/credentials", aws_creds)
        .with_(_aws_config)
        .with_env_variable("AWS_PROFILE", aws_profile)
        .with_file(CLUSTER_PATH, cluster)
        .with_entrypoint(["/bin/eksctl"])
    )


class Eksctl:
    """eksctl bound to a single ClusterConfig file."""

    def __init__(
        self,
        *,
        engine: ContainerEngine,
        aws_creds: Secret,
        aws_profile: str,
        cluster: HostFile,
        aws_config: Optional[HostFile] = None,
        version: str = "latest",
    ):
        self.engine = engine
        self.cluster = cluster
        self.container = eksctl_container(version, aws_creds, aws_profile, aws_config, cluster)

    def with_container(self, ctr: Container) -> "Eksctl":
        """Replace the container used to run eksctl.

        Build on top of ``self.container`` rather than starting from scratch;
        the replacement is expected to keep the entrypoint and mounts.
        """
        self.container = ctr
        return self

    def exec(self, command: Sequence[str]) -> str:
        return self.engine.stdout(self.container.with_exec(list(command), use_entrypoint=True))

    def create(self, flags: Sequence[str] = ()) -> str:
        return self.exec(["create", "cluster", "-f", CLUSTER_PATH, *flags])

    def delete(self, flags: Sequence[str] = ()) -> str:
        return self.exec(["delete", "cluster", "-f", CLUSTER_PATH, *flags])

    def kubeconfig(self) -> ContainerFile:
        return self.container.with_exec(
            ["utils", "write-kubeconfig", "-f", CLUSTER_PATH, "--kubeconfig", KUBECONFIG_PATH],
            use_entrypoint=True,
        ).file(KUBECONFIG_PATH)
