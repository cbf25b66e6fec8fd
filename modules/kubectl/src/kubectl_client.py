"""kubectl through the authentication methods clusters need.

The main challenge of talking to a cluster from a container is how the client
authenticates. ``Kubectl`` holds the kubeconfig and exposes one method per
supported setup; each returns a ``KubectlCLI`` whose container already has the
tools and credentials in place.
"""

from __future__ import annotations

from typing import Optional, Sequence

from toolbox.engine import Container, ContainerEngine, HostFile, container

KUBECTL_VERSION = "v1.29.1"
AWS_IAM_AUTHENTICATOR_URL = (
    "https://github.com/kubernetes-sigs/aws-iam-authenticator/releases/download/"
    "v0.6.14/aws-iam-authenticator_0.6.14_linux_amd64"
)
BASE_CONTAINER_IMAGE = "debian:trixie-slim"


class KubectlCLI:
    """A container configured to talk to a cluster."""

    def __init__(self, *, engine: ContainerEngine, ctr: Container):
        self.engine = engine
        self.container = ctr

    def exec(self, cmd: Sequence[str]) -> str:
        """Run kubectl; ``cmd`` excludes the ``kubectl`` binary itself."""
        return self.engine.stdout(self.container.with_exec(list(cmd), use_entrypoint=True))

    def debug_sh(self) -> Container:
        """The same container without the kubectl entrypoint, for troubleshooting."""
        return self.container.without_entrypoint()

    def first_pod_logs(self, namespace: str = "kube-system") -> str:
        out = self.exec(["get", "pods", "-n", namespace, "-o", "jsonpath={.items[0].metadata.name}"])
        pod = out.strip().strip("'")
        if not pod:
            return ""
        return self.exec(["logs", "-n", namespace, pod])


class Kubectl:
    def __init__(self, *, engine: ContainerEngine, kubeconfig: HostFile):
        self.engine = engine
        self.kubeconfig = kubeconfig

    def kubectl_eks(self, *, aws_creds: HostFile, aws_profile: str, aws_config: Optional[HostFile] = None) -> KubectlCLI:
        """kubectl with aws-iam-authenticator and AWS credentials for an EKS cluster."""
        kubectl = f"https://dl.k8s.io/release/{KUBECTL_VERSION}/bin/linux/amd64/kubectl"
        c = (
            container()
            .from_(BASE_CONTAINER_IMAGE)
            .with_exec(["apt", "update"])
            .with_exec(["apt", "install", "-y", "curl", "gettext-base"])
            .with_exec(["curl", "-sL", "-o", "/bin/kubectl", kubectl])
            .with_exec(["chmod", "+x", "/bin/kubectl"])
            .with_exec(["curl", "-sL", "-o", "/bin/aws-iam-authenticator", AWS_IAM_AUTHENTICATOR_URL])
            .with_exec(["chmod", "+x", "/bin/aws-iam-authenticator"])
            .with_file("/root/.kube/config", self.kubeconfig)
            .with_file("/root/.aws/credentials", aws_creds)
        )
        if aws_config is not None:
            c = c.with_file("/root/.aws/config", aws_config)
        return KubectlCLI(
            engine=self.engine,
            ctr=c.with_env_variable("AWS_PROFILE", aws_profile).with_entrypoint(["/bin/kubectl"]),
        )
