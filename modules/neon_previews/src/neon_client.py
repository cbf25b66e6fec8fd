from __future__ import annotations

import json
import shlex
import sys
import time
from typing import Any, List

from slugify import slugify

from toolbox.engine import Container, ContainerEngine, HostDirectory, ParameterStore, Secret, ValidationError, container

PREVIEW_COMPUTE_UNITS = "0.25"
PREVIEW_SUSPEND_TIMEOUT = "300"
PREVIEW_TYPE = "read_write"
PREVIEW_PARENT = "main"
PREVIEW_DATABASE = "example"
PREVIEW_ROLE = "example"

NEONCTL_VERSION = "v2.6.0"
NEONCTL_URL = f"https://github.com/neondatabase/neonctl/releases/download/{NEONCTL_VERSION}/neonctl-linux-x64"
BASE_IMAGE = (
    "debian:stable-20250113-slim@sha256:b5ace515e78743215a1b101a6f17e59ed74b17132139ca3af3c37e605205e973"
)

SLUG_MAX_LENGTH = 50


# English symbol substitutions so "&" and "@" survive as words.
SLUG_REPLACEMENTS = [["_", "-"], ["&", "and"], ["@", "at"]]


def branch_slug(branch: str) -> str:
    return slugify(branch, max_length=SLUG_MAX_LENGTH, word_boundary=True, replacements=SLUG_REPLACEMENTS)


def parameter_name(branch: str) -> str:
    return f"neon-{branch}"


def _log(msg: str) -> None:
    print(f"[neon_previews] {msg}", file=sys.stderr)


class Neonctl:
    """neonctl bound to one project, run in a small debian image."""

    def __init__(self, *, engine: ContainerEngine, api_key: Secret, project_id: str):
        if not str(project_id or "").strip():
            raise ValidationError("project_id is required")
        self.engine = engine
        self.project_id = project_id
        self.ctr = (
            container()
            .from_(BASE_IMAGE)
            .with_exec(["sh", "-c", "apt update && apt install -y curl"])
            .with_exec(["sh", "-c", f"curl -sL {NEONCTL_URL} -o /bin/neonctl"])
            .with_exec(["chmod", "+x", "/bin/neonctl"])
            .with_secret_variable("NEON_API_KEY", api_key)
        )

    def _fresh(self) -> Container:
        return self.ctr.with_env_variable("CACHE_BUST", str(time.time_ns()))

    def exec(self, *args: str) -> str:
        return self.engine.stdout(self._fresh().with_exec(["/bin/neonctl", "--project-id", self.project_id] + list(args)))

    def branch_names(self) -> List[str]:
        out = self.exec("branches", "list", "--output", "json")
        try:
            rows: Any = json.loads(out or "[]")
        except json.JSONDecodeError as e:
            raise ValidationError(f"unexpected neonctl branches list output: {e}")
        if not isinstance(rows, list):
            raise ValidationError("unexpected neonctl branches list output: not a list")
        return [str(r.get("name") or "") for r in rows if isinstance(r, dict)]

    def branch_exists(self, branch: str) -> bool:
        return branch in self.branch_names()

    def connection_string(self, branch: str) -> Secret:
        cmd = " ".join(
            shlex.quote(a)
            for a in [
                "/bin/neonctl", "--project-id", self.project_id,
                "connection-string", branch,
                "--role-name", PREVIEW_ROLE,
                "--database-name", PREVIEW_DATABASE,
            ]
        )
        ctr = self._fresh().with_exec(["sh", "-c", f"{cmd} > /tmp/connection-string"])
        value = self.engine.file_contents(ctr.file("/tmp/connection-string"))
        return Secret.from_plaintext("connection-string", value.strip("\n"))


class NeonPreviews:
    """Preview database branches whose connection strings live in a parameter store."""

    def __init__(self, *, engine: ContainerEngine, parameter_store: ParameterStore):
        self.engine = engine
        self.parameter_store = parameter_store

    def provision_preview_db(
        self,
        *,
        branch: str,
        project_id: str,
        neon_api_key: Secret,
        aws_dir: HostDirectory,
        aws_profile: str,
    ) -> str:
        """Create the preview branch and store its connection string. Returns the slugged branch."""
        branch = branch_slug(branch)
        if not branch:
            raise ValidationError("branch is empty after slugging")
        neon = Neonctl(engine=self.engine, api_key=neon_api_key, project_id=project_id)

        if neon.branch_exists(branch):
            _log(f"preview branch {branch} already exists")
            return branch

        neon.exec(
            "branches", "create",
            "--name", branch,
            "--parent", PREVIEW_PARENT,
            "--type", PREVIEW_TYPE,
            "--suspend-timeout", PREVIEW_SUSPEND_TIMEOUT,
            "--cu", PREVIEW_COMPUTE_UNITS,
        )
        conn = neon.connection_string(branch)
        self.parameter_store.put_parameter(
            aws_dir=aws_dir, aws_profile=aws_profile, name=parameter_name(branch), value=conn
        )
        _log(f"preview branch {branch} provisioned")
        return branch

    def destroy_preview_db(
        self,
        *,
        branch: str,
        project_id: str,
        neon_api_key: Secret,
        aws_dir: HostDirectory,
        aws_profile: str,
    ) -> str:
        branch = branch_slug(branch)
        if not branch:
            raise ValidationError("branch is empty after slugging")
        neon = Neonctl(engine=self.engine, api_key=neon_api_key, project_id=project_id)

        if not neon.branch_exists(branch):
            _log(f"preview branch {branch} does not exist")
            return branch

        neon.exec("branches", "delete", branch)
        self.parameter_store.delete_parameter(aws_dir=aws_dir, aws_profile=aws_profile, name=parameter_name(branch))
        _log(f"preview branch {branch} destroyed")
        return branch
