from __future__ import annotations

import base64
import os
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from toolbox.engine import Container, ContainerEngine, GitError, Secret, ValidationError, container

YQ_VERSION = "4.40.7"

GitRunner = Callable[..., subprocess.CompletedProcess]


def _run(cmd: List[str], cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
    return subprocess.run(cmd, check=False, text=True, capture_output=True, cwd=cwd, env=env)


def commit_message(app_name: str, image_url: str) -> str:
    if app_name:
        return f"Updating {app_name} resource with image: {image_url}"
    return f"Updating resource with image: {image_url}"


def yq_set_image(base: Container, manifest: str, containers: Sequence[int]) -> Container:
    """Container whose ``deployment.yaml`` has every listed container image replaced.

    The image URL is read from ``IMAGE_URL`` so it is never spliced into the
    yq expression.
    """
    ctr = base.with_new_file("deployment.yaml", manifest, permissions=0o666).without_entrypoint()
    for cid in containers:
        ctr = ctr.with_exec(
            ["yq", "-i", f".spec.template.spec.containers[{int(cid)}].image = strenv(IMAGE_URL)", "deployment.yaml"]
        )
    return ctr


def _repo_files(clone: Path, files: Sequence[str]) -> List[Path]:
    """Resolve ``files`` inside the clone, rejecting paths that leave it."""
    root = clone.resolve()
    out = []
    for rel in files:
        target = (clone / rel).resolve()
        try:
            target.relative_to(root)
        except ValueError:
            raise ValidationError(f"file is outside the repository: {rel}")
        if not target.is_file():
            raise ValidationError(f"file not found in repository: {rel}")
        out.append(target)
    return out


class ImageUpdater:
    def __init__(self, *, engine: ContainerEngine, git_runner: Optional[GitRunner] = None):
        self.engine = engine
        self._git_runner = git_runner or _run

    def _git(self, args: List[str], *, cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> str:
        cmd = ["git"] + args
        cp = self._git_runner(cmd, cwd=cwd, env=env)
        if cp.returncode != 0:
            raise GitError(f"git {args[0]} failed rc={cp.returncode}: {(cp.stderr or '').strip()}")
        return cp.stdout or ""

    @staticmethod
    def _auth_env(git_user: str, git_password: Secret) -> Dict[str, str]:
        # Basic auth goes through env-provided config so it never lands in argv,
        # the remote URL or .git/config.
        token = base64.b64encode(f"{git_user}:{git_password.plaintext()}".encode("utf-8")).decode("ascii")
        env = dict(os.environ)
        env.update(
            {
                "GIT_TERMINAL_PROMPT": "0",
                "GIT_CONFIG_COUNT": "1",
                "GIT_CONFIG_KEY_0": "http.extraHeader",
                "GIT_CONFIG_VALUE_0": f"Authorization: Basic {token}",
            }
        )
        return env

    def update(
        self,
        *,
        repo: str,
        branch: str,
        files: Sequence[str],
        image_url: str,
        git_user: str,
        git_email: str,
        git_password: Secret,
        app_name: str = "",
        force_with_lease: bool = False,
        containers: Optional[Sequence[int]] = None,
    ) -> str:
        """Update the image of ``containers`` in every file, commit and push to ``branch``.

        Returns the pushed commit sha. On a dry-run engine nothing is written,
        committed or pushed and the sha of the cloned head is returned.
        """
        if not files:
            raise ValidationError("at least one file to update is required")
        if not containers:
            containers = [0]

        env = self._auth_env(git_user, git_password)
        workdir = Path(tempfile.mkdtemp(prefix="image-updater-"))
        try:
            clone = workdir / "repo"
            self._git(
                ["clone", "--depth", "1", "--single-branch", "--branch", branch, repo, str(clone)],
                env=env,
            )
            targets = _repo_files(clone, files)

            yq = container().from_(f"mikefarah/yq:{YQ_VERSION}").with_env_variable("IMAGE_URL", image_url)
            updates = []
            for target in targets:
                updated = self.engine.file_contents(
                    yq_set_image(yq, target.read_text(encoding="utf-8"), containers).file("deployment.yaml")
                )
                updates.append((target, updated))

            msg = commit_message(app_name, image_url)
            if self.engine.dry_run:
                head = self._git(["rev-parse", "HEAD"], cwd=clone).strip()
                print(f"[image_updater] dry run: would push to {branch} on top of {head[:12]}: {msg}", file=sys.stderr)
                return head

            for target, updated in updates:
                target.write_text(updated, encoding="utf-8")
            self._git(["add", "--"] + list(files), cwd=clone)
            self._git(
                [
                    "-c", f"user.name={git_user}",
                    "-c", f"user.email={git_email}",
                    "commit", "-m", msg,
                ],
                cwd=clone,
            )
            sha = self._git(["rev-parse", "HEAD"], cwd=clone).strip()

            ref = f"refs/heads/{branch}"
            push = ["push", "origin", f"{ref}:{ref}"]
            if force_with_lease:
                push.insert(1, "--force-with-lease")
            self._git(push, cwd=clone, env=env)
            print(f"[image_updater] pushed {sha[:12]} to {branch}: {msg}", file=sys.stderr)
            return sha
        finally:
            shutil.rmtree(workdir, ignore_errors=True)
