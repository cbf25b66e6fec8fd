from __future__ import annotations

import base64
import shutil
import subprocess
from pathlib import Path

import pytest

from _testutil import RecordingEngine, ensure_repo_on_path, import_module_src, load_runner

ensure_repo_on_path()

from toolbox.engine import GitError, RuntimeProfile, Secret, ToolboxBundle, ValidationError
from toolbox.engine.adapters import DryRunEngine

image_updater_client = import_module_src("image_updater", "image_updater_client")

DEPLOYMENT = """apiVersion: apps/v1
kind: Deployment
spec:
  template:
    spec:
      containers:
        - name: api
          image: registry.example.com/api:old
"""


class FakeGit:
    def __init__(self, fail_on: str = ""):
        self.calls = []
        self.fail_on = fail_on
        self.clone_dir = None

    def __call__(self, cmd, cwd=None, env=None):
        self.calls.append({"cmd": list(cmd), "cwd": cwd, "env": env})
        sub = [a for a in cmd[1:] if not a.startswith("-") and "=" not in a][0]
        if sub == self.fail_on:
            return subprocess.CompletedProcess(cmd, 1, "", "rejected: stale info")
        if sub == "clone":
            self.clone_dir = Path(cmd[-1])
            (self.clone_dir / "k8s").mkdir(parents=True)
            (self.clone_dir / "k8s" / "deployment.yaml").write_text(DEPLOYMENT, encoding="utf-8")
        if sub == "rev-parse":
            return subprocess.CompletedProcess(cmd, 0, "0123456789abcdef\n", "")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    def cmd(self, sub: str):
        return [c for c in self.calls if sub in c["cmd"]][0]


def _update(eng, git, **kw):
    args = dict(
        repo="https://github.com/acme/gitops.git",
        branch="main",
        files=["k8s/deployment.yaml"],
        image_url="registry.example.com/api:v2",
        git_user="deploy-bot",
        git_email="bot@example.com",
        git_password=Secret.from_plaintext("git_password", "ghp_secret"),
    )
    args.update(kw)
    return image_updater_client.ImageUpdater(engine=eng, git_runner=git).update(**args)


def test_commit_message() -> None:
    assert image_updater_client.commit_message("api", "img:1") == "Updating api resource with image: img:1"
    assert image_updater_client.commit_message("", "img:1") == "Updating resource with image: img:1"


def test_update_edits_commits_and_pushes() -> None:
    updated = DEPLOYMENT.replace("api:old", "api:v2")
    eng = RecordingEngine(files={"deployment.yaml": updated})
    git = FakeGit()

    sha = _update(eng, git, app_name="api", containers=[0, 1])

    assert sha == "0123456789abcdef"
    # yq container
    yq = eng.evaluated[0]
    assert yq.image == "mikefarah/yq:4.40.7"
    assert yq.state().env["IMAGE_URL"] == "registry.example.com/api:v2"
    assert yq.state().entrypoint is None
    assert yq.files() == {"deployment.yaml": DEPLOYMENT}
    assert [s.permissions for s in yq.steps if s.kind == "new_file"] == [0o666]
    assert yq.execs() == [
        ["yq", "-i", ".spec.template.spec.containers[0].image = strenv(IMAGE_URL)", "deployment.yaml"],
        ["yq", "-i", ".spec.template.spec.containers[1].image = strenv(IMAGE_URL)", "deployment.yaml"],
    ]

    clone = git.cmd("clone")["cmd"]
    assert clone[:7] == ["git", "clone", "--depth", "1", "--single-branch", "--branch", "main"]
    assert clone[7] == "https://github.com/acme/gitops.git"

    commit = git.cmd("commit")["cmd"]
    assert "user.name=deploy-bot" in commit
    assert "user.email=bot@example.com" in commit
    assert commit[commit.index("-m") + 1] == "Updating api resource with image: registry.example.com/api:v2"

    push = git.cmd("push")
    assert push["cmd"] == ["git", "push", "origin", "refs/heads/main:refs/heads/main"]

    header = push["env"]["GIT_CONFIG_VALUE_0"]
    assert push["env"]["GIT_CONFIG_KEY_0"] == "http.extraHeader"
    assert header == "Authorization: Basic " + base64.b64encode(b"deploy-bot:ghp_secret").decode("ascii")
    for c in git.calls:
        assert "ghp_secret" not in " ".join(c["cmd"])

    # the clone is removed once done
    assert git.clone_dir is not None and not git.clone_dir.exists()


def test_update_writes_file_before_commit() -> None:
    updated = DEPLOYMENT.replace("api:old", "api:v2")
    seen = {}

    class Git(FakeGit):
        def __call__(self, cmd, cwd=None, env=None):
            if "add" in cmd:
                seen["content"] = (Path(cwd) / "k8s" / "deployment.yaml").read_text(encoding="utf-8")
            return super().__call__(cmd, cwd=cwd, env=env)

    _update(RecordingEngine(files={"deployment.yaml": updated}), Git())
    assert seen["content"] == updated


def test_default_container_and_force_with_lease() -> None:
    eng = RecordingEngine(files={"deployment.yaml": DEPLOYMENT})
    git = FakeGit()

    _update(eng, git, force_with_lease=True)

    assert len(eng.evaluated[0].execs()) == 1
    assert git.cmd("push")["cmd"] == ["git", "push", "--force-with-lease", "origin", "refs/heads/main:refs/heads/main"]
    commit = git.cmd("commit")["cmd"]
    assert commit[commit.index("-m") + 1] == "Updating resource with image: registry.example.com/api:v2"


def test_push_failure_raises_git_error_and_cleans_up() -> None:
    git = FakeGit(fail_on="push")
    with pytest.raises(GitError, match="stale info"):
        _update(RecordingEngine(files={"deployment.yaml": DEPLOYMENT}), git)
    assert not git.clone_dir.exists()


def test_missing_file_in_repository() -> None:
    git = FakeGit()
    with pytest.raises(ValidationError):
        _update(RecordingEngine(), git, files=["k8s/missing.yaml"])
    assert [c for c in git.calls if "push" in c["cmd"]] == []


def test_files_are_required() -> None:
    with pytest.raises(ValidationError):
        _update(RecordingEngine(), FakeGit(), files=[])


def test_runner_requires_password(tmp_path: Path) -> None:
    run = load_runner("image_updater")
    bundle = ToolboxBundle(profile=RuntimeProfile("test", {}), engine=RecordingEngine())
    res = run.run({"function": "update", "inputs": {"repo": "r"}, "_toolbox": {"bundle": bundle}}, tmp_path)
    assert res["status"] == "FAILED"
    assert res["reason_slug"] == "missing_required_input"


@pytest.mark.parametrize("absolute", [True, False])
def test_files_outside_the_clone_are_rejected(tmp_path: Path, absolute: bool) -> None:
    victim = tmp_path / "outside.yaml"
    victim.write_text(DEPLOYMENT, encoding="utf-8")
    outside = str(victim) if absolute else "../../outside.yaml"
    git = FakeGit()

    eng = RecordingEngine(files={"deployment.yaml": ""})
    with pytest.raises(ValidationError, match="outside the repository"):
        _update(eng, git, files=[outside])

    assert victim.read_text(encoding="utf-8") == DEPLOYMENT
    assert eng.evaluated == []
    assert [c for c in git.calls if "add" in c["cmd"] or "push" in c["cmd"]] == []


def _git(*args: str, cwd: Path) -> str:
    cp = subprocess.run(
        ["git", "-c", "user.name=seed", "-c", "user.email=seed@example.com"] + list(args),
        cwd=cwd,
        check=True,
        text=True,
        capture_output=True,
    )
    return cp.stdout.strip()


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_dry_run_engine_leaves_remote_untouched(tmp_path: Path) -> None:
    remote = tmp_path / "gitops.git"
    seed = tmp_path / "seed"
    _git("init", "--bare", str(remote), cwd=tmp_path)
    _git("init", str(seed), cwd=tmp_path)
    (seed / "k8s").mkdir()
    (seed / "k8s" / "deployment.yaml").write_text(DEPLOYMENT, encoding="utf-8")
    _git("add", "k8s/deployment.yaml", cwd=seed)
    _git("commit", "-m", "seed", cwd=seed)
    _git("push", str(remote), "HEAD:refs/heads/main", cwd=seed)
    before = _git("rev-parse", "main", cwd=remote)

    eng = DryRunEngine()
    sha = image_updater_client.ImageUpdater(engine=eng).update(
        repo=str(remote),
        branch="main",
        files=["k8s/deployment.yaml"],
        image_url="registry.example.com/api:v2",
        git_user="deploy-bot",
        git_email="bot@example.com",
        git_password=Secret.from_plaintext("git_password", "ghp_secret"),
    )

    assert sha == before
    assert _git("rev-parse", "main", cwd=remote) == before
    assert _git("show", "main:k8s/deployment.yaml", cwd=remote) == DEPLOYMENT.strip()
    assert any(c[1] == "run" and "yq" in c for c in eng.plan)
