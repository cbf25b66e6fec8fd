from __future__ import annotations

import json
import os
from pathlib import Path

import pytest
import yaml

from _testutil import FakeDocker, RecordingEngine, ensure_repo_on_path

ensure_repo_on_path()

from toolbox.engine import ExecError, HostDirectory, HostFile, RuntimeProfile, Secret, ToolboxBundle, ValidationError
from toolbox.orchestration import resolve_inputs, run_module
from toolbox.orchestration.module_exec import injected_env


def _bundle(engine) -> ToolboxBundle:
    return ToolboxBundle(profile=RuntimeProfile(profile_name="test", adapters={}), engine=engine)


def _fdef(**inputs):
    return {"inputs": {k: {"type": t, "default": d} for k, (t, d) in inputs.items()}}


def test_resolve_inputs_coerces_types(tmp_path: Path) -> None:
    fdef = _fdef(
        flag=("bool", False),
        count=("int", None),
        files=("list", None),
        containers=("int_list", None),
        src=("directory", None),
        cfg=("file", None),
        name=("string", "default"),
    )
    out = resolve_inputs(
        fdef,
        {"flag": "yes", "count": "3", "files": "k8s/deploy.yaml", "containers": ["0", 2], "src": str(tmp_path), "cfg": "c.yml"},
    )
    assert out["flag"] is True
    assert out["count"] == 3
    assert out["files"] == ["k8s/deploy.yaml"]
    assert out["containers"] == [0, 2]
    assert out["src"] == HostDirectory(tmp_path)
    assert isinstance(out["cfg"], HostFile)
    assert out["name"] == "default"


def test_resolve_inputs_rejects_bad_values() -> None:
    with pytest.raises(ValidationError):
        resolve_inputs(_fdef(flag=("bool", None)), {"flag": "maybe"})
    with pytest.raises(ValidationError):
        resolve_inputs(_fdef(c=("int_list", None)), {"c": ["a"]})


def test_secrets_resolve_from_env_file_and_plaintext(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("PULUMI_TOKEN_FOR_TEST", "pul-1")
    creds = tmp_path / "credentials"
    creds.write_text("[dev]\n", encoding="utf-8")
    fdef = _fdef(a=("secret", None), b=("secret", None), c=("secret", None), d=("secret", None))

    out = resolve_inputs(
        fdef,
        {"a": "env:PULUMI_TOKEN_FOR_TEST", "b": f"file:{creds}", "c": {"plaintext": "x"}, "d": {"env": "PULUMI_TOKEN_FOR_TEST"}},
    )

    assert out["a"].plaintext() == "pul-1"
    assert out["b"].plaintext() == "[dev]\n"
    assert out["c"] == Secret.from_plaintext("c", "x")
    assert out["d"].name == "d"


def test_bare_string_secret_is_rejected() -> None:
    with pytest.raises(ValidationError):
        resolve_inputs(_fdef(a=("secret", None)), {"a": "hunter2"})


def test_injected_env_restores_previous_values(monkeypatch) -> None:
    monkeypatch.setenv("TOOLBOX_KEEP", "old")
    monkeypatch.delenv("TOOLBOX_NEW", raising=False)
    with injected_env({"TOOLBOX_KEEP": "new", "TOOLBOX_NEW": "1"}):
        assert os.environ["TOOLBOX_KEEP"] == "new"
        assert os.environ["TOOLBOX_NEW"] == "1"
    assert os.environ["TOOLBOX_KEEP"] == "old"
    assert "TOOLBOX_NEW" not in os.environ


def test_run_module_gradle_build(tmp_path: Path) -> None:
    repo_root = ensure_repo_on_path()
    eng = RecordingEngine(outputs=["BUILD SUCCESSFUL\n"])
    outputs_dir = tmp_path / "out"

    res = run_module(
        repo_root=repo_root,
        module_id="gradle",
        function="build",
        inputs={"source": str(tmp_path)},
        outputs_dir=outputs_dir,
        bundle=_bundle(eng),
    )

    assert res["status"] == "COMPLETED"
    assert res["output"] == "BUILD SUCCESSFUL\n"
    assert (outputs_dir / "stdout.txt").read_text(encoding="utf-8") == "BUILD SUCCESSFUL\n"
    report = json.loads((outputs_dir / "report.json").read_text(encoding="utf-8"))
    assert report["module_id"] == "gradle"
    assert report["status"] == "COMPLETED"
    assert eng.evaluated[0].image == "gradle:latest"
    assert eng.evaluated[0].execs() == [["gradle", "clean", "build", "--no-daemon"]]


def test_run_module_reports_exec_failure(tmp_path: Path) -> None:
    repo_root = ensure_repo_on_path()

    def fail(ctr):
        raise ExecError(["gradle", "clean", "build"], 1, "", "compilation failed")

    res = run_module(
        repo_root=repo_root,
        module_id="gradle",
        function="build",
        inputs={},
        outputs_dir=tmp_path,
        bundle=_bundle(RecordingEngine(outputs=fail)),
    )

    assert res["status"] == "FAILED"
    assert res["reason_slug"] == "exec_failed"
    report = json.loads((tmp_path / "report.json").read_text(encoding="utf-8"))
    assert report["metadata"]["exit_code"] == 1
    assert "compilation failed" in report["metadata"]["stderr"]


def test_run_module_injects_env_for_secret_refs(tmp_path: Path) -> None:
    repo_root = ensure_repo_on_path()
    cluster = tmp_path / "cluster.yaml"
    cluster.write_text("kind: ClusterConfig\n", encoding="utf-8")
    eng = RecordingEngine(outputs=["eksctl version 0.170.0\n"])
    os.environ.pop("EKS_CREDS_FOR_TEST", None)

    res = run_module(
        repo_root=repo_root,
        module_id="eksctl",
        function="exec",
        inputs={
            "aws_creds": "env:EKS_CREDS_FOR_TEST",
            "aws_profile": "dev",
            "cluster": str(cluster),
            "command": ["version"],
        },
        outputs_dir=tmp_path / "out",
        bundle=_bundle(eng),
        env={"EKS_CREDS_FOR_TEST": "[dev]\naws_access_key_id=AKIA\n"},
    )

    assert res["status"] == "COMPLETED"
    assert "EKS_CREDS_FOR_TEST" not in os.environ
    mounted = eng.evaluated[0].state().secret_mounts["/root/.aws/credentials"]
    assert mounted.plaintext() == "[dev]\naws_access_key_id=AKIA\n"


def test_run_module_validates_before_running(tmp_path: Path) -> None:
    eng = RecordingEngine()
    with pytest.raises(ValidationError):
        run_module(
            repo_root=ensure_repo_on_path(),
            module_id="pulumi",
            function="up",
            inputs={"source": str(tmp_path)},
            outputs_dir=tmp_path,
            bundle=_bundle(eng),
        )
    assert eng.evaluated == []


def test_run_module_closes_the_engine_it_builds(tmp_path: Path, monkeypatch) -> None:
    import toolbox.engine.adapters.docker_cli as docker_cli

    docker = FakeDocker()
    monkeypatch.setattr(docker_cli, "_run", docker)
    profile = tmp_path / "rp.yml"
    profile.write_text(
        yaml.safe_dump(
            {
                "profile_name": "local",
                "adapters": {"container_engine": {"kind": "docker_cli", "settings": {"keep_images": False, "quiet": True}}},
            }
        ),
        encoding="utf-8",
    )
    (tmp_path / "app").mkdir()

    res = run_module(
        repo_root=ensure_repo_on_path(),
        module_id="gradle",
        function="build",
        inputs={"source": str(tmp_path / "app")},
        outputs_dir=tmp_path / "out",
        runtime_profile=str(profile),
    )

    assert res["status"] == "COMPLETED"
    committed = [c["cmd"] for c in docker.calls if c["cmd"][1] == "commit"]
    assert len(committed) == 1
    assert docker.cmds("rmi") == [["docker", "rmi", "-f", "sha256:img1"]]


def test_run_module_leaves_caller_bundle_open(tmp_path: Path) -> None:
    eng = RecordingEngine(outputs=["BUILD SUCCESSFUL\n"])
    run_module(
        repo_root=ensure_repo_on_path(),
        module_id="gradle",
        function="build",
        inputs={},
        outputs_dir=tmp_path,
        bundle=_bundle(eng),
    )
    assert eng.closed is False
