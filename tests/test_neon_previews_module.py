from __future__ import annotations

import json
from pathlib import Path

import pytest

from _testutil import RecordingEngine, ensure_repo_on_path, import_module_src, load_runner

ensure_repo_on_path()

from toolbox.engine import ExecError, HostDirectory, RuntimeProfile, Secret, ToolboxBundle, ValidationError

neon_client = import_module_src("neon_previews", "neon_client")

API_KEY = Secret.from_plaintext("neon_api_key", "napi_xyz")
CONN = "postgresql://example:pw@ep-cool-1.us-east-2.aws.neon.tech/example?sslmode=require"


class FakeParameterStore:
    def __init__(self):
        self.calls = []

    def put_parameter(self, *, aws_dir, aws_profile, name, value):
        self.calls.append(("put", aws_profile, name, value.plaintext()))
        return ""

    def delete_parameter(self, *, aws_dir, aws_profile, name):
        self.calls.append(("delete", aws_profile, name))
        return ""

    def describe(self):
        return {"class": "FakeParameterStore"}


def _neon_engine(existing):
    def respond(ctr):
        cmd = ctr.execs()[-1]
        if cmd[3:5] == ["branches", "list"]:
            return json.dumps([{"id": f"br-{i}", "name": b} for i, b in enumerate(existing)])
        return ""

    return RecordingEngine(outputs=respond, files={"/tmp/connection-string": CONN + "\n"})


def _call(fn, eng, store, tmp_path: Path, branch: str = "feature/ADD_login"):
    previews = neon_client.NeonPreviews(engine=eng, parameter_store=store)
    return getattr(previews, fn)(
        branch=branch,
        project_id="proj-123",
        neon_api_key=API_KEY,
        aws_dir=HostDirectory(tmp_path),
        aws_profile="previews",
    )


def test_branch_slug() -> None:
    assert neon_client.branch_slug("feature/ADD_login") == "feature-add-login"
    assert neon_client.branch_slug("  Fix: weird   chars!! ") == "fix-weird-chars"
    assert neon_client.branch_slug("docs/Q&A") == "docs-qanda"
    assert neon_client.branch_slug("user@host-fix") == "userathost-fix"
    long = neon_client.branch_slug("feature/" + "very-long-branch-name-" * 5)
    assert len(long) <= 50
    assert not long.endswith("-")


def test_provision_creates_branch_and_stores_connection_string(tmp_path: Path) -> None:
    eng = _neon_engine(existing=["main"])
    store = FakeParameterStore()

    branch = _call("provision_preview_db", eng, store, tmp_path)

    assert branch == "feature-add-login"
    list_ctr, create_ctr, conn_ctr = eng.evaluated
    assert list_ctr.execs()[-1] == ["/bin/neonctl", "--project-id", "proj-123", "branches", "list", "--output", "json"]
    assert create_ctr.execs()[-1] == [
        "/bin/neonctl", "--project-id", "proj-123",
        "branches", "create",
        "--name", "feature-add-login",
        "--parent", "main",
        "--type", "read_write",
        "--suspend-timeout", "300",
        "--cu", "0.25",
    ]
    conn_cmd = conn_ctr.execs()[-1]
    assert conn_cmd[:2] == ["sh", "-c"]
    assert "connection-string feature-add-login --role-name example --database-name example" in conn_cmd[2]
    assert conn_cmd[2].endswith("> /tmp/connection-string")

    assert store.calls == [("put", "previews", "neon-feature-add-login", CONN)]


def test_neonctl_container(tmp_path: Path) -> None:
    eng = _neon_engine(existing=[])
    _call("provision_preview_db", eng, FakeParameterStore(), tmp_path)

    ctr = eng.evaluated[0]
    assert ctr.image == neon_client.BASE_IMAGE
    assert ctr.image.startswith("debian:stable-20250113-slim@sha256:")
    assert ctr.execs()[:3] == [
        ["sh", "-c", "apt update && apt install -y curl"],
        ["sh", "-c", f"curl -sL {neon_client.NEONCTL_URL} -o /bin/neonctl"],
        ["chmod", "+x", "/bin/neonctl"],
    ]
    assert "v2.6.0/neonctl-linux-x64" in neon_client.NEONCTL_URL
    st = ctr.state()
    assert st.secret_env["NEON_API_KEY"] is API_KEY
    assert st.env["CACHE_BUST"]
    assert "napi_xyz" not in json.dumps(ctr.execs())


def test_every_call_busts_the_cache(tmp_path: Path) -> None:
    eng = _neon_engine(existing=[])
    _call("provision_preview_db", eng, FakeParameterStore(), tmp_path)
    busts = [c.state().env["CACHE_BUST"] for c in eng.evaluated]
    assert len(set(busts)) == len(busts)


def test_provision_is_a_noop_when_branch_exists(tmp_path: Path) -> None:
    eng = _neon_engine(existing=["main", "feature-add-login"])
    store = FakeParameterStore()

    assert _call("provision_preview_db", eng, store, tmp_path) == "feature-add-login"

    assert len(eng.evaluated) == 1
    assert store.calls == []


def test_destroy_deletes_branch_and_parameter(tmp_path: Path) -> None:
    eng = _neon_engine(existing=["feature-add-login"])
    store = FakeParameterStore()

    _call("destroy_preview_db", eng, store, tmp_path)

    assert eng.evaluated[1].execs()[-1] == [
        "/bin/neonctl", "--project-id", "proj-123", "branches", "delete", "feature-add-login",
    ]
    assert store.calls == [("delete", "previews", "neon-feature-add-login")]


def test_destroy_is_a_noop_when_branch_is_missing(tmp_path: Path) -> None:
    eng = _neon_engine(existing=["main"])
    store = FakeParameterStore()

    _call("destroy_preview_db", eng, store, tmp_path)

    assert len(eng.evaluated) == 1
    assert store.calls == []


def test_list_failure_propagates(tmp_path: Path) -> None:
    def fail(ctr):
        raise ExecError(ctr.execs()[-1], 1, "", "unauthorized")

    store = FakeParameterStore()
    with pytest.raises(ExecError):
        _call("provision_preview_db", RecordingEngine(outputs=fail), store, tmp_path)
    assert store.calls == []


def test_unexpected_list_output(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        _call("destroy_preview_db", RecordingEngine(outputs=["not json"]), FakeParameterStore(), tmp_path)


def test_project_id_is_required(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        neon_client.Neonctl(engine=RecordingEngine(), api_key=API_KEY, project_id="")


def _params(bundle, tmp_path: Path, function: str):
    return {
        "function": function,
        "inputs": {
            "branch": "feature/x",
            "project_id": "proj-123",
            "neon_api_key": API_KEY,
            "aws_dir": HostDirectory(tmp_path),
            "aws_profile": "previews",
        },
        "_toolbox": {"bundle": bundle},
    }


def test_runner_needs_a_parameter_store(tmp_path: Path) -> None:
    run = load_runner("neon_previews")
    bundle = ToolboxBundle(profile=RuntimeProfile("test", {}), engine=_neon_engine(existing=[]))

    res = run.run(_params(bundle, tmp_path, "provision_preview_db"), tmp_path / "out")

    assert res["status"] == "FAILED"
    assert res["reason_slug"] == "not_configured"


def test_runner_provision(tmp_path: Path) -> None:
    run = load_runner("neon_previews")
    store = FakeParameterStore()
    bundle = ToolboxBundle(profile=RuntimeProfile("test", {}), engine=_neon_engine(existing=[]), parameter_store=store)

    res = run.run(_params(bundle, tmp_path, "provision_preview_db"), tmp_path / "out")

    assert res["status"] == "COMPLETED"
    assert res["output"] == "feature-x"
    assert res["metadata"]["metadata"]["parameter"] == "neon-feature-x"
    assert store.calls[0][2] == "neon-feature-x"
