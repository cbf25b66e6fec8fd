from __future__ import annotations

import importlib
import subprocess
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union


def ensure_repo_on_path() -> Path:
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


def import_module_src(module_id: str, name: str):
    """Import a helper file from modules/<module_id>/src, like the runner does."""
    repo_root = ensure_repo_on_path()
    src_dir = str(repo_root / "modules" / module_id / "src")
    if src_dir not in sys.path:
        sys.path.insert(0, src_dir)
    return importlib.import_module(name)


def load_runner(module_id: str):
    """Load modules/<module_id>/src/run.py the way module-exec does."""
    repo_root = ensure_repo_on_path()
    from toolbox.orchestration.module_exec import _import_module_runner

    return _import_module_runner(repo_root / "modules" / module_id)


class RecordingEngine:
    """ContainerEngine fake that records what it was asked to evaluate.

    ``outputs`` is consumed in order by ``stdout``; a callable receives the
    container and returns the output instead. ``files`` maps container paths to
    the contents returned by ``file_contents``/``export_file``.
    """

    dry_run = False

    def __init__(
        self,
        outputs: Union[List[str], Callable[[Any], str], None] = None,
        files: Optional[Dict[str, str]] = None,
    ):
        self._outputs = outputs if callable(outputs) else list(outputs or [])
        self.files = dict(files or {})
        self.evaluated: List[Any] = []
        self.exported: List[Path] = []
        self.closed = False

    def stdout(self, container) -> str:
        self.evaluated.append(container)
        if callable(self._outputs):
            return self._outputs(container)
        return self._outputs.pop(0) if self._outputs else ""

    def sync(self, container) -> None:
        self.evaluated.append(container)

    def file_contents(self, file) -> str:
        self.evaluated.append(file.container)
        return self.files.get(file.path, "")

    def export_file(self, file, dest) -> Path:
        self.evaluated.append(file.container)
        out = Path(dest)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(self.files.get(file.path, ""), encoding="utf-8")
        self.exported.append(out)
        return out

    def close(self) -> None:
        self.closed = True

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__}


class FakeDocker:
    """Runner for DockerCliEngine returning canned docker CLI results."""

    def __init__(self, fail_on: Optional[Callable[[List[str]], bool]] = None, workdir: str = "/"):
        self.calls: List[Dict[str, Any]] = []
        self.fail_on = fail_on
        self.workdir = workdir
        self._commits = 0

    def __call__(self, cmd: List[str], env=None, stdin=None) -> subprocess.CompletedProcess:
        self.calls.append({"cmd": list(cmd), "env": env, "stdin": stdin})
        if self.fail_on is not None and self.fail_on(cmd):
            return subprocess.CompletedProcess(cmd, 2, "partial\n", "boom\n")
        sub = cmd[1] if len(cmd) > 1 else ""
        if sub == "commit":
            self._commits += 1
            return subprocess.CompletedProcess(cmd, 0, f"sha256:img{self._commits}\n", "")
        if sub == "run" and "-d" not in cmd:
            return subprocess.CompletedProcess(cmd, 0, f"out{self._commits}\n", "")
        if sub == "image" and "inspect" in cmd:
            return subprocess.CompletedProcess(cmd, 0, self.workdir + "\n", "")
        if sub == "cp" and cmd[2] != "-":
            Path(cmd[3]).write_text("exported\n", encoding="utf-8")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    def cmds(self, sub: str) -> List[List[str]]:
        return [c["cmd"] for c in self.calls if len(c["cmd"]) > 1 and c["cmd"][1] == sub]
