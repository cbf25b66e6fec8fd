from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...utils.fs import atomic_write_text
from .docker_cli import DockerCliEngine, DockerCliSettings


@dataclass(frozen=True)
class DryRunSettings:
    """Settings for DryRunEngine.

    plan_path: when set, the recorded docker commands are written there as JSON
    every time a command is recorded.
    """

    plan_path: str = ""
    platform: str = ""


class _Recorder:
    def __init__(self) -> None:
        self.commands: List[List[str]] = []
        self._commits = 0

    def __call__(self, cmd: List[str], env: Optional[Dict[str, str]] = None, stdin: Optional[bytes] = None) -> subprocess.CompletedProcess:
        self.commands.append(list(cmd))
        out = ""
        if len(cmd) > 1 and cmd[1] == "commit":
            self._commits += 1
            out = f"sha256:dryrun{self._commits:04d}\n"
        return subprocess.CompletedProcess(cmd, 0, out, "")


class DryRunEngine(DockerCliEngine):
    """Engine that records the docker commands it would run.

    Nothing is executed: every exec returns empty stdout and exported files are
    empty. The recorded plan is available as ``plan`` and optionally written to
    ``settings.plan_path``.
    """

    dry_run = True

    def __init__(self, *, settings: Optional[DryRunSettings] = None):
        self.dry_settings = settings or DryRunSettings()
        self._recorder = _Recorder()
        super().__init__(
            settings=DockerCliSettings(platform=self.dry_settings.platform, quiet=True, keep_images=True),
            runner=self._record,
        )

    @property
    def plan(self) -> List[List[str]]:
        return list(self._recorder.commands)

    def _record(self, cmd: List[str], env: Optional[Dict[str, str]] = None, stdin: Optional[bytes] = None) -> subprocess.CompletedProcess:
        cp = self._recorder(cmd, env=env, stdin=stdin)
        if self.dry_settings.plan_path:
            self.write_plan(Path(self.dry_settings.plan_path))
        return cp

    def write_plan(self, path: Path) -> Path:
        payload = {"engine": "dry_run", "commands": self._recorder.commands}
        atomic_write_text(path, json.dumps(payload, ensure_ascii=False, indent=2) + "\n")
        return path

    def _copy_out(self, name: str, src: str, dest: Path) -> None:
        super()._copy_out(name, src, dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text("", encoding="utf-8")

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__, "plan_path": self.dry_settings.plan_path}
