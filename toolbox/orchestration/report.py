from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from ..engine.errors import ExecError, GitError, NotConfiguredError, NotFoundError, ToolboxError, ValidationError
from ..engine.factory import ToolboxBundle, build_toolbox
from ..utils.fs import atomic_write_text
from ..utils.time import utcnow_iso


def write_json(path: Path, payload: Dict[str, Any]) -> None:
    atomic_write_text(path, json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


def bundle_from(params: Dict[str, Any]) -> ToolboxBundle:
    """Return the bundle handed in by the caller, or build one from the runtime profile."""
    ctx = params.get("_toolbox") if isinstance(params.get("_toolbox"), dict) else {}
    bundle = ctx.get("bundle")
    if isinstance(bundle, ToolboxBundle):
        return bundle
    repo_root = Path(str(ctx.get("repo_root") or Path.cwd()))
    return build_toolbox(repo_root, str(ctx.get("runtime_profile") or "") or None)


def completed(
    outputs_dir: Path,
    module_id: str,
    function: str,
    output: str = "",
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    files = ["report.json"]
    if output:
        (outputs_dir / "stdout.txt").write_text(output, encoding="utf-8")
        files.append("stdout.txt")
    report = {
        "module_id": module_id,
        "function": function,
        "status": "COMPLETED",
        "created_at": utcnow_iso(),
        "output": output,
        "metadata": metadata or {},
    }
    write_json(outputs_dir / "report.json", report)
    return {"status": "COMPLETED", "output": output, "files": files, "metadata": report}


def failed(
    outputs_dir: Path,
    module_id: str,
    function: str,
    reason_slug: str,
    message: str,
    meta: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    report = {
        "module_id": module_id,
        "function": function,
        "status": "FAILED",
        "created_at": utcnow_iso(),
        "reason_slug": reason_slug,
        "message": message,
        "metadata": meta or {},
    }
    write_json(outputs_dir / "report.json", report)
    return {"status": "FAILED", "reason_slug": reason_slug, "files": ["report.json"], "metadata": report}


def failed_from_exception(outputs_dir: Path, module_id: str, function: str, exc: ToolboxError) -> Dict[str, Any]:
    meta: Dict[str, Any] = {"type": exc.__class__.__name__}
    if isinstance(exc, ExecError):
        slug = "exec_failed"
        meta.update({"cmd": exc.cmd, "exit_code": exc.exit_code, "stderr": exc.stderr[-4000:]})
    elif isinstance(exc, GitError):
        slug = "git_failed"
    elif isinstance(exc, NotConfiguredError):
        slug = "not_configured"
    elif isinstance(exc, NotFoundError):
        slug = "not_found"
    elif isinstance(exc, ValidationError):
        slug = "invalid_input"
    else:
        slug = "module_error"
    print(f"[{module_id}][FAILED] function={function} reason={slug}: {exc}", file=sys.stderr)
    return failed(outputs_dir, module_id, function, slug, str(exc), meta)
