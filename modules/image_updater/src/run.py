from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from image_updater_client import ImageUpdater

from toolbox.engine import ToolboxError
from toolbox.orchestration.report import bundle_from, completed, failed, failed_from_exception

MODULE_ID = "image_updater"


def run(params: Dict[str, Any], outputs_dir: Path) -> Dict[str, Any]:
    outputs_dir = Path(outputs_dir)
    outputs_dir.mkdir(parents=True, exist_ok=True)

    inputs = params.get("inputs") if isinstance(params.get("inputs"), dict) else {}
    function = str(params.get("function") or "").strip()
    if function != "update":
        return failed(outputs_dir, MODULE_ID, function, "unknown_function", f"Unknown function: {function!r}")

    if inputs.get("git_password") is None:
        return failed(outputs_dir, MODULE_ID, function, "missing_required_input", "Input git_password is required")

    try:
        engine = bundle_from(params).engine
        updater = ImageUpdater(engine=engine)
        sha = updater.update(
            repo=str(inputs.get("repo") or ""),
            branch=str(inputs.get("branch") or ""),
            files=list(inputs.get("files") or []),
            image_url=str(inputs.get("image_url") or ""),
            git_user=str(inputs.get("git_user") or ""),
            git_email=str(inputs.get("git_email") or ""),
            git_password=inputs["git_password"],
            app_name=str(inputs.get("app_name") or ""),
            force_with_lease=bool(inputs.get("force_with_lease")),
            containers=list(inputs.get("containers") or []),
        )
    except ToolboxError as e:
        return failed_from_exception(outputs_dir, MODULE_ID, function, e)

    return completed(
        outputs_dir,
        MODULE_ID,
        function,
        sha,
        metadata={
            "branch": inputs.get("branch"),
            "image_url": inputs.get("image_url"),
            "files": inputs.get("files"),
            "dry_run": bool(engine.dry_run),
        },
    )
