from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from neon_client import NeonPreviews, parameter_name

from toolbox.engine import ToolboxError
from toolbox.orchestration.report import bundle_from, completed, failed, failed_from_exception

MODULE_ID = "neon_previews"

FUNCTIONS = ("provision_preview_db", "destroy_preview_db")


def run(params: Dict[str, Any], outputs_dir: Path) -> Dict[str, Any]:
    outputs_dir = Path(outputs_dir)
    outputs_dir.mkdir(parents=True, exist_ok=True)

    inputs = params.get("inputs") if isinstance(params.get("inputs"), dict) else {}
    function = str(params.get("function") or "").strip()
    if function not in FUNCTIONS:
        return failed(outputs_dir, MODULE_ID, function, "unknown_function", f"Unknown function: {function!r}")

    for iid in ("neon_api_key", "aws_dir"):
        if inputs.get(iid) is None:
            return failed(outputs_dir, MODULE_ID, function, "missing_required_input", f"Input {iid} is required")

    try:
        bundle = bundle_from(params)
        previews = NeonPreviews(engine=bundle.engine, parameter_store=bundle.require_parameter_store())
        branch = getattr(previews, function)(
            branch=str(inputs.get("branch") or ""),
            project_id=str(inputs.get("project_id") or ""),
            neon_api_key=inputs["neon_api_key"],
            aws_dir=inputs["aws_dir"],
            aws_profile=str(inputs.get("aws_profile") or ""),
        )
    except ToolboxError as e:
        return failed_from_exception(outputs_dir, MODULE_ID, function, e)

    return completed(
        outputs_dir,
        MODULE_ID,
        function,
        branch,
        metadata={"branch": branch, "parameter": parameter_name(branch)},
    )
