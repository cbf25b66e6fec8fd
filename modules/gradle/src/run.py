from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from gradle_client import Gradle

from toolbox.engine import ToolboxError
from toolbox.orchestration.report import bundle_from, completed, failed, failed_from_exception

MODULE_ID = "gradle"


def _gradle(inputs: Dict[str, Any]) -> Gradle:
    g = Gradle()
    if inputs.get("source") is not None:
        g = g.with_directory(inputs["source"])
    if inputs.get("image"):
        g = g.from_image(str(inputs["image"]))
    if inputs.get("version"):
        g = g.from_version(str(inputs["version"]))
    if inputs.get("wrapper"):
        g = g.with_wrapper()
    return g


def run(params: Dict[str, Any], outputs_dir: Path) -> Dict[str, Any]:
    outputs_dir = Path(outputs_dir)
    outputs_dir.mkdir(parents=True, exist_ok=True)

    inputs = params.get("inputs") if isinstance(params.get("inputs"), dict) else {}
    function = str(params.get("function") or "").strip()

    g = _gradle(inputs)
    if function == "build":
        ctr = g.build()
    elif function == "test":
        ctr = g.test()
    elif function == "task":
        task = str(inputs.get("task") or "").strip()
        if not task:
            return failed(outputs_dir, MODULE_ID, function, "missing_required_input", "Input task is required")
        ctr = g.task(task, *(inputs.get("args") or []))
    else:
        return failed(outputs_dir, MODULE_ID, function, "unknown_function", f"Unknown function: {function!r}")

    try:
        out = bundle_from(params).engine.stdout(ctr)
    except ToolboxError as e:
        return failed_from_exception(outputs_dir, MODULE_ID, function, e)
    return completed(outputs_dir, MODULE_ID, function, out, metadata={"image": ctr.image})
