from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from pulumi_client import Pulumi

from toolbox.engine import ToolboxError
from toolbox.orchestration.report import bundle_from, completed, failed, failed_from_exception

MODULE_ID = "pulumi"

STACK_FUNCTIONS = ("up", "preview", "refresh", "destroy")


def _pulumi(engine: Any, inputs: Dict[str, Any]) -> Pulumi:
    p = Pulumi(engine=engine)
    if inputs.get("version"):
        p = p.from_version(str(inputs["version"]))
    if inputs.get("pulumi_token") is not None:
        p = p.with_pulumi_token(inputs["pulumi_token"])
    if inputs.get("aws_access_key") is not None and inputs.get("aws_secret_key") is not None:
        p = p.with_aws_credentials(inputs["aws_access_key"], inputs["aws_secret_key"])
    if inputs.get("esc_env"):
        p = p.with_esc(str(inputs["esc_env"]))
    if inputs.get("docker"):
        p = p.with_docker()
    return p


def run(params: Dict[str, Any], outputs_dir: Path) -> Dict[str, Any]:
    outputs_dir = Path(outputs_dir)
    outputs_dir.mkdir(parents=True, exist_ok=True)

    inputs = params.get("inputs") if isinstance(params.get("inputs"), dict) else {}
    function = str(params.get("function") or "").strip()

    src = inputs.get("source")
    if src is None:
        return failed(outputs_dir, MODULE_ID, function, "missing_required_input", "Input source is required")
    stack = str(inputs.get("stack") or "").strip()

    try:
        p = _pulumi(bundle_from(params).engine, inputs)
        if function in STACK_FUNCTIONS:
            out = getattr(p, function)(src, stack)
            return completed(outputs_dir, MODULE_ID, function, out, metadata={"stack": stack})
        if function == "run":
            return completed(outputs_dir, MODULE_ID, function, p.run(src, str(inputs.get("command") or "")))
        if function == "output":
            prop = str(inputs.get("property") or "").strip()
            return completed(outputs_dir, MODULE_ID, function, p.output(src, prop, stack), metadata={"stack": stack, "property": prop})
    except ToolboxError as e:
        return failed_from_exception(outputs_dir, MODULE_ID, function, e)

    return failed(outputs_dir, MODULE_ID, function, "unknown_function", f"Unknown function: {function!r}")
