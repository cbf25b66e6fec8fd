from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from kubectl_client import Kubectl

from toolbox.engine import ToolboxError
from toolbox.orchestration.report import bundle_from, completed, failed, failed_from_exception

MODULE_ID = "kubectl"


def run(params: Dict[str, Any], outputs_dir: Path) -> Dict[str, Any]:
    outputs_dir = Path(outputs_dir)
    outputs_dir.mkdir(parents=True, exist_ok=True)

    inputs = params.get("inputs") if isinstance(params.get("inputs"), dict) else {}
    function = str(params.get("function") or "").strip()

    for required in ("kubeconfig", "aws_creds"):
        if inputs.get(required) is None:
            return failed(outputs_dir, MODULE_ID, function, "missing_required_input", f"Input {required} is required")

    try:
        cli = Kubectl(engine=bundle_from(params).engine, kubeconfig=inputs["kubeconfig"]).kubectl_eks(
            aws_creds=inputs["aws_creds"],
            aws_profile=str(inputs.get("aws_profile") or ""),
            aws_config=inputs.get("aws_config"),
        )
        if function == "exec":
            return completed(outputs_dir, MODULE_ID, function, cli.exec(inputs.get("command") or []))
        if function == "first_pod_logs":
            namespace = str(inputs.get("namespace") or "kube-system")
            return completed(outputs_dir, MODULE_ID, function, cli.first_pod_logs(namespace), metadata={"namespace": namespace})
    except ToolboxError as e:
        return failed_from_exception(outputs_dir, MODULE_ID, function, e)

    return failed(outputs_dir, MODULE_ID, function, "unknown_function", f"Unknown function: {function!r}")
