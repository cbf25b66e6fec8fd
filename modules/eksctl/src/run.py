from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from eksctl_client import Eksctl

from toolbox.engine import ToolboxError
from toolbox.orchestration.report import bundle_from, completed, failed, failed_from_exception

MODULE_ID = "eksctl"


def run(params: Dict[str, Any], outputs_dir: Path) -> Dict[str, Any]:
    outputs_dir = Path(outputs_dir)
    outputs_dir.mkdir(parents=True, exist_ok=True)

    inputs = params.get("inputs") if isinstance(params.get("inputs"), dict) else {}
    function = str(params.get("function") or "").strip()

    try:
        engine = bundle_from(params).engine
        ek = Eksctl(
            engine=engine,
            aws_creds=inputs["aws_creds"],
            aws_profile=str(inputs.get("aws_profile") or ""),
            cluster=inputs["cluster"],
            aws_config=inputs.get("aws_config"),
            version=str(inputs.get("version") or "latest"),
        )

        if function == "exec":
            return completed(outputs_dir, MODULE_ID, function, ek.exec(inputs.get("command") or []))
        if function == "create":
            return completed(outputs_dir, MODULE_ID, function, ek.create(inputs.get("flags") or []))
        if function == "delete":
            return completed(outputs_dir, MODULE_ID, function, ek.delete(inputs.get("flags") or []))
        if function == "kubeconfig":
            dest = engine.export_file(ek.kubeconfig(), outputs_dir / "kubeconfig.yaml")
            out = completed(outputs_dir, MODULE_ID, function, metadata={"kubeconfig": str(dest)})
            out["files"].append("kubeconfig.yaml")
            return out
    except ToolboxError as e:
        return failed_from_exception(outputs_dir, MODULE_ID, function, e)
    except KeyError as e:
        return failed(outputs_dir, MODULE_ID, function, "missing_required_input", f"Input {e.args[0]} is required")

    return failed(outputs_dir, MODULE_ID, function, "unknown_function", f"Unknown function: {function!r}")
