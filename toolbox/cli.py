from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict

from .engine.errors import ToolboxError
from .engine.factory import build_toolbox
from .orchestration.module_exec import run_module
from .orchestration.registry import RepoModuleRegistry


def _repo_root(args: argparse.Namespace) -> Path:
    if getattr(args, "repo_root", ""):
        return Path(args.repo_root).resolve()
    # Assume this file is at repo_root/toolbox/cli.py
    return Path(__file__).resolve().parents[1]


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def cmd_list_modules(args: argparse.Namespace) -> int:
    _print(RepoModuleRegistry(_repo_root(args)).list_modules())
    return 0


def cmd_describe(args: argparse.Namespace) -> int:
    _print(RepoModuleRegistry(_repo_root(args)).get_contract(args.module_id))
    return 0


def cmd_module_exec(args: argparse.Namespace) -> int:
    try:
        inputs = json.loads(args.params_json or "{}")
    except json.JSONDecodeError as e:
        print(f"[cli] --params-json is not valid JSON: {e}", file=sys.stderr)
        return 2
    if not isinstance(inputs, dict):
        print("[cli] --params-json must be a JSON object of module inputs", file=sys.stderr)
        return 2

    out: Dict[str, Any] = run_module(
        repo_root=_repo_root(args),
        module_id=args.module_id,
        function=args.function,
        inputs=inputs,
        outputs_dir=Path(args.outputs_dir).resolve(),
        runtime_profile=args.runtime_profile or None,
    )
    _print(out)
    return 1 if out.get("status") == "FAILED" else 0


def cmd_profile(args: argparse.Namespace) -> int:
    bundle = build_toolbox(_repo_root(args), args.runtime_profile or None)
    _print(bundle.describe())
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="toolbox")
    p.add_argument("--repo-root", default="", help="Repository holding modules/ and config/")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("list-modules", help="List module ids")
    sp.set_defaults(func=cmd_list_modules)

    sp = sub.add_parser("describe", help="Print a module contract")
    sp.add_argument("--module-id", required=True)
    sp.set_defaults(func=cmd_describe)

    sp = sub.add_parser("module-exec", help="Validate and run one module function")
    sp.add_argument("--module-id", required=True)
    sp.add_argument("--function", required=True)
    sp.add_argument("--params-json", default="{}", help="JSON object of module inputs")
    sp.add_argument("--outputs-dir", required=True)
    sp.add_argument("--runtime-profile", default="")
    sp.set_defaults(func=cmd_module_exec)

    sp = sub.add_parser("profile", help="Print the resolved runtime profile")
    sp.add_argument("--runtime-profile", default="")
    sp.set_defaults(func=cmd_profile)

    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return int(args.func(args) or 0)
    except ToolboxError as e:
        print(f"[cli][ERROR] {e.__class__.__name__}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
