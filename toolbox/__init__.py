"""Containerised CLI-tool modules.

Each module under ``modules/`` wraps one third-party CLI (eksctl, gradle,
kubectl, pulumi, yq/git, neonctl). Modules describe the container they need
with :class:`toolbox.engine.Container` and hand it to a container engine
selected by the runtime profile.
"""

from __future__ import annotations

__all__ = ["__version__"]
__version__ = "0.1.0"
