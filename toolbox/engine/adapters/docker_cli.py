from __future__ import annotations

import hashlib
import io
import json
import os
import shutil
import subprocess
import sys
import tarfile
import tempfile
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from ..container import (
    LAYER_KINDS,
    CacheVolume,
    Container,
    ContainerFile,
    ContainerState,
    HostDirectory,
    HostFile,
    Secret,
    ServiceBinding,
    Step,
)
from ..contracts import ContainerEngine
from ..errors import ExecError, NotFoundError, ValidationError

Runner = Callable[..., subprocess.CompletedProcess]


def _run(cmd: List[str], env: Optional[Dict[str, str]] = None, stdin: Optional[bytes] = None) -> subprocess.CompletedProcess:
    proc = subprocess.run(cmd, check=False, capture_output=True, env=env, input=stdin)
    return subprocess.CompletedProcess(
        cmd,
        proc.returncode,
        (proc.stdout or b"").decode("utf-8", errors="replace"),
        (proc.stderr or b"").decode("utf-8", errors="replace"),
    )


@dataclass(frozen=True)
class DockerCliSettings:
    """Settings for DockerCliEngine.

    - docker_bin: CLI binary, ``docker`` or a compatible one such as ``podman``.
    - platform: optional ``--platform`` passed to every run/create.
    - cache_prefix: prefix for the named volumes backing cache mounts.
    - keep_images: keep intermediate images when the engine is closed. The
      memo lives per engine, so kept images are only reused by the same engine.
    - quiet: suppress the per-step ``[engine]`` log lines.
    - service_ready_timeout: seconds to wait for a service readiness check.
    - service_ready_interval: seconds between readiness attempts.
    """

    docker_bin: str = "docker"
    platform: str = ""
    cache_prefix: str = "toolbox-cache-"
    keep_images: bool = False
    quiet: bool = False
    service_ready_timeout: float = 60.0
    service_ready_interval: float = 1.0


@dataclass
class _Evaluation:
    image: str
    state: ContainerState
    stdout: str = ""


def _sha(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _tree_digest(root: Path) -> str:
    """Digest of every entry under ``root`` by relative path, size and mtime."""
    h = hashlib.sha256()
    if not root.is_dir():
        return h.hexdigest()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            p = Path(dirpath) / name
            st = p.lstat()
            h.update(f"{p.relative_to(root).as_posix()}\0{st.st_size}\0{st.st_mtime_ns}\n".encode("utf-8"))
    return h.hexdigest()


def _fingerprint(value: Any) -> Any:
    if isinstance(value, Secret):
        return {"secret": value.name, "sha": _sha(value.value)}
    if isinstance(value, HostFile):
        p = value.path
        data = p.read_bytes() if p.is_file() else b""
        return {"host_file": str(p), "sha": hashlib.sha256(data).hexdigest()}
    if isinstance(value, HostDirectory):
        return {"host_dir": str(value.path), "tree": _tree_digest(value.path)}
    if isinstance(value, CacheVolume):
        return {"cache": value.name}
    if isinstance(value, ServiceBinding):
        return {"service": value.alias, "of": _fingerprint(value.service)}
    if isinstance(value, ContainerFile):
        return {"container_file": value.path, "of": _fingerprint(value.container)}
    if isinstance(value, Container):
        return {"image": value.image, "steps": [_fingerprint(s) for s in value.steps]}
    if isinstance(value, Step):
        return {
            "kind": value.kind,
            "path": value.path,
            "name": value.name,
            "value": _fingerprint(value.value),
            "args": list(value.args),
            "use_entrypoint": value.use_entrypoint,
            "insecure": value.insecure_root_capabilities,
            "permissions": value.permissions,
        }
    if isinstance(value, dict):
        return {str(k): _fingerprint(v) for k, v in sorted(value.items())}
    if isinstance(value, (list, tuple)):
        return [_fingerprint(v) for v in value]
    return value


def _state_fingerprint(state: ContainerState) -> Dict[str, Any]:
    return {
        "workdir": state.workdir,
        "env": dict(sorted(state.env.items())),
        "secret_env": _fingerprint(state.secret_env),
        "secret_mounts": _fingerprint(state.secret_mounts),
        "directory_mounts": _fingerprint(state.directory_mounts),
        "cache_mounts": _fingerprint(state.cache_mounts),
        "entrypoint": list(state.entrypoint or ()),
        "services": _fingerprint(state.services),
    }


class _Session:
    """Per-call scratch space: secret files, a user network and sidecars."""

    def __init__(self, engine: "DockerCliEngine"):
        self.engine = engine
        self.tmp = Path(tempfile.mkdtemp(prefix="toolbox-"))
        self.network = ""
        self.services: Dict[str, str] = {}
        self._secret_files: Dict[Tuple[str, str], Path] = {}

    def secret_file(self, secret: Secret) -> Path:
        key = (secret.name, _sha(secret.value))
        p = self._secret_files.get(key)
        if p is None:
            p = self.tmp / f"secret-{len(self._secret_files)}"
            p.write_text(secret.value, encoding="utf-8")
            os.chmod(p, 0o600)
            self._secret_files[key] = p
        return p

    def scratch(self, name: str) -> Path:
        p = self.tmp / f"{uuid.uuid4().hex[:8]}-{name}"
        p.parent.mkdir(parents=True, exist_ok=True)
        return p

    def ensure_network(self) -> str:
        if not self.network:
            name = f"toolbox-net-{uuid.uuid4().hex[:12]}"
            self.engine._docker(["network", "create", name])
            self.network = name
        return self.network

    def close(self) -> None:
        for name in self.services.values():
            self.engine._docker(["rm", "-f", name], check=False)
        if self.network:
            self.engine._docker(["network", "rm", self.network], check=False)
        shutil.rmtree(self.tmp, ignore_errors=True)


class DockerCliEngine(ContainerEngine):
    """ContainerEngine driving the docker CLI.

    Every layered step is replayed against the current image: execs run with
    ``docker run`` and files are streamed in with ``docker cp``; each result is
    committed to become the next image. Results are memoised per engine by a
    digest of the step prefix, so containers sharing a base only build it once.
    """

    def __init__(self, *, settings: Optional[DockerCliSettings] = None, runner: Optional[Runner] = None):
        self.settings = settings or DockerCliSettings()
        self._runner = runner or _run
        self._memo: Dict[str, Tuple[str, str]] = {}
        self._images: List[str] = []

    # Public API

    def stdout(self, container: Container) -> str:
        with self._session() as session:
            return self._evaluate(container, session).stdout

    def sync(self, container: Container) -> None:
        with self._session() as session:
            self._evaluate(container, session)

    def file_contents(self, file: ContainerFile) -> str:
        with self._session() as session:
            dest = session.scratch(PurePosixPath(file.path).name or "file")
            self._export(session, file, dest)
            return dest.read_text(encoding="utf-8")

    def export_file(self, file: ContainerFile, dest: Union[str, Path]) -> Path:
        out = Path(dest).expanduser().resolve()
        out.parent.mkdir(parents=True, exist_ok=True)
        with self._session() as session:
            self._export(session, file, out)
        return out

    def close(self) -> None:
        if not self.settings.keep_images:
            for image in reversed(self._images):
                self._docker(["rmi", "-f", image], check=False)
        self._images = []
        self._memo = {}

    def describe(self) -> Dict[str, Any]:
        return {
            "class": self.__class__.__name__,
            "docker_bin": self.settings.docker_bin,
            "platform": self.settings.platform,
            "keep_images": self.settings.keep_images,
        }

    def __enter__(self) -> "DockerCliEngine":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # Internals

    def _log(self, msg: str) -> None:
        if not self.settings.quiet:
            print(f"[engine] {msg}", file=sys.stderr)

    def _docker(
        self,
        args: List[str],
        *,
        env: Optional[Dict[str, str]] = None,
        stdin: Optional[bytes] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        cmd = [self.settings.docker_bin] + list(args)
        cp = self._runner(cmd, env=env, stdin=stdin)
        if check and cp.returncode != 0:
            raise ExecError(cmd, cp.returncode, cp.stdout or "", cp.stderr or "")
        return cp

    @contextmanager
    def _session(self) -> Iterator[_Session]:
        session = _Session(self)
        try:
            yield session
        finally:
            session.close()

    def _platform_args(self) -> List[str]:
        p = str(self.settings.platform or "").strip()
        return ["--platform", p] if p else []

    def _evaluate(self, container: Container, session: _Session) -> _Evaluation:
        if not container.image:
            raise ValidationError("container has no base image; call from_() first")

        state = ContainerState()
        image = container.image
        digest = _sha(json.dumps({"image": image, "platform": self.settings.platform}))
        out = ""
        for step in container.steps:
            state.apply(step)
            if step.kind not in LAYER_KINDS:
                continue
            digest = _sha(
                json.dumps(
                    {"prev": digest, "state": _state_fingerprint(state), "step": _fingerprint(step)},
                    sort_keys=True,
                )
            )
            hit = self._memo.get(digest)
            if hit is not None:
                image, out = hit
                continue
            if step.kind == "exec":
                image, out = self._exec(session, image, state, step)
            else:
                image = self._copy_in(session, image, state, step)
            self._memo[digest] = (image, out)
        return _Evaluation(image=image, state=state, stdout=out)

    def _run_args(self, session: _Session, state: ContainerState) -> Tuple[List[str], Optional[Dict[str, str]]]:
        args: List[str] = self._platform_args()
        if state.workdir:
            args += ["-w", state.workdir]
        for k, v in sorted(state.env.items()):
            args += ["-e", f"{k}={v}"]

        env: Optional[Dict[str, str]] = None
        if state.secret_env:
            # Secret values reach docker through the client env, never argv.
            env = dict(os.environ)
            for k, secret in sorted(state.secret_env.items()):
                args += ["-e", k]
                env[k] = secret.plaintext()

        for path, secret in sorted(state.secret_mounts.items()):
            args += ["-v", f"{session.secret_file(secret)}:{path}:ro"]
        for path, directory in sorted(state.directory_mounts.items()):
            host = directory.path.resolve()
            if not host.is_dir():
                raise ValidationError(f"mounted directory not found: {host}")
            args += ["-v", f"{host}:{path}"]
        for path, cache in sorted(state.cache_mounts.items()):
            args += ["-v", f"{self.settings.cache_prefix}{cache.name}:{path}"]

        if state.services:
            args += ["--network", session.ensure_network()]
            for alias, service in sorted(state.services.items()):
                self._start_service(session, alias, service)
        return args, env

    def _exec(self, session: _Session, image: str, state: ContainerState, step: Step) -> Tuple[str, str]:
        cmd = state.command_for(step)
        if not cmd:
            raise ValidationError("exec step has no command (empty args and no entrypoint)")

        name = f"toolbox-{uuid.uuid4().hex[:12]}"
        run_args, env = self._run_args(session, state)
        args = ["run", "--name", name] + run_args
        if step.insecure_root_capabilities:
            args.append("--privileged")
        args += ["--entrypoint", cmd[0], image] + cmd[1:]

        self._log(f"exec {' '.join(cmd)}")
        started = time.monotonic()
        cp = self._docker(args, env=env, check=False)
        try:
            if cp.returncode != 0:
                raise ExecError(cmd, cp.returncode, cp.stdout or "", cp.stderr or "")
            commit = ["commit"]
            for k in sorted(state.secret_env):
                commit += ["--change", f"ENV {k}="]
            commit.append(name)
            new_image = self._docker(commit).stdout.strip()
        finally:
            self._docker(["rm", "-f", name], check=False)
        self._log(f"exec done in {time.monotonic() - started:.1f}s")
        self._images.append(new_image)
        return new_image, cp.stdout or ""

    def _image_workdir(self, image: str) -> str:
        cp = self._docker(["image", "inspect", "-f", "{{.Config.WorkingDir}}", image], check=False)
        return (cp.stdout or "").strip() if cp.returncode == 0 else ""

    def _abs_path(self, image: str, state: ContainerState, path: str) -> str:
        p = PurePosixPath(path)
        if p.is_absolute():
            return str(p)
        base = state.workdir or self._image_workdir(image) or "/"
        return str(PurePosixPath(base) / p)

    def _copy_in(self, session: _Session, image: str, state: ContainerState, step: Step) -> str:
        target = self._abs_path(image, state, step.path)

        if step.kind == "new_file":
            data = str(step.value).encode("utf-8")
        elif isinstance(step.value, HostFile):
            if not step.value.path.is_file():
                raise ValidationError(f"host file not found: {step.value.path}")
            data = step.value.path.read_bytes()
        elif isinstance(step.value, ContainerFile):
            tmp = session.scratch(PurePosixPath(step.value.path).name or "file")
            self._export(session, step.value, tmp)
            data = tmp.read_bytes()
        else:
            raise ValidationError(f"unsupported file source for {step.path}: {step.value!r}")

        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tf:
            info = tarfile.TarInfo(name=target.lstrip("/"))
            info.size = len(data)
            info.mode = step.permissions
            info.mtime = int(time.time())
            tf.addfile(info, io.BytesIO(data))

        name = f"toolbox-{uuid.uuid4().hex[:12]}"
        self._log(f"copy {target}")
        self._docker(["create", "--name", name] + self._platform_args() + ["--entrypoint", "/bin/true", image])
        try:
            self._docker(["cp", "-", f"{name}:/"], stdin=buf.getvalue())
            new_image = self._docker(["commit", name]).stdout.strip()
        finally:
            self._docker(["rm", "-f", name], check=False)
        self._images.append(new_image)
        return new_image

    def _export(self, session: _Session, file: ContainerFile, dest: Path) -> None:
        ev = self._evaluate(file.container, session)
        src = self._abs_path(ev.image, ev.state, file.path)
        name = f"toolbox-{uuid.uuid4().hex[:12]}"
        self._docker(["create", "--name", name] + self._platform_args() + ["--entrypoint", "/bin/true", ev.image])
        try:
            self._copy_out(name, src, dest)
        finally:
            self._docker(["rm", "-f", name], check=False)
        if not dest.is_file():
            raise NotFoundError(f"file not found in container: {src}")

    def _copy_out(self, name: str, src: str, dest: Path) -> None:
        self._docker(["cp", f"{name}:{src}", str(dest)])

    def _start_service(self, session: _Session, alias: str, service: Container) -> None:
        if alias in session.services:
            return
        base, last = service.without_last_exec()
        if last is None:
            raise ValidationError(f"service {alias!r} has no command to run")
        ev = self._evaluate(base, session)
        cmd = ev.state.command_for(last)
        if not cmd:
            raise ValidationError(f"service {alias!r} has no command to run")

        name = f"toolbox-svc-{alias}-{uuid.uuid4().hex[:8]}"
        run_args, env = self._run_args(session, ev.state)
        network = session.ensure_network()
        args = ["run", "-d", "--name", name, "--network", network, "--network-alias", alias] + run_args
        if last.insecure_root_capabilities:
            args.append("--privileged")
        args += ["--entrypoint", cmd[0], ev.image] + cmd[1:]

        self._log(f"service {alias} -> {' '.join(cmd)}")
        self._docker(args, env=env)
        session.services[alias] = name
        if ev.state.readiness_check:
            self._wait_ready(alias, name, list(ev.state.readiness_check))

    def _wait_ready(self, alias: str, name: str, check: List[str]) -> None:
        deadline = time.monotonic() + self.settings.service_ready_timeout
        while True:
            cp = self._docker(["exec", name] + check, check=False)
            if cp.returncode == 0:
                self._log(f"service {alias} ready")
                return
            if time.monotonic() >= deadline:
                raise ExecError(check, cp.returncode, cp.stdout or "", cp.stderr or "")
            time.sleep(self.settings.service_ready_interval)
