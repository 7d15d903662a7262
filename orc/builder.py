from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Iterable

import docker
from docker.errors import APIError, BuildError, DockerException, ImageNotFound

from .db import log_event
from .errors import BuildFailure, ToolingUnavailable
from .manifests import ManifestSet


NONZERO_RE = re.compile(r"non-zero code:\s*(\d+)")


@dataclass(frozen=True)
class BuildTarget:
    unit: str
    context: str
    tag: str
    build_args: tuple[tuple[str, str], ...] = ()


def build_targets(manifest_set: ManifestSet, source_root: str) -> list[BuildTarget]:
    """One target per service unit that is built from a local source tree."""
    return [
        BuildTarget(
            unit=u.name,
            context=os.path.join(source_root, u.source),
            tag=u.image,
            build_args=u.build_args,
        )
        for u in manifest_set.units
        if u.source
    ]


def _exit_status(build_log: Iterable[dict[str, Any]] | None, msg: str) -> int | None:
    for chunk in build_log or ():
        detail = chunk.get("errorDetail") if isinstance(chunk, dict) else None
        if detail and detail.get("code") is not None:
            try:
                return int(detail["code"])
            except (TypeError, ValueError):
                break
    m = NONZERO_RE.search(msg or "")
    return int(m.group(1)) if m else None


class DockerImageBuilder:
    """Builds images into the local docker image store. Nothing is pushed."""

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self._c = client

    def _client(self) -> docker.DockerClient:
        if self._c is None:
            self._c = docker.from_env()
        return self._c

    def available(self) -> bool:
        try:
            self._client().ping()
            return True
        except DockerException:
            return False

    def build(self, target: BuildTarget) -> str:
        if not os.path.isdir(target.context):
            raise BuildFailure(target.unit, None, f"build context '{target.context}' not found")
        try:
            self._client().images.build(
                path=target.context,
                tag=target.tag,
                buildargs=dict(target.build_args),
                rm=True,
            )
        except BuildError as e:
            log = list(e.build_log or [])
            tail = "".join(c.get("stream", "") for c in log if isinstance(c, dict))[-2000:]
            raise BuildFailure(target.unit, _exit_status(log, e.msg), f"{e.msg}\n{tail}".strip()) from e
        except APIError as e:
            raise BuildFailure(target.unit, None, str(e.explanation or e)) from e
        return target.tag

    def image_exists(self, ref: str) -> bool:
        try:
            self._client().images.get(ref)
            return True
        except ImageNotFound:
            return False


def build_all(targets: list[BuildTarget], builder: Any, run_id: str | None = None) -> list[str]:
    """Build every target in order; the first failure aborts the whole build."""
    if not builder.available():
        raise ToolingUnavailable("Docker daemon is not reachable. Start Docker and try again.")

    built: list[str] = []
    for t in targets:
        log_event("INFO", f"Building image {t.tag} for '{t.unit}' from {t.context}", run_id=run_id, step="build")
        try:
            ref = builder.build(t)
        except BuildFailure as e:
            log_event("ERROR", str(e), run_id=run_id, step="build")
            raise
        built.append(ref)
        log_event("INFO", f"Built image {ref}", run_id=run_id, step="build")

    if built:
        refs = " ".join(built)
        log_event("INFO", f"To use these images in minikube: minikube image load {refs}", run_id=run_id, step="build")
        log_event("INFO", f"To use these images in kind: kind load docker-image {refs}", run_id=run_id, step="build")
    return built
