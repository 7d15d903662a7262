"""Read-only environment checks. Nothing here creates or changes resources."""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from typing import Any, Callable

from .builder import build_targets
from .cluster import ClusterClient
from .errors import ToolingUnavailable
from .health import probe_url as default_probe
from .manifests import ManifestSet, manifest_ref


PASS, WARN, FAIL = "pass", "warn", "fail"
LOCAL_CLUSTER_TOOLS = ("minikube", "kind")


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: str  # pass|warn|fail
    detail: str = ""
    # Only required checks affect the exit code.
    required: bool = False

    def line(self) -> str:
        return f"[{self.status.upper()}] {self.name}: {self.detail}"


def run_checks(
    manifest_set: ManifestSet,
    cluster: ClusterClient,
    builder: Any,
    source_root: str,
    probe_url: str | None = None,
    probe: Callable[[str], tuple[bool, str, float | None]] = default_probe,
    which: Callable[[str], str | None] = shutil.which,
) -> list[CheckResult]:
    results: list[CheckResult] = []

    docker_ok = builder.available()
    results.append(
        CheckResult("docker daemon", PASS if docker_ok else FAIL, "reachable" if docker_ok else "not reachable", required=True)
    )

    targets = build_targets(manifest_set, source_root)
    for t in targets:
        dockerfile = os.path.join(t.context, "Dockerfile")
        ok = os.path.isfile(dockerfile)
        results.append(CheckResult(f"{t.unit} Dockerfile", PASS if ok else FAIL, dockerfile + ("" if ok else " missing")))

    if docker_ok:
        for t in targets:
            if builder.image_exists(t.tag):
                results.append(CheckResult(f"{t.unit} image", PASS, t.tag))
            else:
                results.append(CheckResult(f"{t.unit} image", WARN, f"{t.tag} not found; run: orc build-images"))

    local = [tool for tool in LOCAL_CLUSTER_TOOLS if which(tool)]
    results.append(
        CheckResult(
            "local cluster tooling",
            PASS if local else WARN,
            ", ".join(local) if local else "neither minikube nor kind found; load images into the cluster yourself",
        )
    )

    try:
        results.append(CheckResult("kube context", PASS, cluster.current_context()))
    except ToolingUnavailable as e:
        results.append(CheckResult("kube context", WARN, str(e)))

    try:
        version = cluster.check_tooling()
    except ToolingUnavailable as e:
        results.append(CheckResult("kubernetes cluster", WARN, str(e)))
        return _with_probe(results, probe_url, probe)
    results.append(CheckResult("kubernetes cluster", PASS, f"reachable (server {version})"))

    ns = manifest_set.namespace.name
    for m in manifest_set.all_manifests(redact_secrets=True):
        ref = manifest_ref(m)
        try:
            present = cluster.exists(m["kind"], m["metadata"]["name"], m["metadata"].get("namespace"))
        except ToolingUnavailable as e:
            results.append(CheckResult(ref, WARN, str(e)))
            continue
        results.append(CheckResult(ref, PASS if present else WARN, "present" if present else f"not found in '{ns}'"))

    for u in manifest_set.units:
        try:
            ready = cluster.is_ready(ns, u.selector)
        except ToolingUnavailable as e:
            results.append(CheckResult(f"{u.name} pods", WARN, str(e)))
            continue
        results.append(CheckResult(f"{u.name} pods", PASS if ready else WARN, "ready" if ready else "not ready"))

    return _with_probe(results, probe_url, probe)


def _with_probe(
    results: list[CheckResult],
    url: str | None,
    probe: Callable[[str], tuple[bool, str, float | None]],
) -> list[CheckResult]:
    if url:
        ok, msg, latency = probe(url)
        detail = f"{url} {msg}" + (f" ({latency} ms)" if latency is not None else "")
        results.append(CheckResult("application endpoint", PASS if ok else WARN, detail))
    return results


def exit_code(results: list[CheckResult]) -> int:
    return 1 if any(r.required and r.status == FAIL for r in results) else 0
