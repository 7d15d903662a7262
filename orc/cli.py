from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace

from . import db
from .alerts import notify_run
from .builder import DockerImageBuilder, build_all, build_targets
from .cluster import ClusterClient, KubernetesClusterClient
from .errors import BuildFailure, ManifestError, ToolingUnavailable
from .manifests import ManifestSet, render
from .overrides import load_overrides
from .rollout import RolloutController
from .settings import Settings, settings
from .stack import default_manifest_set
from .verify import exit_code, run_checks


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _echo(level: str, message: str) -> None:
    print(f"[{level}] {message}", file=sys.stderr)


def _cluster(cfg: Settings) -> ClusterClient:
    return KubernetesClusterClient(context=cfg.kube_context)


def _builder() -> DockerImageBuilder:
    return DockerImageBuilder()


def _manifest_set(cfg: Settings, overrides_path: str | None, **flags: str | None) -> ManifestSet:
    # Command line flags beat the overrides file, which beats ORC_* env vars.
    ov = load_overrides(overrides_path)
    given = {k: v for k, v in flags.items() if v}
    if given:
        ov = ov.model_copy(update=given)
    return default_manifest_set(cfg, ov)


def _build(cfg: Settings, ms: ManifestSet) -> int:
    try:
        built = build_all(build_targets(ms, cfg.source_root), _builder())
    except BuildFailure as e:
        _print({"error": "BuildFailure", "unit": e.unit, "exit_status": e.exit_status, "output": e.output})
        return 1
    except ToolingUnavailable as e:
        _print({"error": "ToolingUnavailable", "detail": str(e)})
        return 1
    _print({"built": built})
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="orc", description="Ordered Rollout Controller CLI")
    p.add_argument("--namespace", help="Target namespace (default: ORC_NAMESPACE)")
    p.add_argument("--context", help="kubeconfig context (default: ORC_KUBE_CONTEXT)")
    p.add_argument("--overrides", help="JSON file with image/replica/config/secret/env overrides")
    p.add_argument("-q", "--quiet", action="store_true", help="Do not echo progress to stderr")
    sub = p.add_subparsers(dest="cmd", required=True)

    tagged = argparse.ArgumentParser(add_help=False)
    tagged.add_argument("--tag", help="Image tag (default: ORC_IMAGE_TAG)")

    s_build = sub.add_parser(
        "build-images", parents=[tagged], help="Build one image per service unit with a source tree"
    )
    s_build.add_argument("--source-root", help="Directory containing the unit source trees")

    s_dep = sub.add_parser("deploy", parents=[tagged], help="Apply the manifest set in dependency order")
    s_dep.add_argument("--build", action="store_true", help="Build images first; a failed build skips the rollout")
    s_dep.add_argument("--timeout", type=float, help="Seconds to wait for stateful readiness (default 120)")
    s_dep.add_argument("--poll-interval", type=float, help="Seconds between readiness polls")
    s_dep.add_argument("--ingress-required", action="store_true", help="Treat a rejected routing rule as fatal")

    s_ver = sub.add_parser("verify", parents=[tagged], help="Read-only checks of tooling, cluster and deployed resources")
    s_ver.add_argument("--probe-url", help="Application URL to GET through the routing rule")

    s_ren = sub.add_parser("render", parents=[tagged], help="Write manifests as numbered JSON files in apply order")
    s_ren.add_argument("--out", required=True)
    s_ren.add_argument("--include-secrets", action="store_true", help="Write real secret values instead of placeholders")

    sub.add_parser("status", help="Show pods in the target namespace")

    s_ev = sub.add_parser("events", help="Show journaled events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--run", help="Only events of this run id")

    args = p.parse_args(argv)

    cfg = settings
    if args.namespace:
        cfg = replace(cfg, namespace=args.namespace)
    if args.context:
        cfg = replace(cfg, kube_context=args.context)
    if getattr(args, "tag", None):
        cfg = replace(cfg, image_tag=args.tag)
    if getattr(args, "source_root", None):
        cfg = replace(cfg, source_root=args.source_root)

    if args.cmd == "events":
        _print(db.latest_events(limit=args.limit, run_id=args.run))
        return 0

    try:
        ms = _manifest_set(cfg, args.overrides, namespace=args.namespace, image_tag=getattr(args, "tag", None))
    except ManifestError as e:
        _print({"error": "ManifestError", "detail": str(e)})
        return 2

    if args.cmd == "build-images":
        return _build(cfg, ms)

    if args.cmd == "render":
        _print({"written": render(ms, args.out, include_secrets=args.include_secrets)})
        return 0

    if args.cmd == "verify":
        results = run_checks(ms, _cluster(cfg), _builder(), cfg.source_root, probe_url=args.probe_url)
        for r in results:
            print(r.line())
        return exit_code(results)

    if args.cmd == "status":
        try:
            pods = _cluster(cfg).list_pods(ms.namespace.name)
        except ToolingUnavailable as e:
            _print({"error": "ToolingUnavailable", "detail": str(e)})
            return 1
        _print([{"name": x.name, "phase": x.phase, "ready": x.ready, "restarts": x.restarts} for x in pods])
        return 0

    if args.cmd == "deploy":
        if args.build:
            rc = _build(cfg, ms)
            if rc != 0:
                return rc
        controller = RolloutController(
            _cluster(cfg),
            ms,
            ready_timeout_s=args.timeout if args.timeout is not None else cfg.ready_timeout_s,
            poll_interval_s=args.poll_interval if args.poll_interval is not None else cfg.poll_interval_s,
            ingress_required=args.ingress_required or cfg.ingress_required,
            reporter=None if args.quiet else _echo,
        )
        result = controller.run()
        notify_run(result, ms.namespace.name, cfg)
        _print(result.to_dict())
        return 0 if result.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
