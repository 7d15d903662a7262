from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from . import db
from .cluster import ClusterClient
from .db import utc_now
from .errors import OrcError, ReadinessTimeout, RolloutAborted
from .manifests import ManifestSet, Resource, ServiceUnit, manifest_ref


class RunState(str, Enum):
    IDLE = "Idle"
    PRECHECKING_TOOLING = "PrecheckingTooling"
    APPLYING_NAMESPACE = "ApplyingNamespace"
    APPLYING_SECRETS_AND_CONFIG = "ApplyingSecretsAndConfig"
    APPLYING_STATEFUL_TIER = "ApplyingStatefulTier"
    AWAITING_STATEFUL_READY = "AwaitingStatefulReady"
    APPLYING_STATELESS_TIERS = "ApplyingStatelessTiers"
    APPLYING_ROUTING_RULE = "ApplyingRoutingRule"
    COMPLETE = "Complete"
    ABORTED = "Aborted"

    @property
    def terminal(self) -> bool:
        return self in (RunState.COMPLETE, RunState.ABORTED)


@dataclass
class Step:
    state: RunState
    action: str  # precheck|apply|await
    items: list[Resource] = field(default_factory=list)
    # Optional steps downgrade failures to warnings.
    optional: bool = False
    timeout_s: float | None = None


@dataclass
class RolloutPlan:
    namespace: str
    steps: list[Step]


def plan_rollout(manifest_set: ManifestSet, ready_timeout_s: float, ingress_required: bool = False) -> RolloutPlan:
    """Fixed step order; each step only starts after the previous one resolved."""
    stateful = manifest_set.stateful_units
    return RolloutPlan(
        namespace=manifest_set.namespace.name,
        steps=[
            Step(RunState.PRECHECKING_TOOLING, "precheck"),
            Step(RunState.APPLYING_NAMESPACE, "apply", [manifest_set.namespace]),
            Step(RunState.APPLYING_SECRETS_AND_CONFIG, "apply", [manifest_set.secrets, manifest_set.config]),
            Step(RunState.APPLYING_STATEFUL_TIER, "apply", list(stateful)),
            Step(RunState.AWAITING_STATEFUL_READY, "await", list(stateful), optional=True, timeout_s=ready_timeout_s),
            Step(RunState.APPLYING_STATELESS_TIERS, "apply", list(manifest_set.stateless_units)),
            Step(
                RunState.APPLYING_ROUTING_RULE,
                "apply",
                [manifest_set.routes] if manifest_set.routes is not None else [],
                optional=not ingress_required,
            ),
        ],
    )


@dataclass
class RunResult:
    run_id: str
    state: RunState = RunState.IDLE
    warnings: list[str] = field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None
    applied: list[str] = field(default_factory=list)
    transitions: list[str] = field(default_factory=list)
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None
    cause: BaseException | None = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.state is RunState.COMPLETE

    def raise_for_abort(self) -> None:
        if self.state is RunState.ABORTED and self.cause is not None:
            raise RolloutAborted(self.failed_step or "?", self.cause)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "warnings": list(self.warnings),
            "failed_step": self.failed_step,
            "error": self.error,
            "applied": list(self.applied),
            "transitions": list(self.transitions),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class RolloutController:
    """Applies a manifest set in dependency order, gating on stateful readiness.

    Single-threaded: every submission blocks until the cluster answers, and
    the readiness gate sleeps between polls. No retries; the cluster owns
    reconciliation after submission.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        manifest_set: ManifestSet,
        ready_timeout_s: float = 120.0,
        poll_interval_s: float = 2.0,
        ingress_required: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        reporter: Callable[[str, str], None] | None = None,
    ):
        self.cluster = cluster
        self.manifest_set = manifest_set.validate()
        self.ready_timeout_s = max(0.0, float(ready_timeout_s))
        self.poll_interval_s = max(0.1, float(poll_interval_s))
        self.ingress_required = ingress_required
        self.sleep = sleep
        self.clock = clock
        self.reporter = reporter
        self.plan = plan_rollout(manifest_set, self.ready_timeout_s, ingress_required)

    def run(self) -> RunResult:
        res = RunResult(run_id=secrets.token_hex(6))
        self._log(res, "INFO", f"Rollout started for namespace '{self.plan.namespace}'")

        for step in self.plan.steps:
            self._enter(res, step.state)
            try:
                if step.action == "precheck":
                    version = self.cluster.check_tooling()
                    self._log(res, "INFO", f"Cluster reachable (server {version})")
                elif step.action == "await":
                    self._await_ready(res, step)
                else:
                    self._apply_items(res, step.items)
            except OrcError as e:
                if step.optional:
                    self._warn(res, f"{step.state.value}: {e}")
                    continue
                res.failed_step = step.state.value
                res.error = str(e)
                res.cause = e
                self._enter(res, RunState.ABORTED)
                self._log(res, "ERROR", f"Aborted during {step.state.value}: {e}")
                res.finished_at = utc_now()
                return res

        self._enter(res, RunState.COMPLETE)
        summary = f"Rollout complete with {len(res.warnings)} warning(s)" if res.warnings else "Rollout complete"
        self._log(res, "INFO", summary)
        res.finished_at = utc_now()
        return res

    def _enter(self, res: RunResult, state: RunState) -> None:
        res.state = state
        res.transitions.append(state.value)

    def _apply_items(self, res: RunResult, items: list[Resource]) -> None:
        for item in items:
            for manifest in self.manifest_set.manifests_for(item):
                ref = manifest_ref(manifest)
                self.cluster.apply(manifest)
                res.applied.append(ref)
                self._log(res, "INFO", f"Applied {ref}")

    def _await_ready(self, res: RunResult, step: Step) -> None:
        timeout_s = step.timeout_s if step.timeout_s is not None else self.ready_timeout_s
        for unit in [u for u in step.items if isinstance(u, ServiceUnit)]:
            if not self._wait_ready(res, unit, timeout_s):
                # Stateless tiers have their own readiness probes; keep going.
                self._warn(res, str(ReadinessTimeout(unit.name, timeout_s)))

    def _wait_ready(self, res: RunResult, unit: ServiceUnit, timeout_s: float) -> bool:
        t0 = self.clock()
        polls = 0
        while True:
            polls += 1
            try:
                if self.cluster.is_ready(self.plan.namespace, unit.selector):
                    self._log(res, "INFO", f"'{unit.name}' ready after {polls} poll(s)")
                    return True
            except OrcError as e:
                self._log(res, "WARN", f"Readiness poll for '{unit.name}' failed: {e}")
            remaining = timeout_s - (self.clock() - t0)
            if remaining <= 0:
                return False
            self.sleep(min(self.poll_interval_s, remaining))

    def _warn(self, res: RunResult, message: str) -> None:
        res.warnings.append(message)
        self._log(res, "WARN", message)

    def _log(self, res: RunResult, level: str, message: str) -> None:
        step = res.state.value
        db.log_event(level, message, run_id=res.run_id, step=step)
        if self.reporter:
            self.reporter(level, message)
