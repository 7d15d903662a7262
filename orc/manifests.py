from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from typing import Any, Union

from .errors import ManifestError


NAME_RE = re.compile(r"^[a-z][a-z0-9\-]{0,62}$")
KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-\.]{0,252}$")
# [registry[:port]/]path[:tag][@digest]; no unresolved ${VARS} or whitespace.
IMAGE_RE = re.compile(
    r"^(?:[a-z0-9][a-z0-9.\-]*(?::\d+)?/)?"
    r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*"
    r"(?::[A-Za-z0-9_][A-Za-z0-9_.\-]{0,127})?"
    r"(?:@sha256:[a-f0-9]{64})?$"
)

PART_OF_LABEL = "app.kubernetes.io/part-of"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "orc"


def validate_name(name: str, what: str = "name") -> None:
    if not NAME_RE.match(name):
        raise ManifestError(
            f"Invalid {what} '{name}'. Use lowercase letters/numbers and hyphen, starting with a letter (max 63 chars)."
        )


def validate_image(image: str) -> None:
    if not image or not IMAGE_RE.match(image):
        raise ManifestError(f"Image reference '{image}' does not resolve to a valid name[:tag].")


@dataclass(frozen=True)
class Namespace:
    name: str

    @property
    def ref(self) -> str:
        return f"namespace/{self.name}"

    def to_manifests(self) -> list[dict[str, Any]]:
        return [
            {
                "apiVersion": "v1",
                "kind": "Namespace",
                "metadata": {"name": self.name, "labels": {PART_OF_LABEL: self.name, MANAGED_BY_LABEL: MANAGED_BY}},
            }
        ]


@dataclass(frozen=True)
class ConfigEntry:
    key: str
    value: str


@dataclass(frozen=True)
class SecretEntry:
    key: str
    value: str = field(repr=False)


@dataclass(frozen=True)
class ConfigBundle:
    """All non-sensitive settings, rendered as one ConfigMap."""

    name: str
    namespace: str
    entries: tuple[ConfigEntry, ...] = ()

    @property
    def ref(self) -> str:
        return f"config/{self.name}"

    def keys(self) -> list[str]:
        return [e.key for e in self.entries]

    def to_manifests(self) -> list[dict[str, Any]]:
        return [
            {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": {"name": self.name, "namespace": self.namespace, "labels": _labels(self.namespace)},
                "data": {e.key: e.value for e in self.entries},
            }
        ]


@dataclass(frozen=True)
class SecretBundle:
    """All sensitive settings, rendered as one Opaque Secret."""

    name: str
    namespace: str
    entries: tuple[SecretEntry, ...] = ()

    @property
    def ref(self) -> str:
        return f"secret/{self.name}"

    def keys(self) -> list[str]:
        return [e.key for e in self.entries]

    def to_manifests(self, redact: bool = False) -> list[dict[str, Any]]:
        return [
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "type": "Opaque",
                "metadata": {"name": self.name, "namespace": self.namespace, "labels": _labels(self.namespace)},
                "stringData": {e.key: ("<redacted>" if redact else e.value) for e in self.entries},
            }
        ]


@dataclass(frozen=True)
class ProbeSpec:
    kind: str  # http|tcp|exec
    port: int | None = None
    path: str = "/"
    command: tuple[str, ...] = ()
    initial_delay_s: int = 5
    period_s: int = 10
    timeout_s: int = 1
    failure_threshold: int = 3

    def to_k8s(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "initialDelaySeconds": self.initial_delay_s,
            "periodSeconds": self.period_s,
            "timeoutSeconds": self.timeout_s,
            "failureThreshold": self.failure_threshold,
        }
        if self.kind == "http":
            out["httpGet"] = {"path": self.path, "port": self.port}
        elif self.kind == "tcp":
            out["tcpSocket"] = {"port": self.port}
        elif self.kind == "exec":
            out["exec"] = {"command": list(self.command)}
        else:
            raise ManifestError(f"Unknown probe kind '{self.kind}'.")
        return out


@dataclass(frozen=True)
class ResourceSpec:
    cpu_request: str = "100m"
    memory_request: str = "128Mi"
    cpu_limit: str | None = "500m"
    memory_limit: str | None = "512Mi"

    def to_k8s(self) -> dict[str, Any]:
        out: dict[str, Any] = {"requests": {"cpu": self.cpu_request, "memory": self.memory_request}}
        limits = {k: v for k, v in (("cpu", self.cpu_limit), ("memory", self.memory_limit)) if v}
        if limits:
            out["limits"] = limits
        return out


@dataclass(frozen=True)
class EnvBinding:
    """One container environment variable and where its value comes from."""

    name: str
    source: str  # config|secret|literal
    key: str = ""
    value: str = ""

    @classmethod
    def from_config(cls, name: str, key: str | None = None) -> "EnvBinding":
        return cls(name=name, source="config", key=key or name)

    @classmethod
    def from_secret(cls, name: str, key: str | None = None) -> "EnvBinding":
        return cls(name=name, source="secret", key=key or name)

    @classmethod
    def literal(cls, name: str, value: str) -> "EnvBinding":
        return cls(name=name, source="literal", value=value)

    @classmethod
    def parse(cls, name: str, spec: str) -> "EnvBinding":
        """Parse `config:KEY`, `secret:KEY` or a plain literal value."""
        if spec.startswith("config:"):
            return cls.from_config(name, spec[len("config:"):])
        if spec.startswith("secret:"):
            return cls.from_secret(name, spec[len("secret:"):])
        return cls.literal(name, spec)

    def to_k8s(self, config_name: str, secret_name: str) -> dict[str, Any]:
        if self.source == "config":
            return {"name": self.name, "valueFrom": {"configMapKeyRef": {"name": config_name, "key": self.key}}}
        if self.source == "secret":
            return {"name": self.name, "valueFrom": {"secretKeyRef": {"name": secret_name, "key": self.key}}}
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True)
class ServiceUnit:
    """One deployable tier: Deployment + Service (+ volume claim when stateful)."""

    name: str
    image: str
    port: int
    replicas: int = 1
    stateful: bool = False
    readiness: ProbeSpec | None = None
    liveness: ProbeSpec | None = None
    resources: ResourceSpec | None = None
    env: tuple[EnvBinding, ...] = ()
    depends_on: tuple[str, ...] = ()
    storage: str | None = None
    mount_path: str | None = None
    # Build context relative to the source root; None for prebuilt images.
    source: str | None = None
    build_args: tuple[tuple[str, str], ...] = ()

    @property
    def ref(self) -> str:
        return f"unit/{self.name}"

    @property
    def service_name(self) -> str:
        return f"{self.name}-service"

    @property
    def claim_name(self) -> str:
        return f"{self.name}-pvc"

    @property
    def selector(self) -> str:
        return f"app={self.name}"

    @property
    def tier(self) -> str:
        return "stateful" if self.stateful else "stateless"

    def env_keys(self, source: str) -> list[str]:
        return [b.key for b in self.env if b.source == source]

    def to_manifests(self, namespace: str, config_name: str, secret_name: str) -> list[dict[str, Any]]:
        labels = {**_labels(namespace), "app": self.name, "tier": self.tier}
        container: dict[str, Any] = {
            "name": self.name,
            "image": self.image,
            "imagePullPolicy": "IfNotPresent",
            "ports": [{"containerPort": self.port}],
        }
        if self.env:
            container["env"] = [b.to_k8s(config_name, secret_name) for b in self.env]
        if self.resources:
            container["resources"] = self.resources.to_k8s()
        if self.readiness:
            container["readinessProbe"] = self.readiness.to_k8s()
        if self.liveness:
            container["livenessProbe"] = self.liveness.to_k8s()

        pod_spec: dict[str, Any] = {"containers": [container]}
        out: list[dict[str, Any]] = []
        if self.stateful and self.storage:
            out.append(
                {
                    "apiVersion": "v1",
                    "kind": "PersistentVolumeClaim",
                    "metadata": {"name": self.claim_name, "namespace": namespace, "labels": labels},
                    "spec": {"accessModes": ["ReadWriteOnce"], "resources": {"requests": {"storage": self.storage}}},
                }
            )
            container["volumeMounts"] = [{"name": "data", "mountPath": self.mount_path or "/data"}]
            pod_spec["volumes"] = [{"name": "data", "persistentVolumeClaim": {"claimName": self.claim_name}}]

        deployment: dict[str, Any] = {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": self.name, "namespace": namespace, "labels": labels},
            "spec": {
                "replicas": self.replicas,
                "selector": {"matchLabels": {"app": self.name}},
                "template": {"metadata": {"labels": labels}, "spec": pod_spec},
            },
        }
        if self.stateful:
            # A single writer owns the volume; never run old and new pods side by side.
            deployment["spec"]["strategy"] = {"type": "Recreate"}
        out.append(deployment)
        out.append(
            {
                "apiVersion": "v1",
                "kind": "Service",
                "metadata": {"name": self.service_name, "namespace": namespace, "labels": labels},
                "spec": {
                    "type": "ClusterIP",
                    "selector": {"app": self.name},
                    "ports": [{"port": self.port, "targetPort": self.port}],
                },
            }
        )
        return out


@dataclass(frozen=True)
class RoutingRule:
    host: str
    path_prefix: str
    target: str
    port: int


@dataclass(frozen=True)
class RouteTable:
    """External routing, rendered as one Ingress."""

    name: str
    namespace: str
    rules: tuple[RoutingRule, ...] = ()
    ingress_class: str | None = None

    @property
    def ref(self) -> str:
        return f"routes/{self.name}"

    def to_manifests(self) -> list[dict[str, Any]]:
        by_host: dict[str, list[dict[str, Any]]] = {}
        for r in self.rules:
            by_host.setdefault(r.host, []).append(
                {
                    "path": r.path_prefix,
                    "pathType": "Prefix",
                    "backend": {"service": {"name": f"{r.target}-service", "port": {"number": r.port}}},
                }
            )
        spec: dict[str, Any] = {
            "rules": [{"host": host, "http": {"paths": paths}} for host, paths in by_host.items()],
        }
        if self.ingress_class:
            spec["ingressClassName"] = self.ingress_class
        return [
            {
                "apiVersion": "networking.k8s.io/v1",
                "kind": "Ingress",
                "metadata": {"name": self.name, "namespace": self.namespace, "labels": _labels(self.namespace)},
                "spec": spec,
            }
        ]


Resource = Union[Namespace, SecretBundle, ConfigBundle, ServiceUnit, RouteTable]


@dataclass(frozen=True)
class ManifestSet:
    """Canonical, read-only definition of everything a deploy submits."""

    namespace: Namespace
    secrets: SecretBundle
    config: ConfigBundle
    units: tuple[ServiceUnit, ...]
    routes: RouteTable | None = None

    @property
    def stateful_units(self) -> list[ServiceUnit]:
        return [u for u in self.units if u.stateful]

    @property
    def stateless_units(self) -> list[ServiceUnit]:
        return [u for u in self.units if not u.stateful]

    def unit(self, name: str) -> ServiceUnit:
        for u in self.units:
            if u.name == name:
                return u
        raise KeyError(name)

    def validate(self) -> "ManifestSet":
        validate_name(self.namespace.name, "namespace")
        validate_name(self.secrets.name, "secret name")
        validate_name(self.config.name, "config name")
        for bundle in (self.secrets, self.config):
            if bundle.namespace != self.namespace.name:
                raise ManifestError(f"{bundle.ref} belongs to namespace '{bundle.namespace}', not '{self.namespace.name}'.")
            seen: set[str] = set()
            for key in bundle.keys():
                if not KEY_RE.match(key):
                    raise ManifestError(f"Invalid key '{key}' in {bundle.ref}.")
                if key in seen:
                    raise ManifestError(f"Duplicate key '{key}' in {bundle.ref}.")
                seen.add(key)

        config_keys = set(self.config.keys())
        secret_keys = set(self.secrets.keys())
        declared: set[str] = set()
        for u in self._ordered_units():
            validate_name(u.name, "service unit name")
            if u.name in declared:
                raise ManifestError(f"Service unit '{u.name}' is declared twice.")
            if u.replicas < 1:
                raise ManifestError(f"Service unit '{u.name}' must have at least one replica (got {u.replicas}).")
            if not 1 <= u.port <= 65535:
                raise ManifestError(f"Service unit '{u.name}' has invalid port {u.port}.")
            validate_image(u.image)
            for probe in (u.readiness, u.liveness):
                if probe is not None:
                    probe.to_k8s()
            for key in u.env_keys("config"):
                if key not in config_keys:
                    raise ManifestError(f"'{u.name}' binds undeclared config key '{key}'.")
            for key in u.env_keys("secret"):
                if key not in secret_keys:
                    raise ManifestError(f"'{u.name}' binds undeclared secret key '{key}'.")
            for dep in u.depends_on:
                if dep not in declared:
                    raise ManifestError(f"'{u.name}' depends on '{dep}', which is not declared before it.")
            declared.add(u.name)

        if self.routes is not None:
            validate_name(self.routes.name, "routing rule name")
            if not self.routes.rules:
                raise ManifestError(f"Route table '{self.routes.name}' has no rules; omit it instead.")
            for r in self.routes.rules:
                if r.target not in declared:
                    raise ManifestError(f"Routing rule '{r.path_prefix}' targets undeclared unit '{r.target}'.")
                if self.unit(r.target).port != r.port:
                    raise ManifestError(f"Routing rule '{r.path_prefix}' targets port {r.port}, '{r.target}' exposes {self.unit(r.target).port}.")
                if not r.path_prefix.startswith("/"):
                    raise ManifestError(f"Routing path '{r.path_prefix}' must start with '/'.")
        return self

    def _ordered_units(self) -> list[ServiceUnit]:
        return self.stateful_units + self.stateless_units

    def _deps(self, item: Resource) -> frozenset[str]:
        if isinstance(item, Namespace):
            return frozenset()
        deps = {self.namespace.ref}
        if isinstance(item, ServiceUnit):
            if item.env_keys("secret"):
                deps.add(self.secrets.ref)
            if item.env_keys("config"):
                deps.add(self.config.ref)
            deps.update(f"unit/{d}" for d in item.depends_on)
        elif isinstance(item, RouteTable):
            deps.update(f"unit/{r.target}" for r in item.rules)
        return frozenset(deps)

    def ordered(self) -> list[tuple[Resource, frozenset[str]]]:
        """(descriptor, dependency refs) pairs in apply order."""
        items: list[Resource] = [self.namespace, self.secrets, self.config, *self._ordered_units()]
        if self.routes is not None:
            items.append(self.routes)
        return [(item, self._deps(item)) for item in items]

    def manifests_for(self, item: Resource, redact_secrets: bool = False) -> list[dict[str, Any]]:
        if isinstance(item, ServiceUnit):
            return item.to_manifests(self.namespace.name, self.config.name, self.secrets.name)
        if isinstance(item, SecretBundle):
            return item.to_manifests(redact=redact_secrets)
        return item.to_manifests()

    def all_manifests(self, redact_secrets: bool = False) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for item, _ in self.ordered():
            out.extend(self.manifests_for(item, redact_secrets=redact_secrets))
        return out


def _labels(namespace: str) -> dict[str, str]:
    return {PART_OF_LABEL: namespace, MANAGED_BY_LABEL: MANAGED_BY}


def manifest_ref(manifest: dict[str, Any]) -> str:
    """`Kind/name` label used in logs and error messages."""
    return f"{manifest.get('kind', '?')}/{manifest.get('metadata', {}).get('name', '?')}"


def render(manifest_set: ManifestSet, out_dir: str, include_secrets: bool = False) -> list[str]:
    """Write every manifest as numbered JSON in apply order; return the paths.

    Secret values are redacted unless `include_secrets` is set.
    """
    os.makedirs(out_dir, exist_ok=True)
    paths: list[str] = []
    for i, m in enumerate(manifest_set.all_manifests(redact_secrets=not include_secrets), start=1):
        fname = f"{i:02d}-{m['kind'].lower()}-{m['metadata']['name']}.json"
        path = os.path.join(out_dir, fname)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(m, f, indent=2)
            f.write("\n")
        paths.append(path)
    return paths
