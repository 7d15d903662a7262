from __future__ import annotations

import abc
import json
from dataclasses import dataclass
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.config import ConfigException
from urllib3.exceptions import HTTPError

from .errors import ApplyFailure, ToolingUnavailable
from .manifests import manifest_ref


@dataclass(frozen=True)
class PodStatus:
    name: str
    phase: str
    ready: bool
    restarts: int


class ClusterClient(abc.ABC):
    """Everything the rollout needs from a cluster. Injected, never global."""

    @abc.abstractmethod
    def check_tooling(self) -> str:
        """Return the server version; raise ToolingUnavailable if unreachable."""

    @abc.abstractmethod
    def current_context(self) -> str:
        """Name of the kubeconfig context in use; raise ToolingUnavailable if none."""

    @abc.abstractmethod
    def apply(self, manifest: dict[str, Any]) -> None:
        """Create or update one object; raise ApplyFailure when rejected."""

    @abc.abstractmethod
    def is_ready(self, namespace: str, selector: str) -> bool:
        """True when at least one pod matches and all matching pods are Ready."""

    @abc.abstractmethod
    def exists(self, kind: str, name: str, namespace: str | None = None) -> bool:
        ...

    @abc.abstractmethod
    def list_pods(self, namespace: str) -> list[PodStatus]:
        ...


# kind -> (api class, snake_case resource, namespaced)
_KINDS: dict[str, tuple[str, str, bool]] = {
    "Namespace": ("CoreV1Api", "namespace", False),
    "Secret": ("CoreV1Api", "secret", True),
    "ConfigMap": ("CoreV1Api", "config_map", True),
    "PersistentVolumeClaim": ("CoreV1Api", "persistent_volume_claim", True),
    "Service": ("CoreV1Api", "service", True),
    "Deployment": ("AppsV1Api", "deployment", True),
    "Ingress": ("NetworkingV1Api", "ingress", True),
}


class KubernetesClusterClient(ClusterClient):
    """ClusterClient backed by the official kubernetes client.

    Apply is read -> create on 404 -> patch otherwise, so re-applying an
    unchanged manifest set is a no-op update.
    """

    def __init__(self, context: str | None = None, apis: dict[str, Any] | None = None) -> None:
        self.context = context
        self._apis: dict[str, Any] = dict(apis or {})
        self._loaded = bool(apis)

    def _load(self) -> None:
        if self._loaded:
            return
        try:
            config.load_kube_config(context=self.context)
        except (ConfigException, OSError) as e:
            try:
                config.load_incluster_config()
            except ConfigException:
                raise ToolingUnavailable(f"No usable kubeconfig: {e}") from e
        self._loaded = True

    def _api(self, name: str) -> Any:
        self._load()
        if name not in self._apis:
            self._apis[name] = getattr(client, name)()
        return self._apis[name]

    def check_tooling(self) -> str:
        try:
            info = self._api("VersionApi").get_code()
        except (ApiException, HTTPError) as e:
            raise ToolingUnavailable(f"Kubernetes API is not reachable: {e}") from e
        return getattr(info, "git_version", str(info))

    def current_context(self) -> str:
        try:
            contexts, active = config.list_kube_config_contexts()
        except (ConfigException, OSError) as e:
            raise ToolingUnavailable(f"No usable kubeconfig: {e}") from e
        if not self.context:
            if not active:
                raise ToolingUnavailable("kubeconfig has no current context")
            return active["name"]
        if self.context not in [c["name"] for c in contexts]:
            raise ToolingUnavailable(f"Context '{self.context}' is not in the kubeconfig")
        return self.context

    def _call(self, verb: str, kind: str, namespace: str | None, **kwargs: Any) -> Any:
        try:
            api_name, resource, namespaced = _KINDS[kind]
        except KeyError:
            raise ApplyFailure(kind, f"unsupported kind '{kind}'") from None
        api = self._api(api_name)
        if namespaced:
            return getattr(api, f"{verb}_namespaced_{resource}")(namespace=namespace, **kwargs)
        return getattr(api, f"{verb}_{resource}")(**kwargs)

    def apply(self, manifest: dict[str, Any]) -> None:
        kind = manifest["kind"]
        name = manifest["metadata"]["name"]
        namespace = manifest["metadata"].get("namespace")
        ref = manifest_ref(manifest)
        try:
            try:
                self._call("read", kind, namespace, name=name)
            except ApiException as e:
                if e.status != 404:
                    raise
                self._call("create", kind, namespace, body=manifest)
                return
            self._call("patch", kind, namespace, name=name, body=manifest)
        except ApiException as e:
            raise ApplyFailure(ref, f"{e.status} {e.reason}: {_api_message(e)}") from e
        except HTTPError as e:
            raise ApplyFailure(ref, f"transport error: {e}") from e

    def exists(self, kind: str, name: str, namespace: str | None = None) -> bool:
        try:
            self._call("read", kind, namespace, name=name)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise ToolingUnavailable(f"Cannot read {kind}/{name}: {e.status} {e.reason}") from e
        except HTTPError as e:
            raise ToolingUnavailable(f"Cannot read {kind}/{name}: {e}") from e

    def _pods(self, namespace: str, selector: str | None = None) -> list[Any]:
        kwargs = {"label_selector": selector} if selector else {}
        try:
            return list(self._api("CoreV1Api").list_namespaced_pod(namespace=namespace, **kwargs).items or [])
        except (ApiException, HTTPError) as e:
            raise ToolingUnavailable(f"Cannot list pods in {namespace}: {e}") from e

    def is_ready(self, namespace: str, selector: str) -> bool:
        pods = self._pods(namespace, selector)
        return bool(pods) and all(_pod_ready(p) for p in pods)

    def list_pods(self, namespace: str) -> list[PodStatus]:
        out: list[PodStatus] = []
        for p in self._pods(namespace):
            statuses = (p.status.container_statuses or []) if p.status else []
            out.append(
                PodStatus(
                    name=p.metadata.name,
                    phase=(p.status.phase if p.status else None) or "Unknown",
                    ready=_pod_ready(p),
                    restarts=sum(int(s.restart_count or 0) for s in statuses),
                )
            )
        return out


def _pod_ready(pod: Any) -> bool:
    conditions = (pod.status.conditions or []) if pod.status else []
    return any(c.type == "Ready" and c.status == "True" for c in conditions)


def _api_message(e: ApiException) -> str:
    # The API server returns a Status object as JSON in the body.
    try:
        return json.loads(e.body).get("message") or str(e.body)
    except (TypeError, ValueError, AttributeError):
        return str(e.body or "")
