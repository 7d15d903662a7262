import httpx

from fakes import FakeBuilder, FakeCluster
from orc.health import probe_url
from orc.settings import Settings
from orc.stack import default_manifest_set
from orc.verify import FAIL, PASS, WARN, exit_code, run_checks


def _ms():
    return default_manifest_set(Settings(namespace="fullstack-app"))


def _by_name(results):
    return {r.name: r for r in results}


def test_checks_on_empty_cluster(tmp_path):
    results = run_checks(_ms(), FakeCluster(ready_after=None), FakeBuilder(), str(tmp_path))
    by = _by_name(results)
    assert by["docker daemon"].status == PASS
    assert by["backend Dockerfile"].status == FAIL
    assert by["backend image"].status == WARN
    assert by["kubernetes cluster"].status == PASS
    assert by["Namespace/fullstack-app"].status == WARN
    assert by["mongodb pods"].status == WARN
    # Missing Dockerfiles and resources are reported but are not required.
    assert exit_code(results) == 0


def test_unreachable_cluster_skips_resource_checks(tmp_path):
    results = run_checks(_ms(), FakeCluster(tooling=False), FakeBuilder(), str(tmp_path))
    names = [r.name for r in results]
    assert "Namespace/fullstack-app" not in names
    assert _by_name(results)["kubernetes cluster"].status == WARN


def test_missing_docker_is_required(tmp_path):
    results = run_checks(_ms(), FakeCluster(), FakeBuilder(available=False), str(tmp_path))
    assert exit_code(results) == 1
    assert not any(r.name.endswith(" image") for r in results)


def test_probe_url_check(tmp_path):
    calls = []

    def probe(url):
        calls.append(url)
        return False, "HTTP 502", 3.5

    results = run_checks(_ms(), FakeCluster(), FakeBuilder(), str(tmp_path), probe_url="http://fullstack-app.local/", probe=probe)
    check = _by_name(results)["application endpoint"]
    assert calls == ["http://fullstack-app.local/"]
    assert check.status == WARN
    assert check.line() == "[WARN] application endpoint: http://fullstack-app.local/ HTTP 502 (3.5 ms)"


def test_probe_url_with_mock_transport():
    ok_transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html></html>"))
    ok, msg, latency = probe_url("http://fullstack-app.local/", transport=ok_transport)
    assert ok is True and msg == "HTTP 200" and latency is not None

    bad_transport = httpx.MockTransport(lambda request: httpx.Response(503))
    ok, msg, _ = probe_url("http://fullstack-app.local/", transport=bad_transport)
    assert ok is False and msg == "HTTP 503"

    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    ok, msg, latency = probe_url("http://fullstack-app.local/", transport=httpx.MockTransport(refuse))
    assert ok is False and msg.startswith("No response: ConnectError")
    assert latency is None


def test_context_and_local_cluster_tooling(tmp_path):
    found = {"kind": "/usr/local/bin/kind"}
    results = run_checks(_ms(), FakeCluster(), FakeBuilder(), str(tmp_path), which=found.get)
    by = _by_name(results)
    assert by["kube context"].line() == "[PASS] kube context: minikube"
    assert by["local cluster tooling"].line() == "[PASS] local cluster tooling: kind"

    results = run_checks(_ms(), FakeCluster(tooling=False), FakeBuilder(), str(tmp_path), which=lambda tool: None)
    by = _by_name(results)
    assert by["kube context"].status == WARN
    assert by["local cluster tooling"].status == WARN
    assert exit_code(results) == 0
