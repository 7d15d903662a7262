import json
from dataclasses import replace

import pytest

import orc.cli as cli
from fakes import FakeBuilder, FakeCluster


@pytest.fixture()
def env(isolated_settings, monkeypatch, tmp_path):
    cfg = replace(isolated_settings, ready_timeout_s=1.0, poll_interval_s=0.1, namespace="fullstack-app")
    monkeypatch.setattr(cli, "settings", cfg)
    cluster = FakeCluster()
    builder = FakeBuilder()
    monkeypatch.setattr(cli, "_cluster", lambda cfg: cluster)
    monkeypatch.setattr(cli, "_builder", lambda: builder)
    for unit in ("backend", "frontend"):
        (tmp_path / unit).mkdir()
        (tmp_path / unit / "Dockerfile").write_text("FROM scratch\n")
    return cluster, builder


def _json(capsys):
    return json.loads(capsys.readouterr().out)


def test_deploy_complete(env, capsys):
    cluster, _ = env
    assert cli.main(["-q", "deploy"]) == 0
    out = _json(capsys)
    assert out["state"] == "Complete"
    assert out["warnings"] == []
    assert cluster.applied()[0] == "Namespace/fullstack-app"
    assert cluster.applied()[-1] == "Ingress/app-ingress"


def test_deploy_warnings_do_not_change_exit_code(env, capsys):
    cluster, _ = env
    cluster.reject_kinds.add("Ingress")
    assert cli.main(["-q", "deploy"]) == 0
    assert len(_json(capsys)["warnings"]) == 1


def test_deploy_fatal_step_exits_non_zero(env, capsys):
    cluster, _ = env
    cluster.reject_kinds.add("Secret")
    assert cli.main(["-q", "deploy"]) == 1
    out = _json(capsys)
    assert out["state"] == "Aborted"
    assert out["failed_step"] == "ApplyingSecretsAndConfig"


def test_deploy_ingress_required_flag(env, capsys):
    cluster, _ = env
    cluster.reject_kinds.add("Ingress")
    assert cli.main(["-q", "deploy", "--ingress-required"]) == 1
    assert _json(capsys)["failed_step"] == "ApplyingRoutingRule"


def test_deploy_build_failure_skips_rollout(env, capsys):
    cluster, builder = env
    builder.fail_units.add("backend")
    assert cli.main(["-q", "deploy", "--build"]) == 1
    out = _json(capsys)
    assert out == {"error": "BuildFailure", "unit": "backend", "exit_status": 1, "output": "npm ERR! code ELIFECYCLE"}
    assert cluster.calls == []


def test_deploy_with_build(env, capsys):
    cluster, builder = env
    assert cli.main(["-q", "deploy", "--build"]) == 0
    assert builder.built == ["fullstack-app-backend:latest", "fullstack-app-frontend:latest"]
    assert cluster.applied()


def test_build_images(env, capsys):
    _, builder = env
    assert cli.main(["build-images", "--tag", "1.0.0"]) == 0
    assert _json(capsys) == {"built": ["fullstack-app-backend:1.0.0", "fullstack-app-frontend:1.0.0"]}


def test_build_images_without_daemon(env, capsys):
    _, builder = env
    builder._available = False
    assert cli.main(["build-images"]) == 1
    assert _json(capsys)["error"] == "ToolingUnavailable"


def test_invalid_overrides_exit_2(env, capsys, tmp_path):
    path = tmp_path / "ov.json"
    path.write_text(json.dumps({"replicas": {"backend": 0}}))
    cluster, _ = env
    assert cli.main(["--overrides", str(path), "deploy"]) == 2
    assert _json(capsys)["error"] == "ManifestError"
    assert cluster.calls == []


def test_verify_passes_after_deploy(env, capsys):
    cluster, builder = env
    cli.main(["-q", "deploy", "--build"])
    capsys.readouterr()
    assert cli.main(["verify"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert "[PASS] docker daemon: reachable" in lines
    assert "[PASS] Deployment/backend: present" in lines
    assert not [l for l in lines if l.startswith("[FAIL]")]


def test_verify_fails_only_without_docker(env, capsys):
    cluster, builder = env
    cluster.tooling = False
    assert cli.main(["verify"]) == 0
    assert any(l.startswith("[WARN] kubernetes cluster") for l in capsys.readouterr().out.splitlines())

    builder._available = False
    assert cli.main(["verify"]) == 1


def test_render(env, capsys, tmp_path):
    assert cli.main(["render", "--out", str(tmp_path / "k8s")]) == 0
    written = _json(capsys)["written"]
    assert written[0].endswith("01-namespace-fullstack-app.json")


def test_status(env, capsys):
    cli.main(["-q", "deploy"])
    capsys.readouterr()
    assert cli.main(["status"]) == 0
    names = [p["name"] for p in _json(capsys)]
    assert names == ["mongodb-abc12", "backend-abc12", "frontend-abc12"]


def test_events(env, capsys):
    cli.main(["-q", "deploy"])
    run_id = _json(capsys)["run_id"]
    assert cli.main(["events", "--run", run_id, "--limit", "1"]) == 0
    (event,) = _json(capsys)
    assert event["message"] == "Rollout complete"


def test_namespace_flag(env, capsys):
    cluster, _ = env
    assert cli.main(["-q", "--namespace", "staging", "deploy"]) == 0
    assert cluster.applied()[0] == "Namespace/staging"


def _deployed_image(cluster, namespace, unit):
    deployment = cluster.objects[("Deployment", namespace, unit)]
    return deployment["spec"]["template"]["spec"]["containers"][0]["image"]


def test_build_and_deploy_use_the_same_tag(env, capsys):
    cluster, builder = env
    assert cli.main(["-q", "build-images", "--tag", "1.0.0"]) == 0
    assert cli.main(["-q", "deploy", "--tag", "1.0.0"]) == 0
    assert builder.built == ["fullstack-app-backend:1.0.0", "fullstack-app-frontend:1.0.0"]
    assert _deployed_image(cluster, "fullstack-app", "backend") == "fullstack-app-backend:1.0.0"
    assert _deployed_image(cluster, "fullstack-app", "frontend") == "fullstack-app-frontend:1.0.0"


def test_flags_beat_overrides_file(env, capsys, tmp_path):
    cluster, _ = env
    path = tmp_path / "ov.json"
    path.write_text(json.dumps({"namespace": "from-file", "image_tag": "0.9.0"}))
    assert cli.main(["-q", "--overrides", str(path), "--namespace", "staging", "deploy", "--tag", "1.0.0"]) == 0
    assert cluster.applied()[0] == "Namespace/staging"
    assert _deployed_image(cluster, "staging", "backend") == "fullstack-app-backend:1.0.0"
