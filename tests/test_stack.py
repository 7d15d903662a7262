import json
from dataclasses import replace
from urllib.parse import unquote_plus, urlsplit

import pytest

from orc.errors import ManifestError
from orc.manifests import EnvBinding
from orc.overrides import DeployOverrides, load_overrides
from orc.settings import Settings
from orc.stack import default_manifest_set


def _cfg(**changes) -> Settings:
    return replace(
        Settings(),
        namespace="fullstack-app",
        image_prefix="fullstack-app",
        image_tag="latest",
        ingress_host="fullstack-app.local",
        frontend_base_url="http://localhost:3001",
        **changes,
    )


def test_default_set_matches_fullstack_app():
    ms = default_manifest_set(_cfg())
    assert ms.namespace.name == "fullstack-app"
    assert [u.name for u in ms.stateful_units] == ["mongodb"]
    assert [u.name for u in ms.stateless_units] == ["backend", "frontend"]
    assert ms.unit("backend").image == "fullstack-app-backend:latest"
    assert ms.unit("frontend").image == "fullstack-app-frontend:latest"
    assert ms.unit("backend").replicas == 2
    assert dict(ms.unit("frontend").build_args) == {"REACT_APP_BASE_URL": "http://localhost:3001"}
    assert [(r.path_prefix, r.target) for r in ms.routes.rules] == [("/api", "backend"), ("/", "frontend")]


def test_secret_env_override_wins(monkeypatch):
    monkeypatch.setenv("ORC_SECRET_MONGO_INITDB_ROOT_PASSWORD", "s3cr3t")
    ms = default_manifest_set(_cfg())
    values = {e.key: e.value for e in ms.secrets.entries}
    assert values["MONGO_INITDB_ROOT_PASSWORD"] == "s3cr3t"
    assert ":s3cr3t@mongodb-service:27017/" in values["MONGODB_URI"]


def test_overrides_apply_to_units_and_config():
    ov = DeployOverrides(
        namespace="staging",
        image_tag="1.2.0",
        images={"mongodb": "mongo:7.0.12"},
        replicas={"frontend": 3},
        config={"NODE_ENV": "staging"},
        env={"backend": {"LOG_LEVEL": "debug", "PORT": "config:PORT"}},
    )
    ms = default_manifest_set(_cfg(), ov)
    assert ms.namespace.name == "staging"
    assert ms.config.namespace == "staging"
    assert ms.unit("backend").image == "fullstack-app-backend:1.2.0"
    assert ms.unit("mongodb").image == "mongo:7.0.12"
    assert ms.unit("frontend").replicas == 3
    assert ("NODE_ENV", "staging") in [(e.key, e.value) for e in ms.config.entries]
    env = {b.name: b for b in ms.unit("backend").env}
    assert env["LOG_LEVEL"] == EnvBinding.literal("LOG_LEVEL", "debug")
    assert env["PORT"] == EnvBinding.from_config("PORT")


def test_overrides_naming_unknown_unit_are_rejected():
    with pytest.raises(ManifestError, match="unknown service units: cache"):
        default_manifest_set(_cfg(), DeployOverrides(replicas={"cache": 1}))


def test_env_override_to_missing_key_is_rejected():
    with pytest.raises(ManifestError, match="undeclared config key 'NOPE'"):
        default_manifest_set(_cfg(), DeployOverrides(env={"backend": {"X": "config:NOPE"}}))


def test_load_overrides_from_file(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text(json.dumps({"image_tag": "2.0.0", "replicas": {"backend": 4}}))
    ov = load_overrides(str(path))
    assert ov.image_tag == "2.0.0"
    assert ov.replicas == {"backend": 4}
    assert load_overrides(None) == DeployOverrides()


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps({"replicas": {"backend": 0}}),
        json.dumps({"unexpected": True}),
    ],
)
def test_load_overrides_rejects_invalid_files(tmp_path, content):
    path = tmp_path / "overrides.json"
    path.write_text(content)
    with pytest.raises(ManifestError):
        load_overrides(str(path))


def test_load_overrides_missing_file(tmp_path):
    with pytest.raises(ManifestError, match="Cannot read overrides file"):
        load_overrides(str(tmp_path / "missing.json"))


def test_database_uri_escapes_credentials():
    ov = DeployOverrides(secrets={"MONGO_INITDB_ROOT_USERNAME": "ops@team", "MONGO_INITDB_ROOT_PASSWORD": "p@ss:w/rd"})
    ms = default_manifest_set(_cfg(), ov)
    uri = urlsplit({e.key: e.value for e in ms.secrets.entries}["MONGODB_URI"])
    assert uri.hostname == "mongodb-service"
    assert uri.port == 27017
    assert unquote_plus(uri.username) == "ops@team"
    assert unquote_plus(uri.password) == "p@ss:w/rd"
