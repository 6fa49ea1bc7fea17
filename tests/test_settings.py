from __future__ import annotations

from pathlib import Path

import pytest

from rehearse_engine.errors import ConfigLoadError, RehearsalTimeoutError
from rehearse_engine.settings import (
    ENV_BACKEND_URL,
    ENV_NAMESPACE,
    ENV_WATCH_TIMEOUT,
    RehearsalConfig,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for name in (ENV_BACKEND_URL, ENV_NAMESPACE, ENV_WATCH_TIMEOUT):
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    config = RehearsalConfig.from_file(None)
    assert config.rehearse_label == "ci.openshift.org/rehearse"
    assert config.rerun_command == "/test pj-rehearse"
    assert config.cluster_types == ["aws", "gcs", "openstack", "libvirt", "vsphere", "gcp"]
    assert config.watch_timeout == 4 * 60 * 60
    assert config.selector(12) == "ci.openshift.org/rehearse=12"


def test_from_file_overrides_defaults(tmp_path: Path) -> None:
    path = tmp_path / "rehearse.yaml"
    path.write_text("namespace: ci-stg\nsubmit_workers: 4\ncluster_types: [aws]\n")
    config = RehearsalConfig.from_file(path)
    assert config.namespace == "ci-stg"
    assert config.submit_workers == 4
    assert config.cluster_types == ["aws"]
    assert config.backend_url == "http://localhost:8080"


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("namespace: [unclosed", "cannot read"),
        ("- namespace\n", "must be a mapping"),
        ("namespace: ci\nworkers: 3\n", "unknown rehearsal config keys: workers"),
    ],
)
def test_from_file_rejects_bad_files(tmp_path: Path, content, message) -> None:
    path = tmp_path / "rehearse.yaml"
    path.write_text(content)
    with pytest.raises(ConfigLoadError, match=message):
        RehearsalConfig.from_file(path)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError):
        RehearsalConfig.from_file(tmp_path / "missing.yaml")


def test_environment_overrides_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "rehearse.yaml"
    path.write_text("namespace: ci-stg\n")
    monkeypatch.setenv(ENV_NAMESPACE, "ci-prod")
    monkeypatch.setenv(ENV_BACKEND_URL, "https://prow.test")
    monkeypatch.setenv(ENV_WATCH_TIMEOUT, "90")
    config = RehearsalConfig.from_file(path)
    assert config.namespace == "ci-prod"
    assert config.backend_url == "https://prow.test"
    assert config.watch_timeout == 90.0


def test_invalid_watch_timeout() -> None:
    config = RehearsalConfig()
    with pytest.raises(ConfigLoadError, match="must be a number"):
        config.apply_env({ENV_WATCH_TIMEOUT: "forever"})


def test_timeout_error_lists_outstanding_jobs_sorted() -> None:
    err = RehearsalTimeoutError(60, ["b", "a"])
    assert err.outstanding == ["a", "b"]
    assert str(err) == "rehearsal jobs did not finish within 60s, still waiting for: a, b"
