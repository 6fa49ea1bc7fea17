from __future__ import annotations

import copy
from pathlib import Path

import pytest
from click.testing import CliRunner

from builders import ORG_REPO_KEY, make_build_config, write_release_repo
from cli import cli


@pytest.fixture()
def repos(tmp_path: Path, master_corpus, e2e_changed_corpus):
    master = write_release_repo(tmp_path / "master", master_corpus)
    candidate = write_release_repo(tmp_path / "candidate", e2e_changed_corpus)
    return master, candidate


@pytest.fixture()
def settings_file(tmp_path: Path) -> Path:
    path = tmp_path / "rehearse.yaml"
    path.write_text(f"logs_dir: {tmp_path / 'logs'}\n")
    return path


def test_diff_reports_changed_test(repos) -> None:
    master, candidate = repos
    result = CliRunner().invoke(cli, ["diff", "--master", str(master), "--candidate", str(candidate)])
    assert result.exit_code == 0, result.output
    assert "pull-ci-org-repo-master-e2e" in result.output
    assert "pull-ci-org-repo-master-unit" not in result.output


def test_build_prints_rehearsal_jobs(repos) -> None:
    master, candidate = repos
    result = CliRunner().invoke(cli, ["build", "--master", str(master), "--candidate", str(candidate), "--pr", "42"])
    assert result.exit_code == 0, result.output
    assert "rehearse-42-pull-ci-org-repo-master-e2e" in result.output
    assert "--git-ref=org/repo@master" in result.output


def test_run_dry_run(repos, settings_file: Path) -> None:
    master, candidate = repos
    result = CliRunner().invoke(cli, [
        "run", "--master", str(master), "--candidate", str(candidate), "--pr", "42",
        "--org", "openshift", "--repo", "release", "--author", "someone", "--dry-run",
        "--config", str(settings_file),
    ])
    assert result.exit_code == 0, result.output
    assert "kind: ProwJob" in result.output
    assert "rehearse-42-pull-ci-org-repo-master-e2e" in result.output


def test_run_without_changes_does_nothing(repos, settings_file: Path) -> None:
    master, _ = repos
    result = CliRunner().invoke(cli, [
        "run", "--master", str(master), "--candidate", str(master), "--pr", "42",
        "--org", "openshift", "--repo", "release", "--backend", "http://127.0.0.1:9",
        "--config", str(settings_file),
    ])
    assert result.exit_code == 0, result.output
    assert "kind: ProwJob" not in result.output


def test_run_fails_when_build_config_is_missing(tmp_path: Path, master_corpus, e2e_changed_corpus, settings_file) -> None:
    candidate_corpus = copy.deepcopy(e2e_changed_corpus)
    candidate_corpus.presubmits["org/repo"][1].spec.containers[0].env[0].value_from.config_map_key_ref.key = "gone.yaml"
    candidate_corpus.build_configs["other.yaml"] = make_build_config()
    master = write_release_repo(tmp_path / "master", master_corpus)
    candidate = write_release_repo(tmp_path / "candidate", candidate_corpus)

    result = CliRunner().invoke(cli, [
        "run", "--master", str(master), "--candidate", str(candidate), "--pr", "42",
        "--org", "openshift", "--repo", "release", "--dry-run", "--config", str(settings_file),
    ])
    assert result.exit_code == 1


def test_master_source_is_required(repos) -> None:
    _, candidate = repos
    result = CliRunner().invoke(cli, ["diff", "--candidate", str(candidate)])
    assert result.exit_code == 2
    assert "--master" in result.output


def test_master_sources_are_exclusive(repos) -> None:
    master, candidate = repos
    result = CliRunner().invoke(cli, ["diff", "--master", str(master), "--master-rev", "HEAD", "--candidate", str(candidate)])
    assert result.exit_code == 2


def test_malformed_config_exits_with_config_error(repos) -> None:
    master, candidate = repos
    (candidate / "ci-operator" / "config" / ORG_REPO_KEY).write_text("tests: [unclosed\n")
    result = CliRunner().invoke(cli, ["diff", "--master", str(master), "--candidate", str(candidate)])
    assert result.exit_code == 2
    assert ORG_REPO_KEY in result.output
