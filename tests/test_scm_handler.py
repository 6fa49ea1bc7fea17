from __future__ import annotations

from pathlib import Path

import pytest

# GitPython refuses to import without a git executable
git = pytest.importorskip("git")

from rehearse_engine.errors import ConfigLoadError  # noqa: E402
from rehearse_engine.scm_handler import SCMHandler  # noqa: E402

CONFIG_PATH = "ci-operator/config/org-repo-master.yaml"


@pytest.fixture()
def release_repo(tmp_path: Path) -> Path:
    root = tmp_path / "release"
    root.mkdir()
    repo = git.Repo.init(root)
    actor = git.Actor("Release Bot", "bot@example.com")

    (root / "ci-operator" / "config").mkdir(parents=True)
    (root / CONFIG_PATH).write_text("tests:\n- as: unit\n  commands: make test\n")
    repo.index.add([CONFIG_PATH])
    repo.index.commit("initial", author=actor, committer=actor)

    (root / CONFIG_PATH).write_text("tests:\n- as: unit\n  commands: make test-all\n")
    repo.index.add([CONFIG_PATH])
    repo.index.commit("change unit", author=actor, committer=actor)
    return root


def test_resolve(release_repo: Path) -> None:
    handler = SCMHandler(release_repo)
    assert handler.resolve("HEAD") != handler.resolve("HEAD~1")
    assert len(handler.resolve("HEAD")) == 40


def test_resolve_unknown_revision(release_repo: Path) -> None:
    with pytest.raises(ConfigLoadError, match="unknown revision"):
        SCMHandler(release_repo).resolve("no-such-branch")


def test_checkout_revision(release_repo: Path, tmp_path: Path) -> None:
    handler = SCMHandler(release_repo)
    target = tmp_path / "master"

    commit = handler.checkout_revision("HEAD~1", target)

    assert commit == handler.resolve("HEAD~1")
    assert "make test\n" in (target / CONFIG_PATH).read_text()
    assert "make test-all" in (release_repo / CONFIG_PATH).read_text()

    handler.remove_checkout(target)
    assert not target.exists()


def test_not_a_repository(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not a git repository"):
        SCMHandler(tmp_path / "missing").resolve("HEAD")
