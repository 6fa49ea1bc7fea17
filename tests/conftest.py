from __future__ import annotations

from pathlib import Path

import pytest

from builders import ORG_REPO_KEY, make_build_config, make_corpus, make_presubmit
from rehearse_engine.settings import RehearsalConfig


@pytest.fixture()
def config(tmp_path: Path) -> RehearsalConfig:
    return RehearsalConfig(logs_dir=str(tmp_path / "logs"), watch_timeout=0, watch_retry_interval=0.01)


@pytest.fixture()
def master_corpus():
    return make_corpus(
        presubmits={
            "org/repo": [
                make_presubmit("pull-ci-org-repo-master-unit", config_key=ORG_REPO_KEY),
                make_presubmit("pull-ci-org-repo-master-e2e", config_key=ORG_REPO_KEY),
            ],
        },
        build_configs={ORG_REPO_KEY: make_build_config()},
    )


@pytest.fixture()
def e2e_changed_corpus():
    """The master corpus with only the commands of the e2e test step changed."""
    return make_corpus(
        presubmits={
            "org/repo": [
                make_presubmit("pull-ci-org-repo-master-unit", config_key=ORG_REPO_KEY),
                make_presubmit("pull-ci-org-repo-master-e2e", config_key=ORG_REPO_KEY),
            ],
        },
        build_configs={ORG_REPO_KEY: make_build_config(tests={"unit": "make test", "e2e": "make e2e-all"})},
    )
