from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Set

from .build_config import BuildConfig
from .corpus import ConfigCorpus, SharedResource
from .job import Periodic, Presubmit
from .logger_setup import logger
from .policy import build_config_key, promotes_official_images
from .settings import RehearsalConfig


@dataclass
class DiffResult:
    changed_build_configs: Dict[str, BuildConfig] = field(default_factory=dict)
    # key -> test names; a missing key means every test of that config is affected
    affected_tests: Dict[str, Set[str]] = field(default_factory=dict)
    presubmits: Dict[str, List[Presubmit]] = field(default_factory=dict)
    periodics: List[Periodic] = field(default_factory=list)
    changed_templates: List[SharedResource] = field(default_factory=list)
    changed_cluster_profiles: List[SharedResource] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.changed_build_configs or self.presubmits or self.periodics
                    or self.changed_templates or self.changed_cluster_profiles)

    def presubmit_count(self) -> int:
        return sum(len(jobs) for jobs in self.presubmits.values())

    def summary(self) -> dict:
        return {
            "build_configs": {
                key: {
                    "affected_tests": sorted(self.affected_tests[key]) if key in self.affected_tests else "all",
                    "promotes_official_images": promotes_official_images(config),
                }
                for key, config in sorted(self.changed_build_configs.items())
            },
            "presubmits": {repo: sorted(job.name for job in jobs) for repo, jobs in sorted(self.presubmits.items())},
            "periodics": sorted(job.name for job in self.periodics),
            "templates": sorted(t.filename for t in self.changed_templates),
            "cluster_profiles": sorted(p.filename for p in self.changed_cluster_profiles),
        }


def derive_test_name(job_name: str, build_config_key: str, name_prefix: str) -> str:
    """Recovers the test step name from a generated job name, e.g.
    pull-ci-org-repo-master-e2e with org-repo-master.yaml -> e2e."""
    name = job_name[len(name_prefix):] if job_name.startswith(name_prefix) else job_name
    config_prefix = f"{PurePosixPath(build_config_key).stem}-"
    if name.startswith(config_prefix):
        name = name[len(config_prefix):]
    return name


class ChangeDetector:
    def __init__(self, config: Optional[RehearsalConfig] = None):
        self.config = config or RehearsalConfig()

    def diff(self, master: ConfigCorpus, candidate: ConfigCorpus) -> DiffResult:
        result = DiffResult()
        result.changed_build_configs, result.affected_tests = self.diff_build_configs(
            master.build_configs, candidate.build_configs)
        result.presubmits = self.diff_presubmits(master, candidate)
        result.periodics = self.diff_periodics(master, candidate)
        self.add_jobs_for_build_configs(result, candidate)
        result.changed_templates = _changed_resources(master.templates, candidate.templates)
        result.changed_cluster_profiles = _changed_resources(master.cluster_profiles, candidate.cluster_profiles)

        logger.info(
            f"Detected {len(result.changed_build_configs)} changed build configs, "
            f"{result.presubmit_count()} presubmits and {len(result.periodics)} periodics to rehearse, "
            f"{len(result.changed_templates)} changed templates and "
            f"{len(result.changed_cluster_profiles)} changed cluster profiles."
        )
        return result

    def diff_build_configs(self, master: Dict[str, BuildConfig], candidate: Dict[str, BuildConfig]):
        changed: Dict[str, BuildConfig] = {}
        affected: Dict[str, Set[str]] = {}

        for key, new_config in candidate.items():
            old_config = master.get(key)
            if old_config is None:
                logger.debug(f"Build config {key} is new, all of its tests are affected")
                changed[key] = new_config
                continue

            if old_config.without_tests() != new_config.without_tests():
                logger.debug(f"Build config {key} changed outside of its tests, all of its tests are affected")
                changed[key] = new_config
                continue

            old_steps = old_config.test_steps()
            names = {step.name for step in new_config.tests if old_steps.get(step.name) != step}
            if names:
                logger.debug(f"Build config {key} changed tests: {', '.join(sorted(names))}")
                changed[key] = new_config
                affected[key] = names

        return changed, affected

    def diff_presubmits(self, master: ConfigCorpus, candidate: ConfigCorpus) -> Dict[str, List[Presubmit]]:
        master_jobs = master.presubmits_by_name()
        selected: Dict[str, List[Presubmit]] = {}

        for repo, job in candidate.iter_presubmits():
            old_job = master_jobs.get(repo, {}).get(job.name)
            if old_job is None:
                logger.debug(f"Presubmit {job.name} ({repo}) is new")
            elif old_job.agent != job.agent:
                # A job moving onto the rehearsable agent must run even if its spec is unchanged
                logger.debug(f"Presubmit {job.name} ({repo}) changed agent {old_job.agent} -> {job.agent}")
            elif old_job.spec != job.spec:
                logger.debug(f"Presubmit {job.name} ({repo}) changed spec")
            else:
                continue
            selected.setdefault(repo, []).append(job)
        return selected

    def diff_periodics(self, master: ConfigCorpus, candidate: ConfigCorpus) -> List[Periodic]:
        master_jobs = master.periodics_by_name()
        selected = []
        for job in candidate.periodics:
            if master_jobs.get(job.name) != job:
                logger.debug(f"Periodic {job.name} is new or changed")
                selected.append(job)
        return selected

    def add_jobs_for_build_configs(self, result: DiffResult, candidate: ConfigCorpus) -> None:
        """Selects jobs whose definition is unchanged but whose build config changed."""
        if not result.changed_build_configs:
            return

        for repo, job in candidate.iter_presubmits():
            if self._uses_changed_config(job, result, self.config.presubmit_name_prefix):
                repo_jobs = result.presubmits.setdefault(repo, [])
                if all(j.name != job.name for j in repo_jobs):
                    logger.debug(f"Presubmit {job.name} ({repo}) uses a changed build config")
                    repo_jobs.append(job)

        selected_periodics = {job.name for job in result.periodics}
        for job in candidate.periodics:
            if job.name not in selected_periodics and self._uses_changed_config(job, result, self.config.periodic_name_prefix):
                logger.debug(f"Periodic {job.name} uses a changed build config")
                result.periodics.append(job)
                selected_periodics.add(job.name)

    def _uses_changed_config(self, job, result: DiffResult, name_prefix: str) -> bool:
        if job.agent != self.config.rehearsable_agent:
            return False
        key = build_config_key(job)
        if key is None or key not in result.changed_build_configs:
            return False
        if key not in result.affected_tests:
            return True
        return derive_test_name(job.name, key, name_prefix) in result.affected_tests[key]


def _changed_resources(master: Dict[str, SharedResource], candidate: Dict[str, SharedResource]) -> List[SharedResource]:
    changed = []
    for name in sorted(candidate):
        old = master.get(name)
        if old is None or old.sha != candidate[name].sha:
            changed.append(candidate[name])
    return changed
