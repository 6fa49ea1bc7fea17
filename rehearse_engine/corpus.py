import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, Iterator, List, Tuple

from .build_config import BuildConfig
from .job import Periodic, Presubmit

TEMPLATE_KIND = "template"
CLUSTER_PROFILE_KIND = "cluster-profile"

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9.-]+")


@dataclass(frozen=True)
class SharedResource:
    """A template file or cluster profile directory published to the cluster as a ConfigMap."""
    filename: str  # relative to the release repo root
    sha: str  # content digest
    files: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)  # ConfigMap data

    @property
    def base_name(self) -> str:
        return PurePosixPath(self.filename).name

    @property
    def stem(self) -> str:
        return PurePosixPath(self.filename).stem

    def cm_name(self, prefix: str) -> str:
        """Name of the production ConfigMap holding this resource."""
        return _sanitize(f"{prefix}{self.stem}")

    def temp_name(self, kind: str) -> str:
        """Name of the temporary ConfigMap used by rehearsals; content-addressed so concurrent runs never share one."""
        return _sanitize(f"rehearse-{kind}-{self.stem}-{self.sha[:8]}")


def _sanitize(name: str) -> str:
    return _INVALID_NAME_CHARS.sub("-", name.lower()).strip("-.")


@dataclass
class ConfigCorpus:
    """One revision of the job and build configuration. Treated as read-only."""
    presubmits: Dict[str, List[Presubmit]] = field(default_factory=dict)  # repo -> jobs
    periodics: List[Periodic] = field(default_factory=list)
    build_configs: Dict[str, BuildConfig] = field(default_factory=dict)  # filename -> config
    templates: Dict[str, SharedResource] = field(default_factory=dict)  # filename -> template
    cluster_profiles: Dict[str, SharedResource] = field(default_factory=dict)  # profile -> resource

    def iter_presubmits(self) -> Iterator[Tuple[str, Presubmit]]:
        for repo in sorted(self.presubmits):
            for job in self.presubmits[repo]:
                yield repo, job

    def presubmits_by_name(self) -> Dict[str, Dict[str, Presubmit]]:
        return {repo: {job.name: job for job in jobs} for repo, jobs in self.presubmits.items()}

    def periodics_by_name(self) -> Dict[str, Periodic]:
        return {job.name: job for job in self.periodics}

    def job_count(self) -> int:
        return sum(len(jobs) for jobs in self.presubmits.values()) + len(self.periodics)
