import hashlib
import yaml
from pathlib import Path
from typing import Dict

from .build_config import BuildConfig
from .corpus import ConfigCorpus, SharedResource
from .errors import ConfigLoadError
from .job import Periodic, Presubmit
from .logger_setup import logger

JOBS_DIR_NAME = "ci-operator/jobs"
BUILD_CONFIG_DIR_NAME = "ci-operator/config"
TEMPLATES_DIR_NAME = "ci-operator/templates"
CLUSTER_PROFILES_DIR_NAME = "cluster/test-deploy"

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")


class CorpusLoader:
    """Reads one checkout of the release repository into a ConfigCorpus.

    Unlike job discovery on a CI server, a broken file is fatal here: rehearsing
    against a partially loaded corpus would silently select the wrong jobs.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def load(self) -> ConfigCorpus:
        logger.info(f"Loading job and build configuration from {self.root}...")
        if not self.root.is_dir():
            raise ConfigLoadError(str(self.root), "release repository checkout not found or is not a directory")

        corpus = ConfigCorpus(
            build_configs=self.load_build_configs(),
            templates=self.load_templates(),
            cluster_profiles=self.load_cluster_profiles(),
        )
        self.load_jobs(corpus)
        logger.info(
            f"Loaded {corpus.job_count()} jobs, {len(corpus.build_configs)} build configs, "
            f"{len(corpus.templates)} templates and {len(corpus.cluster_profiles)} cluster profiles from {self.root}."
        )
        return corpus

    def _read_yaml(self, config_file: Path):
        try:
            with open(config_file, 'r') as f:
                return yaml.safe_load(f.read())
        except yaml.YAMLError as ye:
            raise ConfigLoadError(self._rel(config_file), f"YAML syntax error: {ye}") from ye
        except OSError as oe:
            raise ConfigLoadError(self._rel(config_file), f"cannot read file: {oe}") from oe

    def _rel(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)

    def load_jobs(self, corpus: ConfigCorpus) -> None:
        jobs_dir = self.root / JOBS_DIR_NAME
        if not jobs_dir.is_dir():
            logger.warning(f"Jobs directory not found: {jobs_dir}")
            return

        seen_periodics = set()
        for config_file in sorted(jobs_dir.rglob("*")):
            if not config_file.is_file() or config_file.suffix not in CONFIG_EXTENSIONS:
                continue
            data = self._read_yaml(config_file) or {}
            if not isinstance(data, dict):
                raise ConfigLoadError(self._rel(config_file), "job config must be a mapping")

            try:
                presubmits = data.get("presubmits") or {}
                if not isinstance(presubmits, dict):
                    raise ValueError("'presubmits' must map repositories to job lists")
                for repo, jobs in presubmits.items():
                    repo_jobs = corpus.presubmits.setdefault(repo, [])
                    known = {job.name for job in repo_jobs}
                    for job_data in jobs or []:
                        job = Presubmit.from_dict(job_data)
                        if job.name in known:
                            raise ValueError(f"duplicate presubmit '{job.name}' for {repo}")
                        known.add(job.name)
                        repo_jobs.append(job)

                for job_data in data.get("periodics") or []:
                    job = Periodic.from_dict(job_data)
                    if job.name in seen_periodics:
                        raise ValueError(f"duplicate periodic '{job.name}'")
                    seen_periodics.add(job.name)
                    corpus.periodics.append(job)
            except ValueError as ve:
                raise ConfigLoadError(self._rel(config_file), str(ve)) from ve
            logger.debug(f"Loaded jobs from {self._rel(config_file)}")

    def load_build_configs(self) -> Dict[str, BuildConfig]:
        configs: Dict[str, BuildConfig] = {}
        config_dir = self.root / BUILD_CONFIG_DIR_NAME
        if not config_dir.is_dir():
            logger.warning(f"Build config directory not found: {config_dir}")
            return configs

        for config_file in sorted(config_dir.rglob("*")):
            if not config_file.is_file() or config_file.suffix not in CONFIG_EXTENSIONS:
                continue
            data = self._read_yaml(config_file) or {}
            try:
                build_config = BuildConfig.from_dict(data)
            except ValueError as ve:
                raise ConfigLoadError(self._rel(config_file), str(ve)) from ve
            if config_file.name in configs:
                raise ConfigLoadError(self._rel(config_file), f"build config key '{config_file.name}' is not unique")
            configs[config_file.name] = build_config
        return configs

    def load_templates(self) -> Dict[str, SharedResource]:
        templates: Dict[str, SharedResource] = {}
        templates_dir = self.root / TEMPLATES_DIR_NAME
        if not templates_dir.is_dir():
            return templates
        for template_file in sorted(templates_dir.rglob("*.yaml")):
            files = {template_file.name: self._read_text(template_file)}
            templates[template_file.name] = SharedResource(
                filename=self._rel(template_file), sha=_digest(files), files=files)
        return templates

    def load_cluster_profiles(self) -> Dict[str, SharedResource]:
        profiles: Dict[str, SharedResource] = {}
        profiles_dir = self.root / CLUSTER_PROFILES_DIR_NAME
        if not profiles_dir.is_dir():
            return profiles
        for profile_dir in sorted(p for p in profiles_dir.iterdir() if p.is_dir()):
            files = {f.name: self._read_text(f) for f in sorted(profile_dir.iterdir()) if f.is_file()}
            profiles[profile_dir.name] = SharedResource(
                filename=self._rel(profile_dir), sha=_digest(files), files=files)
        return profiles

    def _read_text(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigLoadError(self._rel(path), f"cannot read file: {e}") from e


def _digest(files: Dict[str, str]) -> str:
    h = hashlib.sha256()
    for name in sorted(files):
        h.update(name.encode("utf-8"))
        h.update(b"\0")
        h.update(files[name].encode("utf-8"))
        h.update(b"\0")
    return h.hexdigest()
