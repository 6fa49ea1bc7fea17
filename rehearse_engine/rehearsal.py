import copy
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .build_config import BuildConfig
from .corpus import CLUSTER_PROFILE_KIND, TEMPLATE_KIND, ConfigCorpus, SharedResource
from .diffs import DiffResult
from .errors import BuildConfigNotFoundError, EligibilityError, RehearsalError
from .job import Container, Periodic, PodSpec, Presubmit
from .logger_setup import logger
from .policy import has_cluster_type, has_template_file, is_build_config_store
from .settings import RehearsalConfig

Job = Union[Presubmit, Periodic]


@dataclass
class Rejection:
    job: str
    reason: str
    repo: Optional[str] = None


@dataclass
class RehearsalSet:
    presubmits: List[Tuple[str, Presubmit]] = field(default_factory=list)  # (repo, rehearsal job)
    periodics: List[Periodic] = field(default_factory=list)
    rejections: List[Rejection] = field(default_factory=list)
    errors: List[RehearsalError] = field(default_factory=list)
    templates: List[SharedResource] = field(default_factory=list)  # resources the jobs were redirected to
    profiles: List[SharedResource] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.presubmits and not self.periodics

    def job_names(self) -> List[str]:
        return [job.name for _, job in self.presubmits] + [job.name for job in self.periodics]


def filter_job(job: Job, allow_volumes: bool, config: RehearsalConfig) -> None:
    """Raises EligibilityError when `job` cannot be rehearsed. Never modifies the job."""
    if isinstance(job, Presubmit):
        if len(job.branches) == 0:
            raise EligibilityError("cannot rehearse jobs with no branches")
        if len(job.branches) != 1:
            raise EligibilityError("cannot rehearse jobs that run over multiple branches")

    if job.agent != config.rehearsable_agent:
        raise EligibilityError(f"cannot rehearse jobs that do not run on the '{config.rehearsable_agent}' agent")

    container = job.spec.container if job.spec else None
    if container is None:
        raise EligibilityError("cannot rehearse jobs that do not have exactly one container")

    if container.command != [config.expected_command]:
        raise EligibilityError(
            f"cannot rehearse jobs that have Command different from simple '{config.expected_command}'")

    short_flag = config.git_ref_arg.lstrip("-")
    for arg in container.args:
        if arg.startswith(f"--{short_flag}") or arg.startswith(f"-{short_flag}"):
            raise EligibilityError(f"cannot rehearse jobs that call {config.expected_command} with '{config.git_ref_arg}' arg")

    if job.spec.volumes and not allow_volumes:
        raise EligibilityError("jobs that need additional volumes mounted are not allowed")


def is_rehearsable(job: Job, allow_volumes: bool, config: RehearsalConfig) -> bool:
    try:
        filter_job(job, allow_volumes, config)
    except EligibilityError:
        return False
    return True


def _label_job(rehearsal: Job, pr_number: int, config: RehearsalConfig) -> None:
    rehearsal.name = f"{config.job_name_prefix}-{pr_number}-{rehearsal.name}"
    rehearsal.labels = dict(rehearsal.labels)
    rehearsal.labels[config.rehearse_label] = str(pr_number)


def make_rehearsal_presubmit(source: Presubmit, repo: str, pr_number: int, config: RehearsalConfig) -> Presubmit:
    rehearsal = copy.deepcopy(source)
    _label_job(rehearsal, pr_number, config)

    branch = source.branches[0]
    if branch.startswith("^"):
        branch = branch[1:]
    if branch.endswith("$"):
        branch = branch[:-1]
    short_name = source.context
    if short_name.startswith(config.production_context_prefix):
        short_name = short_name[len(config.production_context_prefix):]
    rehearsal.context = f"{config.context_prefix}/{repo}/{branch}/{short_name}"
    rehearsal.rerun_command = config.rerun_command
    rehearsal.optional = True

    rehearsal.spec.containers[0].args.append(f"{config.git_ref_arg}={repo}@{branch}")
    return rehearsal


def make_rehearsal_periodic(source: Periodic, pr_number: int, config: RehearsalConfig) -> Periodic:
    rehearsal = copy.deepcopy(source)
    _label_job(rehearsal, pr_number, config)
    return rehearsal


def inline_build_config(container: Container, build_configs: Dict[str, BuildConfig], job_name: str) -> None:
    """Replaces references to the build config store by the candidate content of the referenced file,
    so the rehearsal sees the build config proposed in the pull request rather than the live one."""
    for env in container.env:
        ref = env.value_from.config_map_key_ref if env.value_from else None
        if ref is None or not is_build_config_store(ref.name):
            continue
        logger.debug(f"Rehearsal job {job_name} uses build config {ref.key}, its content will be inlined")
        build_config = build_configs.get(ref.key)
        if build_config is None:
            raise BuildConfigNotFoundError(ref.key, job_name)
        env.value = build_config.to_yaml()
        env.value_from = None


def replace_template_names(spec: PodSpec, mapping: Dict[str, str]) -> None:
    container = spec.containers[0]
    for volume in spec.volumes:
        if volume.config_map is None:
            continue
        for mount in container.volume_mounts:
            if mount.name == volume.name and mount.sub_path in mapping:
                volume.config_map.name = mapping[mount.sub_path]


def replace_cluster_profiles(spec: PodSpec, mapping: Dict[str, str], volume_name: str, job_name: str) -> None:
    for volume in spec.volumes:
        if volume.name != volume_name or volume.projected is None:
            continue
        for source in volume.projected:
            if source.config_map is None or source.config_map.name not in mapping:
                continue
            tmp = mapping[source.config_map.name]
            logger.debug(f"Rehearsal job {job_name} uses cluster profile {source.config_map.name}, will be replaced by {tmp}")
            source.config_map.name = tmp


class RehearsalBuilder:
    def __init__(self, build_configs: Dict[str, BuildConfig], pr_number: int,
                 config: Optional[RehearsalConfig] = None, allow_volumes: bool = False,
                 templates: Iterable[SharedResource] = (), profiles: Iterable[SharedResource] = ()):
        self.build_configs = build_configs
        self.pr_number = pr_number
        self.config = config or RehearsalConfig()
        self.allow_volumes = allow_volumes
        self.templates = list(templates)
        self.profiles = list(profiles)

        # One alias per resource for the whole run; every job referencing it must agree
        self.template_map: Dict[str, str] = {}
        self.profile_map: Dict[str, str] = {}
        if self.allow_volumes:
            for template in self.templates:
                self.template_map[template.base_name] = template.temp_name(TEMPLATE_KIND)
            for profile in self.profiles:
                self.profile_map[profile.cm_name(self.config.cluster_profile_prefix)] = profile.temp_name(CLUSTER_PROFILE_KIND)

    def build(self, presubmits: Dict[str, List[Presubmit]], periodics: List[Periodic]) -> RehearsalSet:
        result = RehearsalSet()
        if self.allow_volumes:
            result.templates = list(self.templates)
            result.profiles = list(self.profiles)

        for repo in sorted(presubmits):
            for job in presubmits[repo]:
                try:
                    filter_job(job, self.allow_volumes, self.config)
                except EligibilityError as e:
                    logger.warning(f"Could not rehearse job {job.name} ({repo}): {e}")
                    result.rejections.append(Rejection(job=job.name, repo=repo, reason=str(e)))
                    continue

                rehearsal = make_rehearsal_presubmit(job, repo, self.pr_number, self.config)
                try:
                    self.configure_job(rehearsal.spec, job.name)
                except BuildConfigNotFoundError as e:
                    logger.warning(f"Failed to inline build config into rehearsal presubmit {job.name} ({repo}): {e}")
                    result.errors.append(e)
                    continue
                logger.info(f"Created a rehearsal job to be submitted: {rehearsal.name} (target {repo} {job.name})")
                result.presubmits.append((repo, rehearsal))

        for job in periodics:
            try:
                filter_job(job, self.allow_volumes, self.config)
            except EligibilityError as e:
                logger.warning(f"Could not rehearse job {job.name}: {e}")
                result.rejections.append(Rejection(job=job.name, reason=str(e)))
                continue

            rehearsal = make_rehearsal_periodic(job, self.pr_number, self.config)
            try:
                self.configure_job(rehearsal.spec, job.name)
            except BuildConfigNotFoundError as e:
                logger.warning(f"Failed to inline build config into rehearsal periodic {job.name}: {e}")
                result.errors.append(e)
                continue
            logger.info(f"Created a rehearsal job to be submitted: {rehearsal.name} (target {job.name})")
            result.periodics.append(rehearsal)

        return result

    def configure_job(self, spec: PodSpec, job_name: str) -> None:
        inline_build_config(spec.containers[0], self.build_configs, job_name)
        if self.allow_volumes:
            replace_template_names(spec, self.template_map)
            replace_cluster_profiles(spec, self.profile_map, self.config.cluster_profile_volume, job_name)


def add_jobs_for_changed_templates(templates: Iterable[SharedResource],
                                   to_be_rehearsed: Dict[str, List[Presubmit]],
                                   candidate_presubmits: Dict[str, List[Presubmit]],
                                   config: RehearsalConfig,
                                   allow_volumes: bool = True) -> Dict[str, List[Presubmit]]:
    """For every changed template and cluster type not already covered, picks one more job exercising them.

    Repositories are visited in lexicographic order and the first eligible job wins, so the pick is reproducible.
    """
    picked: Dict[str, List[Presubmit]] = {}

    def already_selected(repo: str, job: Presubmit) -> bool:
        return any(j.name == job.name for j in to_be_rehearsed.get(repo, []) + picked.get(repo, []))

    for template in templates:
        template_file = template.base_name
        for cluster_type in config.cluster_types:
            if _is_already_rehearsed(to_be_rehearsed, picked, cluster_type, template_file, config):
                continue

            for repo in sorted(candidate_presubmits):
                job = next((j for j in candidate_presubmits[repo]
                            if has_cluster_type(j, cluster_type, config.cluster_type_env)
                            and has_template_file(j, template_file)
                            and not already_selected(repo, j)
                            and is_rehearsable(j, allow_volumes, config)), None)
                if job is not None:
                    logger.info(f"Picking job {job.name} ({repo}) to rehearse the changes of {template_file} on {cluster_type}")
                    picked.setdefault(repo, []).append(job)
                    break
    return picked


def _is_already_rehearsed(to_be_rehearsed: Dict[str, List[Presubmit]], picked: Dict[str, List[Presubmit]],
                          cluster_type: str, template_file: str, config: RehearsalConfig) -> bool:
    for jobs in list(to_be_rehearsed.values()) + list(picked.values()):
        for job in jobs:
            if has_cluster_type(job, cluster_type, config.cluster_type_env) and has_template_file(job, template_file):
                return True
    return False


def plan_rehearsals(diff: DiffResult, candidate: ConfigCorpus, pr_number: int,
                    config: Optional[RehearsalConfig] = None, allow_volumes: bool = False) -> RehearsalSet:
    """Turns a diff into the rehearsal jobs of one run."""
    config = config or RehearsalConfig()
    presubmits = {repo: list(jobs) for repo, jobs in diff.presubmits.items()}
    extra = add_jobs_for_changed_templates(diff.changed_templates, presubmits, candidate.presubmits,
                                           config, allow_volumes)
    for repo, jobs in extra.items():
        presubmits.setdefault(repo, []).extend(jobs)

    builder = RehearsalBuilder(candidate.build_configs, pr_number, config, allow_volumes,
                               templates=diff.changed_templates, profiles=diff.changed_cluster_profiles)
    return builder.build(presubmits, diff.periodics)
