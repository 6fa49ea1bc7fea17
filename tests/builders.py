"""Small constructors for jobs, build configs and corpora used across the tests."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Optional

import yaml

from rehearse_engine.build_config import BuildConfig
from rehearse_engine.corpus import ConfigCorpus, SharedResource
from rehearse_engine.corpus_loader import _digest
from rehearse_engine.job import (
    ConfigMapKeyRef,
    ConfigMapSource,
    Container,
    EnvVar,
    EnvVarSource,
    Periodic,
    PodSpec,
    Presubmit,
    Volume,
    VolumeMount,
    VolumeProjection,
)

ORG_REPO_KEY = "org-repo-master.yaml"
TEMPLATE_FILE = "cluster-launch-installer-e2e.yaml"


def make_spec(
    config_key: Optional[str] = None,
    store: str = "ci-operator-configs",
    cluster_type: Optional[str] = None,
    template: Optional[str] = None,
    profile: Optional[str] = None,
    command: Iterable[str] = ("ci-operator",),
    args: Iterable[str] = ("--artifact-dir=$(ARTIFACTS)",),
) -> PodSpec:
    env = []
    if config_key is not None:
        env.append(EnvVar(
            name="CONFIG_SPEC",
            value_from=EnvVarSource(config_map_key_ref=ConfigMapKeyRef(name=store, key=config_key)),
        ))
    if cluster_type is not None:
        env.append(EnvVar(name="CLUSTER_TYPE", value=cluster_type))

    container = Container(image="ci-operator:latest", command=list(command), args=list(args), env=env)
    spec = PodSpec(containers=[container])
    if template is not None:
        container.volume_mounts.append(VolumeMount(name="job-definition", mount_path="/usr/local/e2e", sub_path=template))
        spec.volumes.append(Volume(name="job-definition", config_map=ConfigMapSource(name=f"prow-job-{Path(template).stem}")))
    if profile is not None:
        container.volume_mounts.append(VolumeMount(name="cluster-profile", mount_path="/usr/local/profile"))
        spec.volumes.append(Volume(
            name="cluster-profile",
            projected=[VolumeProjection(config_map=ConfigMapSource(name=f"cluster-profile-{profile}"))],
        ))
    return spec


def make_presubmit(name: str, branches: Iterable[str] = ("master",), agent: str = "kubernetes",
                   context: Optional[str] = None, **spec_kwargs) -> Presubmit:
    return Presubmit(
        name=name,
        agent=agent,
        spec=make_spec(**spec_kwargs),
        branches=list(branches),
        context=context if context is not None else f"ci/prow/{name.rsplit('-', 1)[-1]}",
        always_run=True,
        rerun_command=f"/test {name.rsplit('-', 1)[-1]}",
        trigger=f"(?m)^/test {name.rsplit('-', 1)[-1]}",
    )


def make_periodic(name: str, interval: str = "24h", agent: str = "kubernetes", **spec_kwargs) -> Periodic:
    return Periodic(name=name, agent=agent, interval=interval, spec=make_spec(**spec_kwargs))


def make_build_config(tests: Dict[str, str] = None, **fields) -> BuildConfig:
    tests = tests if tests is not None else {"unit": "make test", "e2e": "make e2e"}
    data = {"build_root": {"image_stream_tag": {"name": "release", "tag": "golang-1.10"}}}
    data.update(fields)
    data["tests"] = [{"as": name, "commands": commands} for name, commands in tests.items()]
    return BuildConfig.from_dict(data)


def make_template(name: str = TEMPLATE_FILE, content: str = "kind: Template\n") -> SharedResource:
    files = {name: content}
    return SharedResource(filename=f"ci-operator/templates/{name}", sha=_digest(files), files=files)


def make_profile(name: str, files: Dict[str, str] = None) -> SharedResource:
    files = files if files is not None else {"secret.auto.tfvars": f"cluster = \"{name}\"\n"}
    return SharedResource(filename=f"cluster/test-deploy/{name}", sha=_digest(files), files=files)


def make_corpus(presubmits=None, periodics=None, build_configs=None, templates=None, profiles=None) -> ConfigCorpus:
    return ConfigCorpus(
        presubmits=dict(presubmits or {}),
        periodics=list(periodics or []),
        build_configs=dict(build_configs or {}),
        templates=dict(templates or {}),
        cluster_profiles=dict(profiles or {}),
    )


def write_release_repo(root: Path, corpus: ConfigCorpus) -> Path:
    """Lays `corpus` out on disk the way the release repository stores it."""
    for repo, jobs in corpus.presubmits.items():
        path = root / "ci-operator" / "jobs" / repo / f"{repo.replace('/', '-')}-presubmits.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump({"presubmits": {repo: [job.to_dict() for job in jobs]}}))
    if corpus.periodics:
        path = root / "ci-operator" / "jobs" / "periodics.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump({"periodics": [job.to_dict() for job in corpus.periodics]}))
    for key, config in corpus.build_configs.items():
        path = root / "ci-operator" / "config" / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(config.to_yaml())
    for template in corpus.templates.values():
        path = root / template.filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(template.files[template.base_name])
    for profile in corpus.cluster_profiles.values():
        profile_dir = root / profile.filename
        profile_dir.mkdir(parents=True, exist_ok=True)
        for name, content in profile.files.items():
            (profile_dir / name).write_text(content)
    root.mkdir(parents=True, exist_ok=True)
    return root
