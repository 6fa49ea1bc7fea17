"""Pure predicates consulted while selecting and building rehearsals."""
import re
from typing import Optional, Union

from .build_config import BuildConfig
from .job import Periodic, Presubmit

OKD_PROMOTION_NAMESPACE = "openshift"
OKD_40_IMAGESTREAM = "origin-v4.0"
OCP_PROMOTION_NAMESPACE = "ocp"

BUILD_CONFIG_STORE = "ci-operator-configs"
_FLAVORED_BUILD_CONFIG_STORE = re.compile(r"^ci-operator-.+-configs$")

Job = Union[Presubmit, Periodic]


def promotes_official_images(config: BuildConfig) -> bool:
    """Whether a build config contributes images to the release payload."""
    return not is_promotion_disabled(config) and builds_official_images(config)


def is_promotion_disabled(config: BuildConfig) -> bool:
    return config.promotion is not None and config.promotion.disabled


def builds_official_images(config: BuildConfig) -> bool:
    namespace = _promotion_namespace(config)
    name = _promotion_name(config)
    return (namespace == OKD_PROMOTION_NAMESPACE and name == OKD_40_IMAGESTREAM) or namespace == OCP_PROMOTION_NAMESPACE


def _promotion_namespace(config: BuildConfig) -> str:
    if config.promotion is not None and config.promotion.namespace:
        return config.promotion.namespace
    return ""


def _promotion_name(config: BuildConfig) -> str:
    if config.promotion is not None and config.promotion.name:
        return config.promotion.name
    return ""


def is_build_config_store(config_map_name: str) -> bool:
    """Whether a ConfigMap is one of the stores the build configs are published to."""
    return config_map_name == BUILD_CONFIG_STORE or bool(_FLAVORED_BUILD_CONFIG_STORE.match(config_map_name))


def build_config_key(job: Job) -> Optional[str]:
    """The build config file a job reads through its environment, if any."""
    container = job.spec.container if job.spec else None
    if container is None:
        return None
    for env in container.env:
        ref = env.value_from.config_map_key_ref if env.value_from else None
        if ref is not None and is_build_config_store(ref.name):
            return ref.key
    return None


def has_cluster_type(job: Job, cluster_type: str, env_name: str = "CLUSTER_TYPE") -> bool:
    container = job.spec.container if job.spec else None
    if container is None:
        return False
    return any(env.name == env_name and env.value == cluster_type for env in container.env)


def has_template_file(job: Job, template_file: str) -> bool:
    container = job.spec.container if job.spec else None
    if container is None:
        return False
    return any(mount.sub_path == template_file for mount in container.volume_mounts)
