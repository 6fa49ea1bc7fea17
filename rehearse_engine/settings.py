import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional

import yaml

from .errors import ConfigLoadError

DEFAULT_CLUSTER_TYPES = ["aws", "gcs", "openstack", "libvirt", "vsphere", "gcp"]

# Environment overrides, applied after the config file
ENV_BACKEND_URL = "PJ_REHEARSE_BACKEND_URL"
ENV_NAMESPACE = "PJ_REHEARSE_NAMESPACE"
ENV_WATCH_TIMEOUT = "PJ_REHEARSE_WATCH_TIMEOUT"


@dataclass
class RehearsalConfig:
    """Correlation constants and run options shared by the builder and the executor."""
    rehearse_label: str = "ci.openshift.org/rehearse"
    job_name_prefix: str = "rehearse"
    rerun_command: str = "/test pj-rehearse"
    context_prefix: str = "ci/rehearse"
    production_context_prefix: str = "ci/prow/"
    presubmit_name_prefix: str = "pull-ci-"
    periodic_name_prefix: str = "periodic-ci-"

    rehearsable_agent: str = "kubernetes"
    expected_command: str = "ci-operator"
    git_ref_arg: str = "--git-ref"

    cluster_type_env: str = "CLUSTER_TYPE"
    cluster_types: List[str] = field(default_factory=lambda: list(DEFAULT_CLUSTER_TYPES))
    cluster_profile_volume: str = "cluster-profile"
    cluster_profile_prefix: str = "cluster-profile-"

    backend_url: str = "http://localhost:8080"
    namespace: str = "ci"
    submit_workers: int = 1
    watch_timeout: float = 4 * 60 * 60  # seconds, 0 disables the deadline
    watch_retry_interval: float = 1.0  # seconds to wait before reopening an ended watch
    logs_dir: Optional[str] = None

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> 'RehearsalConfig':
        config = cls()
        if path is not None:
            try:
                with open(path, 'r') as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigLoadError(str(path), f"cannot read rehearsal config: {e}") from e
            if not isinstance(data, dict):
                raise ConfigLoadError(str(path), "rehearsal config must be a mapping")
            known = {f.name for f in fields(cls)}
            unknown = sorted(set(data) - known)
            if unknown:
                raise ConfigLoadError(str(path), f"unknown rehearsal config keys: {', '.join(unknown)}")
            config = cls(**data)
        config.apply_env()
        return config

    def apply_env(self, environ=None) -> None:
        environ = os.environ if environ is None else environ
        if environ.get(ENV_BACKEND_URL):
            self.backend_url = environ[ENV_BACKEND_URL]
        if environ.get(ENV_NAMESPACE):
            self.namespace = environ[ENV_NAMESPACE]
        if environ.get(ENV_WATCH_TIMEOUT):
            try:
                self.watch_timeout = float(environ[ENV_WATCH_TIMEOUT])
            except ValueError:
                raise ConfigLoadError(ENV_WATCH_TIMEOUT,
                                      f"invalid watch timeout '{environ[ENV_WATCH_TIMEOUT]}', it must be a number")

    def selector(self, pr_number: int) -> str:
        return f"{self.rehearse_label}={pr_number}"
