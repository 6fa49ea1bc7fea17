import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .job import PERIODIC, PRESUBMIT, PodSpec, Periodic, Presubmit

JOB_NAME_LABEL = "prow.k8s.io/job"
JOB_TYPE_LABEL = "prow.k8s.io/type"
ORG_LABEL = "prow.k8s.io/refs.org"
REPO_LABEL = "prow.k8s.io/refs.repo"
PULL_LABEL = "prow.k8s.io/refs.pull"

RECORD_KIND = "ProwJob"


class JobState(Enum):
    TRIGGERED = "triggered"  # created, not yet picked up by the scheduler
    PENDING = "pending"  # scheduled, not yet running
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    ABORTED = "aborted"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCESS, JobState.FAILURE, JobState.ABORTED, JobState.ERROR)

    @property
    def is_failure(self) -> bool:
        return self in (JobState.FAILURE, JobState.ABORTED, JobState.ERROR)


@dataclass
class Pull:
    number: int
    author: str = ""
    sha: str = ""

    def to_dict(self) -> dict:
        return {"number": self.number, "author": self.author, "sha": self.sha}


@dataclass
class Refs:
    """The pull request to the release repository that is being rehearsed."""
    org: str
    repo: str
    base_ref: str = "master"
    base_sha: str = ""
    pulls: List[Pull] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "org": self.org,
            "repo": self.repo,
            "base_ref": self.base_ref,
            "base_sha": self.base_sha,
            "pulls": [p.to_dict() for p in self.pulls],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Refs':
        return cls(
            org=data['org'],
            repo=data['repo'],
            base_ref=data.get('base_ref', "master"),
            base_sha=data.get('base_sha', ""),
            pulls=[Pull(number=int(p['number']), author=p.get('author', ""), sha=p.get('sha', ""))
                   for p in data.get('pulls') or []],
        )


@dataclass
class JobRecord:
    name: str  # unique handle assigned at creation
    job: str
    type: str
    pod_spec: Optional[PodSpec] = None
    labels: Dict[str, str] = field(default_factory=dict)
    refs: Optional[Refs] = None
    agent: str = "kubernetes"
    context: str = ""
    rerun_command: str = ""
    state: JobState = JobState.PENDING
    start_time: Optional[str] = None  # ISO 8601
    completion_time: Optional[str] = None  # ISO 8601
    description: str = ""
    url: str = ""

    def to_dict(self) -> dict:
        spec: Dict[str, Any] = {"type": self.type, "agent": self.agent, "job": self.job}
        if self.refs is not None:
            spec["refs"] = self.refs.to_dict()
        if self.context:
            spec["context"] = self.context
        if self.rerun_command:
            spec["rerun_command"] = self.rerun_command
        if self.pod_spec is not None:
            spec["pod_spec"] = self.pod_spec.to_dict()
        status: Dict[str, Any] = {"state": self.state.value}
        if self.start_time:
            status["startTime"] = self.start_time
        if self.completion_time:
            status["completionTime"] = self.completion_time
        if self.description:
            status["description"] = self.description
        if self.url:
            status["url"] = self.url
        return {
            "kind": RECORD_KIND,
            "metadata": {"name": self.name, "labels": dict(self.labels)},
            "spec": spec,
            "status": status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JobRecord':
        if not isinstance(data, dict) or data.get('kind', RECORD_KIND) != RECORD_KIND:
            raise ValueError(f"not a {RECORD_KIND} object: {data!r:.200}")
        metadata = data.get('metadata') or {}
        spec = data.get('spec') or {}
        status = data.get('status') or {}
        if not metadata.get('name') or not spec.get('job'):
            raise ValueError(f"{RECORD_KIND} object must have metadata.name and spec.job")
        refs = spec.get('refs')
        pod_spec = spec.get('pod_spec')
        return cls(
            name=metadata['name'],
            job=spec['job'],
            type=spec.get('type', PRESUBMIT),
            pod_spec=PodSpec.from_dict(pod_spec) if pod_spec is not None else None,
            labels=dict(metadata.get('labels') or {}),
            refs=Refs.from_dict(refs) if refs else None,
            agent=spec.get('agent', "kubernetes"),
            context=spec.get('context', ""),
            rerun_command=spec.get('rerun_command', ""),
            state=JobState(status.get('state', JobState.PENDING.value)),  # ValueError on unknown states
            start_time=status.get('startTime'),
            completion_time=status.get('completionTime'),
            description=status.get('description', ""),
            url=status.get('url', ""),
        )


def new_job_record(job: Union[Presubmit, Periodic], refs: Optional[Refs] = None) -> JobRecord:
    """Builds the execution record for a job. Presubmits run against `refs`, periodics carry none."""
    labels = dict(job.labels)
    labels[JOB_NAME_LABEL] = job.name
    labels[JOB_TYPE_LABEL] = job.kind

    record = JobRecord(
        name=str(uuid.uuid4()),
        job=job.name,
        type=job.kind,
        pod_spec=job.spec,
        labels=labels,
        agent=job.agent,
        start_time=datetime.now(timezone.utc).isoformat(),
    )
    if job.kind == PRESUBMIT:
        if refs is None:
            raise ValueError(f"presubmit {job.name} needs refs to run against")
        record.refs = refs
        record.context = job.context
        record.rerun_command = job.rerun_command
        labels[ORG_LABEL] = refs.org
        labels[REPO_LABEL] = refs.repo
        if refs.pulls:
            labels[PULL_LABEL] = str(refs.pulls[0].number)
    elif job.kind != PERIODIC:
        raise ValueError(f"unknown job type {job.kind!r} for {job.name}")
    return record
