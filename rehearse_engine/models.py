from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from .errors import RehearsalError, StreamError
from .job_record import JobRecord


@dataclass
class ExecutionMetrics:
    submitted: List[str] = field(default_factory=list)
    passed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"submitted": list(self.submitted), "passed": list(self.passed), "failed": list(self.failed)}


@dataclass
class ExecutionResult:
    success: bool
    metrics: ExecutionMetrics
    errors: List[RehearsalError] = field(default_factory=list)  # submission and rendering failures


# Watch events. Anything else arriving on the stream is a StreamError.

@dataclass
class JobEvent:
    type: str  # ADDED, MODIFIED, DELETED
    record: JobRecord


@dataclass
class BookmarkEvent:
    resource_version: str = ""


WatchEvent = Union[JobEvent, BookmarkEvent]

JOB_EVENT_TYPES = ("ADDED", "MODIFIED", "DELETED")


def parse_watch_event(payload: Dict[str, Any]) -> WatchEvent:
    if not isinstance(payload, dict):
        raise StreamError(f"received a {type(payload).__name__} from watch")
    event_type = payload.get("type")
    obj = payload.get("object")
    if event_type == "ERROR":
        message = obj.get("message") if isinstance(obj, dict) else obj
        raise StreamError(f"watch reported an error: {message}")
    if event_type == "BOOKMARK":
        metadata = obj.get("metadata", {}) if isinstance(obj, dict) else {}
        return BookmarkEvent(resource_version=str(metadata.get("resourceVersion", "")))
    if event_type not in JOB_EVENT_TYPES:
        raise StreamError(f"received an event of unknown type {event_type!r} from watch")
    try:
        return JobEvent(type=event_type, record=JobRecord.from_dict(obj))
    except (ValueError, KeyError, TypeError) as e:
        raise StreamError(f"received an unexpected object from watch: {e}") from e
