import json
from typing import Dict, Iterator, Optional

import httpx

from .errors import StreamError, SubmissionError
from .job_record import JobRecord
from .logger_setup import logger
from .models import WatchEvent, parse_watch_event


class ExecutionBackend:
    """The cluster scheduler rehearsal jobs are handed to."""

    def submit(self, record: JobRecord) -> JobRecord:
        raise NotImplementedError

    def watch(self, selector: str, timeout: Optional[float] = None) -> Iterator[WatchEvent]:
        """Yields status events of jobs matching `selector`. Returns when the stream ends or `timeout` passes without an event."""
        raise NotImplementedError

    def create_resource(self, name: str, data: Dict[str, str], labels: Optional[Dict[str, str]] = None) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class HttpExecutionBackend(ExecutionBackend):
    def __init__(self, address: str, namespace: str, transport: Optional[httpx.BaseTransport] = None):
        self.address = address.rstrip("/")
        self.namespace = namespace
        timeout_config = httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=5.0)
        self.client = httpx.Client(base_url=self.address, timeout=timeout_config, transport=transport)

    def _jobs_path(self) -> str:
        return f"/api/v1/namespaces/{self.namespace}/prowjobs"

    def submit(self, record: JobRecord) -> JobRecord:
        logger.debug(f"Submitting job {record.job} ({record.name}) to {self.address}")
        try:
            response = self.client.post(self._jobs_path(), json=record.to_dict())
            response.raise_for_status()
            return JobRecord.from_dict(response.json())
        except httpx.HTTPStatusError as hse:
            raise SubmissionError(record.job, f"HTTP {hse.response.status_code}: {hse.response.text}") from hse
        except httpx.RequestError as rqe:
            raise SubmissionError(record.job, f"request to {self.address} failed: {rqe}") from rqe
        except (ValueError, KeyError, TypeError) as ve:
            raise SubmissionError(record.job, f"unexpected response: {ve}") from ve

    def watch(self, selector: str, timeout: Optional[float] = None) -> Iterator[WatchEvent]:
        params = {"watch": "true", "labelSelector": selector}
        # The read timeout bounds the wait for the next event, None blocks until one arrives
        watch_timeout = httpx.Timeout(connect=10.0, read=timeout, write=10.0, pool=5.0)
        try:
            with self.client.stream("GET", self._jobs_path(), params=params, timeout=watch_timeout) as response:
                if response.status_code != 200:
                    response.read()
                    raise StreamError(f"failed to create watch for jobs: HTTP {response.status_code}: {response.text}")
                for line in response.iter_lines():
                    if not line.strip():
                        continue
                    try:
                        payload = json.loads(line)
                    except json.JSONDecodeError as e:
                        raise StreamError(f"received malformed event from watch: {e}") from e
                    yield parse_watch_event(payload)
        except httpx.ReadTimeout:
            logger.debug(f"Watch for {selector} timed out after {timeout}s without events")
            return
        except httpx.RequestError as e:
            raise StreamError(f"watch for jobs failed: {e}") from e

    def create_resource(self, name: str, data: Dict[str, str], labels: Optional[Dict[str, str]] = None) -> None:
        body = {"kind": "ConfigMap", "metadata": {"name": name, "labels": dict(labels or {})}, "data": dict(data)}
        try:
            response = self.client.put(f"/api/v1/namespaces/{self.namespace}/configmaps/{name}", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as hse:
            raise SubmissionError(name, f"HTTP {hse.response.status_code}: {hse.response.text}") from hse
        except httpx.RequestError as rqe:
            raise SubmissionError(name, f"request to {self.address} failed: {rqe}") from rqe
        logger.info(f"Published temporary ConfigMap {name}")

    def close(self) -> None:
        self.client.close()
