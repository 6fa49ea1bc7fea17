import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from typing import Dict, List, Optional, Tuple

import click
import yaml

from .backend import ExecutionBackend
from .corpus import CLUSTER_PROFILE_KIND, TEMPLATE_KIND, SharedResource
from .errors import RehearsalError, RehearsalTimeoutError, SubmissionError
from .job_record import JobRecord, Refs, new_job_record
from .logger_setup import close_run_logger, get_run_logger, logger
from .models import ExecutionMetrics, ExecutionResult, JobEvent
from .rehearsal import RehearsalSet
from .settings import RehearsalConfig


class RehearsalExecutor:
    """Submits the rehearsal jobs of one pull request and waits for all of them to finish.

    A *rehearsal* is a trial execution of a job whose configuration is changed by
    the pull request, giving its author feedback on how the change would affect the
    production jobs. Failures to submit and failed jobs both make the run fail, but
    neither stops the run: every job that was submitted is waited for.
    """

    def __init__(self, rehearsals: RehearsalSet, pr_number: int, refs: Optional[Refs],
                 dry_run: bool, backend: Optional[ExecutionBackend] = None,
                 config: Optional[RehearsalConfig] = None):
        if backend is None and not dry_run:
            raise ValueError("an execution backend is required unless running dry")
        self.metrics = ExecutionMetrics()
        self.rehearsals = rehearsals
        self.pr_number = pr_number
        self.refs = refs
        self.dry_run = dry_run
        self.backend = backend
        self.config = config or RehearsalConfig()
        self.logger = logger

    def execute_jobs(self) -> ExecutionResult:
        records, errors = self.render_records()

        if self.dry_run:
            self._print_resources()
            print_as_yaml(records)
            return ExecutionResult(success=not errors, metrics=self.metrics, errors=errors)

        errors.extend(self.publish_resources())
        submitted, submit_errors = self.submit_rehearsals(records)
        errors.extend(submit_errors)

        wait_success = self.wait_for_jobs({record.name: record.job for record in submitted})
        if errors:
            self.logger.error(f"Failed to submit all rehearsal jobs: {len(errors)} error(s)")
        return ExecutionResult(success=wait_success and not errors, metrics=self.metrics, errors=errors)

    def render_records(self) -> Tuple[List[JobRecord], List[RehearsalError]]:
        records: List[JobRecord] = []
        errors: List[RehearsalError] = []
        jobs = [job for _, job in self.rehearsals.presubmits] + list(self.rehearsals.periodics)
        for job in jobs:
            try:
                records.append(new_job_record(job, self.refs))
            except ValueError as e:
                self.logger.warning(f"Failed to render rehearsal job {job.name}: {e}")
                errors.append(SubmissionError(job.name, str(e)))
        return records, errors

    def _resources(self) -> List[Tuple[str, SharedResource]]:
        resources = [(t.temp_name(TEMPLATE_KIND), t) for t in self.rehearsals.templates]
        resources += [(p.temp_name(CLUSTER_PROFILE_KIND), p) for p in self.rehearsals.profiles]
        return resources

    def _resource_labels(self) -> Dict[str, str]:
        return {self.config.rehearse_label: str(self.pr_number)}

    def _print_resources(self) -> None:
        config_maps = [
            {"kind": "ConfigMap", "metadata": {"name": name, "labels": self._resource_labels()}, "data": dict(resource.files)}
            for name, resource in self._resources()
        ]
        if config_maps:
            click.echo(yaml.safe_dump(config_maps, default_flow_style=False, sort_keys=False))

    def publish_resources(self) -> List[RehearsalError]:
        """Creates the temporary copies of changed templates and cluster profiles the jobs were redirected to."""
        errors: List[RehearsalError] = []
        for name, resource in self._resources():
            try:
                self.backend.create_resource(name, resource.files, self._resource_labels())
            except SubmissionError as e:
                self.logger.warning(f"Failed to publish {resource.filename} as {name}: {e}")
                errors.append(e)
        return errors

    def submit_rehearsals(self, records: List[JobRecord]) -> Tuple[List[JobRecord], List[RehearsalError]]:
        submitted: List[JobRecord] = []
        errors: List[RehearsalError] = []

        # Every submission finishes before the watch opens, so the set of watched jobs is fixed
        with ThreadPoolExecutor(max_workers=max(1, self.config.submit_workers)) as pool:
            futures = [(record, pool.submit(self.backend.submit, record)) for record in records]
            for record, future in futures:
                try:
                    created = future.result()
                except SubmissionError as e:
                    self.logger.warning(f"Failed to execute a rehearsal {record.type}: {e}")
                    errors.append(e)
                    continue
                except Exception as e:
                    self.logger.exception(f"Unexpected error submitting rehearsal {record.type} {record.job}: {e}")
                    errors.append(SubmissionError(record.job, str(e)))
                    continue
                self.metrics.submitted.append(created.job)
                self.logger.info(f"Submitted rehearsal job {created.job} ({created.name})")
                submitted.append(created)
        return submitted, errors

    def wait_for_jobs(self, jobs: Dict[str, str]) -> bool:
        """Watches `jobs` (record name -> job name) until every one reached a terminal state."""
        if not jobs:
            return True

        pending = dict(jobs)
        success = True
        selector = self.config.selector(self.pr_number)
        timeout = self.config.watch_timeout
        deadline = time.monotonic() + timeout if timeout and timeout > 0 else None
        run_logger, log_path = get_run_logger(self.pr_number, self.config.logs_dir)
        self.logger.info(f"Waiting for {len(pending)} rehearsal jobs, event log in {log_path}")

        try:
            while True:
                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise RehearsalTimeoutError(timeout, pending.values())

                with closing(self.backend.watch(selector, timeout=remaining)) as events:
                    for event in events:
                        if isinstance(event, JobEvent):
                            record = event.record
                            run_logger.debug(f"Processing job {record.name} ({record.job}) event={event.type} state={record.state.value}")
                            if record.name in pending and record.state.is_terminal:
                                if record.state.is_failure:
                                    self.logger.error(f"Job {record.job} failed: {record.state.value} {record.url}".rstrip())
                                    self.metrics.failed.append(record.job)
                                    success = False
                                else:
                                    self.logger.info(f"Job {record.job} succeeded")
                                    self.metrics.passed.append(record.job)
                                del pending[record.name]
                                if not pending:
                                    return success

                        if deadline is not None and time.monotonic() >= deadline:
                            raise RehearsalTimeoutError(timeout, pending.values())
                run_logger.debug(f"Watch ended with {len(pending)} jobs outstanding, reopening")
                time.sleep(self.config.watch_retry_interval)
        finally:
            close_run_logger(run_logger)


def print_as_yaml(records: List[JobRecord]) -> None:
    records = sorted(records, key=lambda r: r.job)
    click.echo(yaml.safe_dump([r.to_dict() for r in records], default_flow_style=False, sort_keys=False))
