import sys
import tempfile
from pathlib import Path
from typing import Optional, Tuple

import click
import yaml

from rehearse_engine.backend import HttpExecutionBackend
from rehearse_engine.corpus import ConfigCorpus
from rehearse_engine.corpus_loader import CorpusLoader
from rehearse_engine.diffs import ChangeDetector, DiffResult
from rehearse_engine.errors import ConfigLoadError, RehearsalError, RehearsalTimeoutError, StreamError
from rehearse_engine.executor import RehearsalExecutor
from rehearse_engine.job_record import Pull, Refs
from rehearse_engine.logger_setup import logger, set_log_level
from rehearse_engine.rehearsal import RehearsalSet, plan_rehearsals
from rehearse_engine.scm_handler import SCMHandler
from rehearse_engine.settings import RehearsalConfig

EXIT_SUCCESS = 0
EXIT_REHEARSAL_FAILED = 1
EXIT_CONFIG_ERROR = 2


@click.group()
@click.option("--log-level", default="INFO", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Console log level.")
def cli(log_level: str):
    """pj-rehearse: runs the CI jobs affected by a change to the job configuration before it merges."""
    set_log_level(log_level.upper())


def corpus_options(f):
    f = click.option("--candidate", required=True, type=click.Path(exists=True, file_okay=False, path_type=Path),
                     help="Checkout of the release repository with the proposed change.")(f)
    f = click.option("--master-rev", default=None,
                     help="Git revision of the candidate repository to compare against, instead of --master.")(f)
    f = click.option("--master", "master_dir", default=None, type=click.Path(file_okay=False, path_type=Path),
                     help="Checkout of the release repository at the base of the change.")(f)
    return f


def load_corpora(master_dir: Optional[Path], master_rev: Optional[str], candidate: Path) -> Tuple[ConfigCorpus, ConfigCorpus]:
    if (master_dir is None) == (master_rev is None):
        raise click.UsageError("Exactly one of --master and --master-rev is required.")

    candidate_corpus = CorpusLoader(candidate).load()
    if master_dir is not None:
        return CorpusLoader(master_dir).load(), candidate_corpus

    scm = SCMHandler(candidate)
    with tempfile.TemporaryDirectory(prefix="pj-rehearse-") as tmp:
        worktree = Path(tmp) / "master"
        scm.checkout_revision(master_rev, worktree)
        try:
            master_corpus = CorpusLoader(worktree).load()
        finally:
            scm.remove_checkout(worktree)
    return master_corpus, candidate_corpus


def detect_changes(master_dir, master_rev, candidate, config: RehearsalConfig) -> Tuple[DiffResult, ConfigCorpus]:
    master_corpus, candidate_corpus = load_corpora(master_dir, master_rev, candidate)
    return ChangeDetector(config).diff(master_corpus, candidate_corpus), candidate_corpus


def load_config(config_file: Optional[Path]) -> RehearsalConfig:
    return RehearsalConfig.from_file(config_file)


def fail(message: str, code: int):
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def rehearsals_as_dict(rehearsals: RehearsalSet) -> dict:
    presubmits = {}
    for repo, job in rehearsals.presubmits:
        presubmits.setdefault(repo, []).append(job.to_dict())
    return {
        "presubmits": presubmits,
        "periodics": [job.to_dict() for job in rehearsals.periodics],
        "rejections": [{"job": r.job, "repo": r.repo, "reason": r.reason} for r in rehearsals.rejections],
        "errors": [str(e) for e in rehearsals.errors],
    }


@cli.command("diff")
@corpus_options
@click.option("--config", "config_file", default=None, type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Rehearsal settings file (YAML).")
def diff_cmd(master_dir, master_rev, candidate, config_file):
    """Prints the build configs, jobs and shared resources changed between two revisions."""
    try:
        config = load_config(config_file)
        diff, _ = detect_changes(master_dir, master_rev, candidate, config)
    except ConfigLoadError as e:
        fail(str(e), EXIT_CONFIG_ERROR)
    click.echo(yaml.safe_dump(diff.summary(), default_flow_style=False, sort_keys=False))


@cli.command("build")
@corpus_options
@click.option("--pr", "pr_number", required=True, type=int, help="Number of the pull request being rehearsed.")
@click.option("--allow-volumes", is_flag=True, help="Rehearse jobs that mount volumes, redirecting changed templates and cluster profiles.")
@click.option("--config", "config_file", default=None, type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Rehearsal settings file (YAML).")
def build_cmd(master_dir, master_rev, candidate, pr_number, allow_volumes, config_file):
    """Prints the rehearsal jobs a pull request would run, without submitting them."""
    try:
        config = load_config(config_file)
        diff, candidate_corpus = detect_changes(master_dir, master_rev, candidate, config)
    except ConfigLoadError as e:
        fail(str(e), EXIT_CONFIG_ERROR)
    rehearsals = plan_rehearsals(diff, candidate_corpus, pr_number, config, allow_volumes)
    click.echo(yaml.safe_dump(rehearsals_as_dict(rehearsals), default_flow_style=False, sort_keys=False))


@cli.command("run")
@corpus_options
@click.option("--pr", "pr_number", required=True, type=int, help="Number of the pull request being rehearsed.")
@click.option("--org", required=True, help="Organization of the release repository.")
@click.option("--repo", required=True, help="Name of the release repository.")
@click.option("--base-ref", default="master", show_default=True, help="Branch the pull request targets.")
@click.option("--base-sha", default="", help="Commit of the base branch.")
@click.option("--pull-sha", default="", help="Head commit of the pull request.")
@click.option("--author", default="", help="Author of the pull request.")
@click.option("--dry-run", is_flag=True, help="Print the rehearsal jobs instead of submitting them.")
@click.option("--allow-volumes", is_flag=True, help="Rehearse jobs that mount volumes, redirecting changed templates and cluster profiles.")
@click.option("--config", "config_file", default=None, type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Rehearsal settings file (YAML).")
@click.option("--backend", "backend_url", default=None, help="Address of the execution backend (overrides the settings).")
def run_cmd(master_dir, master_rev, candidate, pr_number, org, repo, base_ref, base_sha, pull_sha, author,
            dry_run, allow_volumes, config_file, backend_url):
    """Detects the jobs affected by a pull request, submits their rehearsals and waits for them to finish."""
    try:
        config = load_config(config_file)
        diff, candidate_corpus = detect_changes(master_dir, master_rev, candidate, config)
    except ConfigLoadError as e:
        fail(str(e), EXIT_CONFIG_ERROR)

    rehearsals = plan_rehearsals(diff, candidate_corpus, pr_number, config, allow_volumes)
    if rehearsals.is_empty() and not rehearsals.errors:
        logger.info("No jobs need to be rehearsed")
        return

    refs = Refs(org=org, repo=repo, base_ref=base_ref, base_sha=base_sha,
                pulls=[Pull(number=pr_number, author=author, sha=pull_sha)])
    backend = None if dry_run else HttpExecutionBackend(backend_url or config.backend_url, config.namespace)
    try:
        executor = RehearsalExecutor(rehearsals, pr_number, refs, dry_run, backend, config)
        result = executor.execute_jobs()
    except StreamError as e:
        fail(f"watching rehearsal jobs failed: {e}", EXIT_CONFIG_ERROR)
    except RehearsalTimeoutError as e:
        fail(str(e), EXIT_REHEARSAL_FAILED)
    finally:
        if backend is not None:
            backend.close()

    metrics = result.metrics
    logger.info(f"Rehearsal finished: {len(metrics.submitted)} submitted, {len(metrics.passed)} passed, {len(metrics.failed)} failed")
    errors = list(rehearsals.errors) + list(result.errors)
    for error in errors:
        logger.error(f"{error}")
    if not result.success or errors:
        fail("some rehearsal jobs failed", EXIT_REHEARSAL_FAILED)


def main():
    try:
        cli()
    except RehearsalError as e:
        fail(str(e), EXIT_CONFIG_ERROR)


if __name__ == '__main__':
    main()
