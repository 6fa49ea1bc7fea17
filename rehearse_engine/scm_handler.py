import git
from pathlib import Path

from .errors import ConfigLoadError
from .logger_setup import logger


class SCMHandler:
    """Provides the master revision of the release repository next to the candidate checkout."""

    def __init__(self, repo_path: Path):
        self.repo_path = Path(repo_path)

    def _repo(self) -> git.Repo:
        try:
            return git.Repo(self.repo_path, search_parent_directories=True)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise ConfigLoadError(str(self.repo_path), f"not a git repository: {e}") from e

    def resolve(self, revision: str) -> str:
        repo = self._repo()
        try:
            return repo.commit(revision).hexsha
        except (git.exc.BadName, ValueError) as e:
            raise ConfigLoadError(str(self.repo_path), f"unknown revision '{revision}': {e}") from e

    def checkout_revision(self, revision: str, target_dir: Path) -> str:
        """Checks `revision` out into `target_dir` as a detached worktree and returns its commit hash."""
        repo = self._repo()
        commit_hash = self.resolve(revision)
        target_dir = Path(target_dir)
        try:
            logger.info(f"Checking out {revision} ({commit_hash[:12]}) of {self.repo_path} into {target_dir}...")
            repo.git.worktree("add", "--detach", str(target_dir), commit_hash)
        except git.exc.GitCommandError as e:
            raise ConfigLoadError(str(self.repo_path), f"git worktree failed for {revision}: {e}") from e
        return commit_hash

    def remove_checkout(self, target_dir: Path) -> None:
        repo = self._repo()
        try:
            repo.git.worktree("remove", "--force", str(target_dir))
        except git.exc.GitCommandError as e:
            logger.warning(f"Could not remove worktree {target_dir}: {e}")
