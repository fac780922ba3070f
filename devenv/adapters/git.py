"""Git worktree adapter.

Provides deterministic worktree derivation, branch/worktree lifecycle
management, and error propagation via the adapter exception kinds.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from devenv.adapters.protocol import (
    DirtyWorktreeError,
    GitAdapterException,
    GitNotFoundError,
    GitTimeoutError,
    RepositoryUnavailableError,
    WorktreeExistsError,
    WorktreeInfo,
)


logger = logging.getLogger(__name__)


class BranchNotFoundError(GitNotFoundError):
    """Raised when branch does not exist in repository."""

    pass


class RepoNotFoundError(GitNotFoundError):
    """Raised when repository does not exist."""

    pass


def derive_worktree_path(worktrees_root: str, env_name: str) -> str:
    """Derive worktree path deterministically.

    Args:
        worktrees_root: Root directory for all worktrees.
        env_name: Environment name (already validated).

    Returns:
        Deterministic worktree path: <worktrees_root>/<env_name>

    Raises:
        ValueError: If env_name is empty.
    """
    if not env_name or not env_name.strip():
        raise ValueError("env_name cannot be empty")

    return str(Path(worktrees_root).expanduser().resolve() / env_name)


class GitWorktreeAdapter:
    """Version control adapter over the git command line.

    Attributes:
        repo_root: Path to the main repository.
        worktrees_root: Directory holding one worktree per environment.
        timeout: Seconds allowed for each git invocation.
    """

    def __init__(self, repo_root: str, worktrees_root: str, timeout: float = 30):
        self.repo_root = str(Path(repo_root).expanduser().resolve())
        self.worktrees_root = str(Path(worktrees_root).expanduser().resolve())
        self.timeout = timeout

    def _git(self, args: List[str], cwd: Optional[str] = None) -> subprocess.CompletedProcess:
        """Run a git command, mapping launcher failures to RepositoryUnavailableError."""
        try:
            return subprocess.run(
                ["git", *args],
                cwd=cwd or self.repo_root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise GitTimeoutError(
                f"Timeout running git {' '.join(args)} in {cwd or self.repo_root}"
            )
        except FileNotFoundError as e:
            # Either the git binary or the working directory is missing
            raise RepositoryUnavailableError(f"Cannot run git: {e}")
        except OSError as e:
            raise RepositoryUnavailableError(f"Cannot run git: {e}")

    def repo_exists(self) -> bool:
        """Check whether repo_root contains a git repository."""
        return (Path(self.repo_root) / ".git").exists()

    def ensure_repo_exists(self) -> None:
        """
        Raises:
            RepoNotFoundError: If repository does not exist.
        """
        if not self.repo_exists():
            raise RepoNotFoundError(f"Repository not found at: {self.repo_root}")

    def branch_exists(self, name: str) -> bool:
        """Check if a local branch exists in the repository.

        Raises:
            RepoNotFoundError: If repository does not exist.
        """
        self.ensure_repo_exists()
        result = self._git(["rev-parse", "--verify", "--quiet", f"refs/heads/{name}"])
        return result.returncode == 0

    def ref_exists(self, ref: str) -> bool:
        """Check if any ref (branch, tag, remote branch, commit) resolves."""
        self.ensure_repo_exists()
        result = self._git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"])
        return result.returncode == 0

    def create_branch(self, name: str, base_branch: str) -> bool:
        """Create a new branch from base branch.

        Returns:
            True if the branch was created, False if it already existed.

        Raises:
            BranchNotFoundError: If base branch does not exist.
            GitAdapterException: If branch creation fails.
        """
        if self.branch_exists(name):
            return False

        if not self.ref_exists(base_branch):
            raise BranchNotFoundError(
                f"Base branch '{base_branch}' not found in {self.repo_root}"
            )

        result = self._git(["branch", name, base_branch])
        if result.returncode != 0:
            raise GitAdapterException(
                f"Failed to create branch '{name}' from '{base_branch}': "
                f"{result.stderr.strip()}"
            )
        logger.info(f"Created branch {name} from {base_branch}")
        return True

    def delete_branch(self, name: str) -> None:
        """Delete a local branch, tolerating its absence."""
        if not self.branch_exists(name):
            return
        result = self._git(["branch", "-D", name])
        if result.returncode != 0:
            raise GitAdapterException(
                f"Failed to delete branch '{name}': {result.stderr.strip()}"
            )
        logger.info(f"Deleted branch {name}")

    def create_worktree(self, env_name: str, branch: str, base_branch: str) -> WorktreeInfo:
        """Create a worktree for an environment checked out on branch.

        Args:
            env_name: Environment name; the worktree directory name.
            branch: Branch to check out, created from base_branch if absent.
            base_branch: Base branch used when creating branch.

        Returns:
            WorktreeInfo with the absolute path and whether the branch was created.

        Raises:
            RepoNotFoundError: If repository does not exist.
            BranchNotFoundError: If base branch does not exist.
            WorktreeExistsError: If the worktree path is already taken.
            GitAdapterException: If worktree creation fails.
        """
        self.ensure_repo_exists()

        worktree_path = Path(derive_worktree_path(self.worktrees_root, env_name))
        if worktree_path.exists():
            raise WorktreeExistsError(f"Worktree path already exists: {worktree_path}")

        worktree_path.parent.mkdir(parents=True, exist_ok=True)

        # Drop metadata of worktrees whose directories were deleted by hand
        self._git(["worktree", "prune"])

        branch_created = self.create_branch(branch, base_branch)

        result = self._git(["worktree", "add", str(worktree_path), branch])
        if result.returncode != 0:
            if branch_created:
                try:
                    self.delete_branch(branch)
                except GitAdapterException as e:
                    logger.warning(f"Failed to delete branch after worktree error: {e}")
            stderr = result.stderr.strip()
            if "already checked out" in stderr or "is already used by worktree" in stderr:
                raise WorktreeExistsError(
                    f"Branch '{branch}' is already checked out in another worktree: {stderr}"
                )
            raise GitAdapterException(
                f"Failed to create worktree at {worktree_path}: {stderr}"
            )

        logger.info(f"Worktree created at {worktree_path} on branch {branch}")
        return WorktreeInfo(
            path=str(worktree_path), branch=branch, branch_created=branch_created
        )

    def worktree_exists(self, path: str) -> bool:
        """Check whether the worktree directory is present on disk."""
        return Path(path).expanduser().exists()

    def is_dirty(self, path: str) -> bool:
        """Check for uncommitted changes (including untracked files) in a worktree.

        Raises:
            GitNotFoundError: If the worktree does not exist.
        """
        if not self.worktree_exists(path):
            raise GitNotFoundError(f"Worktree not found: {path}")

        result = self._git(["status", "--porcelain"], cwd=path)
        if result.returncode != 0:
            raise GitAdapterException(
                f"Failed to read status of {path}: {result.stderr.strip()}"
            )
        return bool(result.stdout.strip())

    def remove_worktree(
        self, path: str, force: bool = False, delete_branch: Optional[str] = None
    ) -> None:
        """Remove a worktree and optionally a branch created for it.

        A missing worktree is treated as already removed.

        Args:
            path: Path to worktree to remove.
            force: Remove even if worktree has uncommitted changes.
            delete_branch: Branch to delete after the worktree is gone.

        Raises:
            DirtyWorktreeError: If uncommitted changes block removal.
            GitAdapterException: If worktree removal fails.
        """
        self.ensure_repo_exists()

        worktree_path = Path(path).expanduser().resolve()

        if worktree_path.exists():
            if not force and self.is_dirty(str(worktree_path)):
                raise DirtyWorktreeError(
                    f"Worktree {worktree_path} has uncommitted changes"
                )

            cmd = ["worktree", "remove"]
            if force:
                cmd.append("--force")
            cmd.append(str(worktree_path))

            result = self._git(cmd)
            if result.returncode != 0:
                stderr = result.stderr.strip()
                if "is not a working tree" in stderr and force:
                    # Directory exists but git no longer tracks it
                    shutil.rmtree(worktree_path, ignore_errors=True)
                else:
                    raise GitAdapterException(
                        f"Failed to remove worktree {worktree_path}: {stderr}"
                    )
            logger.info(f"Worktree {worktree_path} removed")

        self._git(["worktree", "prune"])

        if delete_branch:
            self.delete_branch(delete_branch)
