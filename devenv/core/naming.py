"""Naming helpers: name validation, container names, image tags and timestamps."""

import re

from devenv.core.exceptions import ValidationError


MAX_NAME_LENGTH = 64

_ENV_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
# Characters git refuses in ref names, plus whitespace and control characters
_BRANCH_FORBIDDEN_RE = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def validate_environment_name(name: str) -> str:
    """
    Validate an environment name before it reaches any adapter.

    The name doubles as a worktree directory name and a container name
    component, so it must be legal in both contexts.

    Args:
        name: Candidate environment name.

    Returns:
        The name, unchanged.

    Raises:
        ValidationError: If the name is empty, too long, contains path
            traversal or characters illegal in paths or branch names.
    """
    if not name or not name.strip():
        raise ValidationError("environment name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"environment name exceeds {MAX_NAME_LENGTH} characters: {name!r}"
        )
    if ".." in name or "/" in name or "\\" in name:
        raise ValidationError(f"environment name contains a path sequence: {name!r}")
    if not _ENV_NAME_RE.match(name):
        raise ValidationError(
            f"environment name must match [A-Za-z0-9][A-Za-z0-9._-]*: {name!r}"
        )
    if name.endswith(".lock") or name.endswith("."):
        raise ValidationError(f"environment name has an illegal suffix: {name!r}")
    return name


def validate_branch_name(branch: str) -> str:
    """
    Validate a git branch name following git-check-ref-format rules.

    Args:
        branch: Candidate branch name (may contain "/").

    Returns:
        The branch name, unchanged.

    Raises:
        ValidationError: If git would reject the name or it could escape
            the repository when used as a path.
    """
    if not branch or not branch.strip():
        raise ValidationError("branch name cannot be empty")
    if _BRANCH_FORBIDDEN_RE.search(branch):
        raise ValidationError(f"branch name contains illegal characters: {branch!r}")
    if ".." in branch or "@{" in branch or "//" in branch:
        raise ValidationError(f"branch name contains an illegal sequence: {branch!r}")
    if branch.startswith(("-", "/", ".")) or branch.endswith(("/", ".", ".lock")):
        raise ValidationError(f"branch name has an illegal prefix or suffix: {branch!r}")
    if any(part.startswith(".") or part.endswith(".lock") for part in branch.split("/")):
        raise ValidationError(f"branch name has an illegal component: {branch!r}")
    if branch == "@":
        raise ValidationError("branch name cannot be '@'")
    return branch


def derive_container_name(env_name: str, created_at: str) -> str:
    """
    Derive deterministic container name from environment name and created_at.

    Args:
        env_name: Environment name (already validated).
        created_at: ISO timestamp string from the environment record.

    Returns:
        Container name in format: devenv-<safe-name>-<compact-ts>
    """
    safe_name = re.sub(r"[^a-zA-Z0-9_.-]+", "-", env_name).strip("-")
    safe_name = safe_name or "env"
    return f"devenv-{safe_name}-{compact_timestamp(created_at)}"


def derive_image_tag(env_name: str, record_id: str) -> str:
    """
    Derive the local image tag built for one environment record.

    Repository names must be lowercase, so names differing only in case
    share a repository; the tag carries the record id to keep them apart.

    Returns:
        Image tag in format: devenv/<safe-name>:<record-id-prefix>
    """
    safe_name = re.sub(r"[^a-z0-9_.-]+", "-", env_name.lower()).strip("-.")
    return f"devenv/{safe_name or 'env'}:{record_id[:12]}"


def compact_timestamp(value: str) -> str:
    """
    Compact timestamp for container names (YYYYMMDDHHMMSS).

    Args:
        value: ISO timestamp string (e.g., "2024-01-15T10:30:45.123456").

    Returns:
        Compacted timestamp string (14 digits) or "ts" as fallback.
    """
    digits = "".join(ch for ch in value if ch.isdigit())
    if len(digits) >= 14:
        return digits[:14]
    if digits:
        return digits
    return "ts"
