"""
Git command runner used to resolve branch and repository names.

Commands run with ``safe.directory`` set for the target directory so that
repositories owned by another user (containers, CI, sudo) still answer.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import List, Dict, Optional

logger = logging.getLogger(__name__)


def get_git_environment(project_dir: Path) -> Dict[str, str]:
    """
    Get environment variables for git commands to handle dubious ownership.

    Existing ``GIT_CONFIG_KEY_n``/``GIT_CONFIG_VALUE_n`` pairs from the
    calling environment are shifted up by one to make room for ours.

    Args:
        project_dir: Path to the project directory

    Returns:
        Dictionary of environment variables for git commands
    """
    env = os.environ.copy()

    env["GIT_CONFIG_KEY_0"] = "safe.directory"
    env["GIT_CONFIG_VALUE_0"] = str(project_dir.resolve())

    config_count = 1
    existing = int(os.environ.get("GIT_CONFIG_COUNT", "0") or 0)
    for idx in range(existing):
        key = os.environ.get(f"GIT_CONFIG_KEY_{idx}")
        if key is None:
            continue
        env[f"GIT_CONFIG_KEY_{idx + 1}"] = key
        env[f"GIT_CONFIG_VALUE_{idx + 1}"] = os.environ.get(
            f"GIT_CONFIG_VALUE_{idx}", ""
        )
        config_count = idx + 2

    env["GIT_CONFIG_COUNT"] = str(config_count)
    return env


def run_git_command(
    cmd: List[str],
    cwd: Path,
    check: bool = True,
    timeout: Optional[float] = 10.0,
) -> subprocess.CompletedProcess:
    """
    Run a git command with proper environment handling for dubious ownership.

    Args:
        cmd: Git command as a list (e.g., ["git", "status"])
        cwd: Working directory for the command
        check: Whether to raise CalledProcessError on non-zero exit
        timeout: Optional timeout in seconds

    Returns:
        CompletedProcess instance with the command result

    Raises:
        subprocess.CalledProcessError: If check=True and command fails
        subprocess.TimeoutExpired: If timeout is exceeded
    """
    if not cmd or cmd[0] != "git":
        raise ValueError("Command must start with 'git'")

    return subprocess.run(
        cmd,
        cwd=cwd,
        check=check,
        capture_output=True,
        text=True,
        timeout=timeout,
        env=get_git_environment(cwd),
    )


def is_git_repository(project_dir: Path) -> bool:
    """Check if a directory is inside a git work tree."""
    try:
        run_git_command(["git", "rev-parse", "--git-dir"], cwd=project_dir)
        return True
    except (subprocess.CalledProcessError, FileNotFoundError, subprocess.TimeoutExpired):
        return False


def get_current_branch(project_dir: Path) -> Optional[str]:
    """
    Get the current git branch name.

    Args:
        project_dir: Path to the git repository

    Returns:
        Branch name, ``detached-<sha>`` on a detached HEAD, or None outside git
    """
    try:
        result = run_git_command(["git", "branch", "--show-current"], cwd=project_dir)
        branch = result.stdout.strip()

        if not branch:
            result = run_git_command(
                ["git", "rev-parse", "--short", "HEAD"], cwd=project_dir
            )
            return f"detached-{result.stdout.strip()}"

        return str(branch)
    except (subprocess.CalledProcessError, FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Could not determine branch for {project_dir}: {e}")
        return None


def get_remote_url(project_dir: Path, remote: str = "origin") -> Optional[str]:
    """Return the URL of ``remote``, or None when it is not configured."""
    try:
        result = run_git_command(
            ["git", "remote", "get-url", remote], cwd=project_dir
        )
        url = result.stdout.strip()
        return url or None
    except (subprocess.CalledProcessError, FileNotFoundError, subprocess.TimeoutExpired):
        return None


def repo_name_from_url(url: str) -> str:
    """Turn ``git@host:owner/repo.git`` or ``https://host/owner/repo`` into ``owner/repo``."""
    trimmed = url.strip().rstrip("/")
    if trimmed.endswith(".git"):
        trimmed = trimmed[: -len(".git")]
    if "://" in trimmed:
        trimmed = trimmed.split("://", 1)[1]
        trimmed = trimmed.split("/", 1)[1] if "/" in trimmed else trimmed
    elif ":" in trimmed:
        trimmed = trimmed.split(":", 1)[1]
    return trimmed
