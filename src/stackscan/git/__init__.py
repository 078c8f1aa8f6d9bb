"""Git repository cloning into the workspace."""

from stackscan.git.clone import CloneResult, GitCommandError, RepoCloner

__all__ = ["CloneResult", "GitCommandError", "RepoCloner"]
