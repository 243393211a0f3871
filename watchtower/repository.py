"""
Collaborator interfaces for repository access and change publishing.

Watchtower never talks to a repository host directly; it is handed objects
satisfying these protocols. ``watchtower.github.GitHubRepository`` is the
production implementation.
"""

from typing import Dict, List, Optional, Protocol


class RepositoryAccessor(Protocol):
    """Read access to one repository's files."""

    owner: str
    repo: str

    def check_access(self) -> None:
        """Raise RepositoryAccessError if the repository cannot be read."""
        ...

    def fetch_file(self, path: str) -> Optional[str]:
        """Return the decoded file content, or None if the file does not exist."""
        ...


class ChangePublisher(Protocol):
    """Write access used to report and remediate matches."""

    def open_issue(self, title: str, body: str, labels: List[str]) -> str:
        """Open an issue and return its URL."""
        ...

    def open_change_request(
        self,
        branch: str,
        title: str,
        body: str,
        files: Dict[str, str],
    ) -> str:
        """Commit ``files`` (path -> content) to ``branch`` in one commit and open a pull request."""
        ...
