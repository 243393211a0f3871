"""
GitHub REST API client.

Implements both ``RepositoryAccessor`` and ``ChangePublisher`` for a single
repository using a plain token. Change requests are built with the Git data
API: blobs, a tree on top of the default branch head, a commit, and a pull
request from a dedicated branch.

API Documentation: https://docs.github.com/en/rest
"""

import base64
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
import backoff
import structlog
from ratelimit import limits, sleep_and_retry

from .exceptions import RepositoryAccessError

logger = structlog.get_logger(__name__)


class GitHubRepository:
    """
    Client for one GitHub repository.

    All calls are synchronous; the coordinator runs them in worker threads.
    """

    DEFAULT_API_URL = "https://api.github.com"

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            owner: Repository owner (user or organization login).
            repo: Repository name.
            token: GitHub token with contents, issues and pull-request scopes.
            api_url: REST API base URL, for GitHub Enterprise.
            timeout: Per-request timeout in seconds.
            session: Optional pre-built session.
        """
        self.owner = owner
        self.repo = repo
        self.api_url = (api_url or self.DEFAULT_API_URL).rstrip("/")
        self.timeout = timeout
        self._default_branch: Optional[str] = None
        self.logger = logger.bind(repo=f"{owner}/{repo}")

        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": "Watchtower-Threat-Core/1.0",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    @sleep_and_retry
    @limits(calls=100, period=60)
    @backoff.on_exception(
        backoff.expo,
        (requests.ConnectionError, requests.Timeout),
        max_tries=3,
        max_time=120
    )
    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """
        Make a rate-limited request against the REST API.

        Connection failures and timeouts are retried; HTTP error statuses are
        returned to the caller.
        """
        url = f"{self.api_url}{path}"
        self.logger.debug("github_request", method=method, path=path)
        return self.session.request(method, url, timeout=self.timeout, **kwargs)

    def _json(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = self._request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    def check_access(self) -> None:
        """
        Verify the repository exists and the token can read it.

        Raises:
            RepositoryAccessError: On 401, 403, 404 or any request failure.
        """
        try:
            response = self._request("GET", self.repo_path)
        except requests.RequestException as e:
            raise RepositoryAccessError(f"cannot reach {self.owner}/{self.repo}: {e}") from e

        if response.status_code in (401, 403, 404):
            raise RepositoryAccessError(
                f"access to {self.owner}/{self.repo} denied (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise RepositoryAccessError(
                f"unexpected response for {self.owner}/{self.repo} (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        self._default_branch = response.json().get("default_branch") or self._default_branch
        self.logger.info("repository_access_verified", default_branch=self._default_branch)

    def fetch_file(self, path: str) -> Optional[str]:
        """
        Read a file from the default branch.

        Returns:
            Decoded file content, or None if the file does not exist.

        Raises:
            RepositoryAccessError: If the file exists but cannot be read.
        """
        try:
            response = self._request("GET", f"{self.repo_path}/contents/{quote(path)}")
        except requests.RequestException as e:
            raise RepositoryAccessError(f"failed to fetch {path}: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise RepositoryAccessError(
                f"failed to fetch {path} (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            if not isinstance(data, dict) or data.get("type") != "file":
                return None
            return base64.b64decode(data.get("content") or "").decode("utf-8")
        except ValueError as e:
            # covers JSON, base64 and UTF-8 decode errors
            raise RepositoryAccessError(f"failed to decode {path}: {e}") from e

    def default_branch(self) -> str:
        """Name of the repository's default branch, fetched once."""
        if not self._default_branch:
            self._default_branch = self._json("GET", self.repo_path).get("default_branch") or "main"
        return self._default_branch

    def open_issue(self, title: str, body: str, labels: List[str]) -> str:
        """Open an issue and return its URL."""
        data = self._json(
            "POST",
            f"{self.repo_path}/issues",
            json={"title": title, "body": body, "labels": labels},
        )
        self.logger.info("issue_opened", number=data.get("number"), title=title)
        return data.get("html_url", "")

    def _point_branch(self, branch: str, sha: str) -> None:
        """Create ``branch`` at ``sha``, force-moving it if it already exists."""
        response = self._request(
            "POST",
            f"{self.repo_path}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        if response.status_code == 422:
            self.logger.info("branch_exists_force_updating", branch=branch)
            self._json(
                "PATCH",
                f"{self.repo_path}/git/refs/heads/{branch}",
                json={"sha": sha, "force": True},
            )
            return
        response.raise_for_status()

    def open_change_request(
        self,
        branch: str,
        title: str,
        body: str,
        files: Dict[str, str],
    ) -> str:
        """
        Commit ``files`` to ``branch`` on top of the default branch and open a pull request.

        Args:
            branch: Branch to create or reset.
            title: Pull request title, also used as the commit message.
            body: Pull request body.
            files: Mapping of repository path to full new file content.

        Returns:
            URL of the opened pull request.
        """
        base = self.default_branch()
        head = self._json("GET", f"{self.repo_path}/git/ref/heads/{base}")
        base_sha = head["object"]["sha"]

        self._point_branch(branch, base_sha)

        base_commit = self._json("GET", f"{self.repo_path}/git/commits/{base_sha}")

        tree = []
        for path, content in files.items():
            blob = self._json(
                "POST",
                f"{self.repo_path}/git/blobs",
                json={"content": content, "encoding": "utf-8"},
            )
            tree.append({"path": path, "mode": "100644", "type": "blob", "sha": blob["sha"]})

        new_tree = self._json(
            "POST",
            f"{self.repo_path}/git/trees",
            json={"base_tree": base_commit["tree"]["sha"], "tree": tree},
        )
        commit = self._json(
            "POST",
            f"{self.repo_path}/git/commits",
            json={"message": title, "tree": new_tree["sha"], "parents": [base_sha]},
        )
        self._json(
            "PATCH",
            f"{self.repo_path}/git/refs/heads/{branch}",
            json={"sha": commit["sha"], "force": True},
        )

        pull = self._json(
            "POST",
            f"{self.repo_path}/pulls",
            json={"title": title, "body": body, "head": branch, "base": base},
        )
        self.logger.info(
            "change_request_opened",
            number=pull.get("number"),
            branch=branch,
            files=len(files),
        )
        return pull.get("html_url", "")

    def close(self):
        """Close the HTTP session."""
        self.session.close()
