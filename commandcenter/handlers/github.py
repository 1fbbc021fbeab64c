# commandcenter/handlers/github.py
"""GitHub commit statistics, pulled over the REST API and stored as KPIs."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Any, Dict, List, Optional

import httpx

from commandcenter.common.exceptions import ConfigurationError
from commandcenter.common.records import KPI
from commandcenter.execution.registry import HandlerContext

logger = logging.getLogger(__name__)

ACTIVE_REPO_DAYS = 30
MAX_ACTIVE_REPOS = 10
USER_AGENT = "commandcenter"


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class GitHubStats:
    total_commits: int = 0
    today_commits: int = 0
    this_week_commits: int = 0
    active_repos: int = 0
    last_commit_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalCommits": self.total_commits,
            "todayCommits": self.today_commits,
            "thisWeekCommits": self.this_week_commits,
            "activeRepos": self.active_repos,
            "lastCommitTime": self.last_commit_time,
        }


class GitHubClient:
    """
    Thin async client for the endpoints the sync needs.

    Args:
        token: personal access token; required for every request
        username: commit author to count
        base_url: API root, overridable for GitHub Enterprise
        transport: optional httpx transport (tests pass a MockTransport)
    """

    def __init__(
        self,
        token: Optional[str],
        username: Optional[str],
        base_url: str = "https://api.github.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.username = username
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.token:
            raise ConfigurationError("GitHub token not configured")
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Authorization": f"token {self.token}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": USER_AGENT,
            },
        )

    async def _get(self, client: httpx.AsyncClient, path: str, params: Dict[str, Any]) -> Any:
        response = await client.get(path, params=params)
        response.raise_for_status()
        return response.json()

    async def get_user_repos(self, client: httpx.AsyncClient) -> List[Dict[str, Any]]:
        return await self._get(client, "/user/repos", {"sort": "updated", "per_page": 100})

    async def get_repo_commits(
        self, client: httpx.AsyncClient, full_name: str, since: datetime, author: str
    ) -> List[Dict[str, Any]]:
        params = {"author": author, "per_page": 100, "since": since.isoformat()}
        return await self._get(client, f"/repos/{full_name}/commits", params)

    async def get_stats(self, username: Optional[str] = None, now: Optional[datetime] = None) -> GitHubStats:
        """Commits by `username` over the last 7 days across the most recently active repos."""
        now = now or datetime.now(UTC)
        author = username or self.username
        if not author:
            raise ConfigurationError("GitHub username not configured")

        async with self._client() as client:
            repos = await self.get_user_repos(client)
            active = [
                repo
                for repo in repos
                if now - _parse_ts(repo["updated_at"]) <= timedelta(days=ACTIVE_REPO_DAYS)
            ]
            week_ago = now - timedelta(days=7)
            today = now.date()

            stats = GitHubStats(active_repos=len(active))
            for repo in active[:MAX_ACTIVE_REPOS]:
                commits = await self.get_repo_commits(client, repo["full_name"], week_ago, author)
                stats.this_week_commits += len(commits)
                for commit in commits:
                    authored = commit["commit"]["author"]["date"]
                    if _parse_ts(authored).astimezone(UTC).date() == today:
                        stats.today_commits += 1
                    if stats.last_commit_time is None or _parse_ts(authored) > _parse_ts(
                        stats.last_commit_time
                    ):
                        stats.last_commit_time = authored
            stats.total_commits = stats.this_week_commits

        logger.info(
            f"GitHub stats for {author}: {stats.this_week_commits} commits this week, "
            f"{stats.active_repos} active repos"
        )
        return stats


async def sync_github(payload: Dict[str, Any], ctx: HandlerContext) -> Dict[str, Any]:
    """Fetches commit stats and upserts the github.* KPIs on the owner project."""
    client: GitHubClient = ctx.service("github")
    now = ctx.clock()
    stats = await client.get_stats(username=payload.get("username"), now=now)

    owner = ctx.store.upsert_project(
        ctx.services.get("owner_project", "command-center"),
        description="Personal development and coding metrics",
    )
    kpis = {
        "github.commits.today": stats.today_commits,
        "github.commits.week": stats.this_week_commits,
        "github.repos.active": stats.active_repos,
    }
    for key, value in kpis.items():
        ctx.store.upsert_kpi(KPI(project_id=owner.id, key=key, value=value, at=now, source="github"))

    ctx.audit.log(
        actor="github-sync",
        action="github.sync.completed",
        payload={"stats": stats.to_dict(), "kpisUpdated": len(kpis)},
    )
    return stats.to_dict()
