"""Data models for the tracked-repo registry."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class TrackedRepo:
    """A repo the crawler watches.

    ``did`` is globally unique and immutable. Crawl timestamps advance on
    every pass, successful or not.
    """

    did: str
    handle: str
    hosting_server_url: str
    registered_at: datetime | None = None
    last_checkin_crawl_at: datetime | None = None
    last_follow_crawl_at: datetime | None = None


@dataclass
class HostingServerRef:
    """A hosting server with the number of tracked repos living on it.

    Derived from ``TrackedRepo`` rows; deleted once the count reaches zero.
    """

    server_url: str
    tracked_repo_count: int
    last_crawled_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class RegistryStats:
    """Summary counts for operators."""

    total_repos: int = 0
    total_servers: int = 0
    recently_crawled: int = 0
