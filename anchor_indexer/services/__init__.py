"""Crawl sessions: check-ins and follows."""

from anchor_indexer.services.checkin_crawler import CheckinCrawler, CrawlSessionResult
from anchor_indexer.services.follow_crawler import FollowCrawler, FollowSessionResult

__all__ = [
    "CheckinCrawler",
    "CrawlSessionResult",
    "FollowCrawler",
    "FollowSessionResult",
]
