"""Crawl data model: pages, navigation steps and crawl sessions."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvalidTransitionError(Exception):
    """Raised when a crawl session is moved along an edge the state machine lacks."""
    pass


class CrawlStatus(str, Enum):
    """Crawl session status."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CrawlStatus.COMPLETED, CrawlStatus.FAILED)


_TRANSITIONS = {
    CrawlStatus.PENDING: {CrawlStatus.IN_PROGRESS, CrawlStatus.FAILED},
    CrawlStatus.IN_PROGRESS: {CrawlStatus.COMPLETED, CrawlStatus.FAILED},
    CrawlStatus.COMPLETED: set(),
    CrawlStatus.FAILED: set(),
}


@dataclass(frozen=True)
class Page:
    """A successfully extracted page."""
    url: str
    title: str
    content: str
    headings: Tuple[str, ...] = ()


@dataclass
class NavigationStep:
    """One frontier pop, whether or not extraction succeeded."""
    url: str
    depth: int
    parent_url: Optional[str] = None
    link_text: Optional[str] = None
    visited_at: datetime = field(default_factory=utcnow)
    scraped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "depth": self.depth,
            "parent_url": self.parent_url,
            "link_text": self.link_text,
            "visited_at": self.visited_at.isoformat(),
            "scraped": self.scraped,
        }


@dataclass
class CrawlResult:
    """Pages and navigation steps produced by one crawl."""
    pages: List[Page] = field(default_factory=list)
    steps: List[NavigationStep] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed_steps(self) -> int:
        return sum(1 for step in self.steps if not step.scraped)


@dataclass
class CrawlSession:
    """One crawl invocation: pending -> in_progress -> completed | failed."""
    id: Optional[int] = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    status: CrawlStatus = CrawlStatus.PENDING
    pages_scraped: int = 0
    error: Optional[str] = None

    def transition(self, status: CrawlStatus, error: Optional[str] = None) -> None:
        """Move to ``status``; terminal states are final."""
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Crawl session {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        if status.is_terminal:
            self.completed_at = utcnow()
            self.error = error

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "status": self.status.value,
            "pages_scraped": self.pages_scraped,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }
