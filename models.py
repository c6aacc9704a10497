from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class FieldRule:
    title: str
    xpath: str
    category_tags: frozenset = frozenset()
    is_any: bool = False
    is_sum: bool = False

    @property
    def is_universal(self) -> bool:
        return not self.category_tags and not self.is_any


@dataclass(frozen=True)
class PageSnapshot:
    html: str
    url: str


@dataclass(frozen=True)
class ChallengeVerdict:
    detected: bool
    score: int
    max_score: int
    threshold: int
    is_hard: bool = False


@dataclass(frozen=True)
class SessionOptions:
    """What the browser driver needs to open a context for one Session."""
    user_agent: str
    viewport: tuple[int, int]
    locale: str
    timezone_id: str
    tls_profile_id: str
    browser_family: str = "chrome"
    client_hints: Dict[str, str] = field(default_factory=dict)
    profile_path: Optional[str] = None
    proxy: Optional[dict] = None


@dataclass
class Session:
    user_agent: str
    locale: str
    timezone: str
    viewport: tuple[int, int]
    tls_profile_id: str
    browser_family: str
    browser_major: int
    os_token: str
    client_hints: Dict[str, str]
    uptime_hours: float
    profile_path: Optional[str] = None
    urls_served: int = 0

    def options(self, proxy: Optional[dict] = None) -> SessionOptions:
        return SessionOptions(
            user_agent=self.user_agent,
            viewport=self.viewport,
            locale=self.locale,
            timezone_id=self.timezone,
            tls_profile_id=self.tls_profile_id,
            browser_family=self.browser_family,
            client_hints=dict(self.client_hints),
            profile_path=self.profile_path,
            proxy=proxy,
        )

    def summary(self) -> dict:
        return {
            "user_agent": self.user_agent,
            "browser": f"{self.browser_family}/{self.browser_major}",
            "os": self.os_token,
            "locale": self.locale,
            "timezone": self.timezone,
            "viewport": self.viewport,
            "tls_profile": self.tls_profile_id,
            "uptime_hours": round(self.uptime_hours, 1),
            "profile": self.profile_path,
        }


@dataclass(frozen=True)
class ScrapeResult:
    url: str
    success: bool
    extracted_data: Dict[str, Optional[str]] = field(default_factory=dict)
    title: Optional[str] = None
    error: Optional[str] = None
    timestamp: str = field(default_factory=utc_now)
    challenge_detected: bool = False
    detected_category: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "success": self.success,
            "title": self.title,
            "error": self.error,
            "timestamp": self.timestamp,
            "challenge_detected": self.challenge_detected,
            "detected_category": self.detected_category,
            "extracted_data": dict(self.extracted_data),
        }


@dataclass(frozen=True)
class RunSummary:
    total_urls: int
    successful: int
    failed: int
    challenge_blocked: int
    skipped: int

    def to_dict(self) -> dict:
        return {
            "total_urls": self.total_urls,
            "successful": self.successful,
            "failed": self.failed,
            "challenge_blocked": self.challenge_blocked,
            "skipped": self.skipped,
        }
