import random
import re
from pathlib import Path

from models import Session

FALLBACK_USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36 Edg/128.0.0.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:129.0) Gecko/20100101 Firefox/129.0",
)

LOCALES = ("en-US", "en-GB", "fr-FR", "de-DE", "es-ES", "it-IT")

TIMEZONES_BY_LOCALE = {
    "en-US": ("America/New_York", "America/Chicago", "America/Denver", "America/Los_Angeles"),
    "en-GB": ("Europe/London",),
    "fr-FR": ("Europe/Paris",),
    "de-DE": ("Europe/Berlin", "Europe/Vienna"),
    "es-ES": ("Europe/Madrid",),
    "it-IT": ("Europe/Rome",),
}

BASE_VIEWPORT = (1920, 1080)
VIEWPORT_JITTER = 12
UPTIME_HOURS = (1.0, 72.0)

DEFAULT_BROWSER = ("chrome", 124)
CHALLENGE_STREAK_LIMIT = 3

# Order matters: Edge and Opera UAs also carry a Chrome token.
_BROWSER_PATTERNS = (
    ("edge", re.compile(r"Edg/(\d+)")),
    ("opera", re.compile(r"OPR/(\d+)")),
    ("firefox", re.compile(r"Firefox/(\d+)")),
    ("chrome", re.compile(r"Chrome/(\d+)")),
    ("safari", re.compile(r"Version/(\d+)[\d.]* .*Safari/")),
)

_CHROMIUM_BRANDS = {
    "chrome": "Google Chrome",
    "edge": "Microsoft Edge",
    "opera": "Opera",
}


def load_user_agents(path: str | None, logger=None) -> tuple[str, ...]:
    if not path:
        return FALLBACK_USER_AGENTS
    p = Path(path)
    try:
        lines = p.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        if logger:
            logger.warning(f"[SESSION] UA file unreadable ({e}); using built-in list")
        return FALLBACK_USER_AGENTS
    agents = tuple(ln.strip() for ln in lines if ln.strip() and not ln.strip().startswith("#"))
    return agents or FALLBACK_USER_AGENTS


def parse_browser(user_agent: str) -> tuple[str, int]:
    for family, pattern in _BROWSER_PATTERNS:
        m = pattern.search(user_agent or "")
        if m:
            return family, int(m.group(1))
    return DEFAULT_BROWSER


def parse_os(user_agent: str) -> str:
    ua = user_agent or ""
    if "Windows" in ua:
        return "Windows"
    if "Android" in ua:
        return "Android"
    if "iPhone" in ua or "iPad" in ua:
        return "iOS"
    if "Mac OS X" in ua or "Macintosh" in ua:
        return "macOS"
    if "Linux" in ua or "X11" in ua:
        return "Linux"
    return "Windows"


def client_hints(family: str, major: int, os_token: str) -> dict[str, str]:
    """Sec-CH-UA headers a real browser of this family would send.

    Only Chromium browsers send client hints, so other families get none.
    """
    brand = _CHROMIUM_BRANDS.get(family)
    if brand is None:
        return {}
    mobile = os_token in ("Android", "iOS")
    return {
        "sec-ch-ua": f'"{brand}";v="{major}", "Chromium";v="{major}", "Not;A=Brand";v="24"',
        "sec-ch-ua-mobile": "?1" if mobile else "?0",
        "sec-ch-ua-platform": f'"{os_token}"',
    }


def tls_profile_id(family: str, major: int) -> str:
    return f"{family}-{major}"


def rotation_reason(
    session: Session | None,
    *,
    hard_challenge: bool = False,
    challenge_streak: int = 0,
    urls_per_session: int = 0,
) -> str | None:
    if hard_challenge:
        return "hard challenge"
    if challenge_streak >= CHALLENGE_STREAK_LIMIT:
        return f"{challenge_streak} challenges in a row"
    if session is not None and urls_per_session > 0 and session.urls_served >= urls_per_session:
        return f"{session.urls_served} URLs served"
    return None


def compatible_user_agents(user_agents, families=None, logger=None) -> tuple[str, ...]:
    """Drop UAs whose browser family the engine cannot present truthfully."""
    if not families:
        return tuple(user_agents)
    kept = tuple(ua for ua in user_agents if parse_browser(ua)[0] in families)
    if len(kept) < len(user_agents) and logger:
        logger.warning(
            f"[SESSION] ignoring {len(user_agents) - len(kept)} user agent(s) outside {sorted(families)}"
        )
    if kept:
        return kept
    return tuple(ua for ua in FALLBACK_USER_AGENTS if parse_browser(ua)[0] in families) or FALLBACK_USER_AGENTS


class FingerprintFactory:
    """Builds a fresh, self-consistent browser identity per Session."""

    def __init__(self, logger, rng: random.Random | None = None, user_agents=None, families=None):
        self.logger = logger
        self.rng = rng or random.Random()
        self.user_agents = compatible_user_agents(
            tuple(user_agents) if user_agents else FALLBACK_USER_AGENTS, families, logger
        )

    def create(self, profile_path: str | None = None) -> Session:
        rng = self.rng
        user_agent = rng.choice(self.user_agents)
        family, major = parse_browser(user_agent)
        os_token = parse_os(user_agent)
        locale = rng.choice(LOCALES)
        timezone = rng.choice(TIMEZONES_BY_LOCALE.get(locale, TIMEZONES_BY_LOCALE["en-US"]))
        viewport = (
            BASE_VIEWPORT[0] + rng.randint(-VIEWPORT_JITTER, VIEWPORT_JITTER),
            BASE_VIEWPORT[1] + rng.randint(-VIEWPORT_JITTER, VIEWPORT_JITTER),
        )
        session = Session(
            user_agent=user_agent,
            locale=locale,
            timezone=timezone,
            viewport=viewport,
            tls_profile_id=tls_profile_id(family, major),
            browser_family=family,
            browser_major=major,
            os_token=os_token,
            client_hints=client_hints(family, major, os_token),
            uptime_hours=rng.uniform(*UPTIME_HOURS),
            profile_path=profile_path,
        )
        self.logger.info(f"[SESSION] Fingerprint: {session.summary()}")
        return session
