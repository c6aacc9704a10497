import os
from dataclasses import dataclass, field

TARGET_DOMAIN = "cardmarket.com"
SITE_MISMATCH_ERROR = "Not a CardMarket URL"

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Magic",
    "Pokemon",
    "YuGiOh",
    "OnePiece",
    "Lorcana",
    "FleshAndBlood",
    "DragonBallSuper",
    "Digimon",
    "StarWarsUnlimited",
    "Battle-Spirits-Saga",
)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


@dataclass(frozen=True)
class ScrapeConfig:
    output_dir: str = "scraped_results"
    min_delay_s: float = 3.0
    max_delay_s: float = 8.0
    delay_jitter_s: float = 1.0
    page_load_timeout_ms: int = 60000
    stable_timeout_ms: int = 15000
    challenge_wait_s: float = 30.0
    max_retries: int = 3
    urls_per_session: int = 25
    streak_cooldown_s: float = 120.0
    user: str | None = None
    password: str | None = None
    auto_detect: bool = False
    categories: tuple[str, ...] = field(default_factory=lambda: DEFAULT_CATEGORIES)
    raw_field_config: str = ""
    engine: str = "playwright"
    headless: bool = False
    warmup: bool = True
    user_agents_file: str | None = None
    profiles_dir: str | None = None
    proxy_enabled: bool = False
    tor_socks_host: str = "127.0.0.1"
    tor_socks_port: int = 9050
    tor_control_port: int = 9051
    tor_control_password: str | None = None
    tor_rotation_min_interval_s: int = 10
    seed: int | None = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.user and self.password)

    @classmethod
    def from_env(cls) -> "ScrapeConfig":
        categories = os.getenv("SCRAPER_CATEGORIES")
        seed = os.getenv("SCRAPER_SEED")
        return cls(
            output_dir=os.getenv("SCRAPER_OUTPUT", "scraped_results"),
            min_delay_s=_env_float("SCRAPER_MIN_DELAY_S", 3.0),
            max_delay_s=_env_float("SCRAPER_MAX_DELAY_S", 8.0),
            delay_jitter_s=_env_float("SCRAPER_JITTER_S", 1.0),
            page_load_timeout_ms=_env_int("SCRAPER_TIMEOUT_MS", 60000),
            stable_timeout_ms=_env_int("SCRAPER_STABLE_TIMEOUT_MS", 15000),
            challenge_wait_s=_env_float("SCRAPER_CHALLENGE_WAIT_S", 30.0),
            max_retries=_env_int("SCRAPER_MAX_RETRIES", 3),
            urls_per_session=_env_int("SCRAPER_URLS_PER_SESSION", 25),
            streak_cooldown_s=_env_float("SCRAPER_STREAK_COOLDOWN_S", 120.0),
            user=os.getenv("CARDMARKET_USER") or None,
            password=os.getenv("CARDMARKET_PASS") or None,
            auto_detect=_env_bool("SCRAPER_AUTO_DETECT", "0"),
            categories=(
                tuple(c.strip() for c in categories.split(",") if c.strip())
                if categories
                else DEFAULT_CATEGORIES
            ),
            engine=os.getenv("SCRAPER_ENGINE", "playwright"),
            headless=_env_bool("SCRAPER_HEADLESS", "0"),
            warmup=_env_bool("SCRAPER_WARMUP", "1"),
            user_agents_file=os.getenv("SCRAPER_UA_FILE") or None,
            profiles_dir=os.getenv("SCRAPER_PROFILES_DIR") or None,
            proxy_enabled=_env_bool("SCRAPER_PROXY", "0"),
            tor_socks_host=os.getenv("TOR_SOCKS_HOST", "127.0.0.1"),
            tor_socks_port=_env_int("TOR_SOCKS_PORT", 9050),
            tor_control_port=_env_int("TOR_CONTROL_PORT", 9051),
            tor_control_password=os.getenv("TOR_CONTROL_PASSWORD"),
            tor_rotation_min_interval_s=_env_int("TOR_ROTATE_MIN_S", 10),
            seed=int(seed) if seed else None,
        )
