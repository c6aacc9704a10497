import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum

from lxml import etree
from lxml import html as lxml_html

from challenge import assess
from config import SITE_MISMATCH_ERROR, TARGET_DOMAIN
from errors import (
    ChallengeFailure,
    ConfigError,
    HardChallengeBackoff,
    LoginFailure,
    NavigationError,
)
from events import NullEventSink
from field_rules import parse_field_rules, parse_raw_field_config, parse_urls, resolve_plan
from fingerprint import CHALLENGE_STREAK_LIMIT, FingerprintFactory, rotation_reason
from human import HumanSimulator
from models import PageSnapshot, ScrapeResult, utc_now
from storage import ResultAggregator

MIN_DOCUMENT_LENGTH = 100
ERROR_BACKOFF_S = 5.0
SHORT_CHALLENGE_WAIT_S = 10.0
CHECKBOX_SETTLE_S = (2.0, 4.0)
ROTATION_COOLDOWN_S = (2.0, 5.0)
MIN_PAUSE_S = 1.0
BEHAVIOR_SHARE = 0.6
MAX_BEHAVIOR_BUDGET_S = 10.0
WARMUP_BUDGET_S = (2.0, 5.0)

WARMUP_PAGES = (
    "https://www.cardmarket.com/en",
    "https://www.cardmarket.com/en/Magic",
    "https://www.cardmarket.com/en/Pokemon",
)

LOGIN_ENTRY_URL = "https://www.cardmarket.com/en/Magic"
LOGIN_CHALLENGE_WAIT_S = 15.0
LOGIN_SETTLE_S = 3.0
SIGN_IN_SELECTORS = (
    'a[href*="/Login"]',
    "#login-signup",
    'button[data-bs-toggle="dropdown"][aria-label*="Log"]',
)
LOGIN_XPATHS = {
    "username": "/html/body/header/nav[1]/ul/li/div/form/div[1]/div/input",
    "password": "/html/body/header/nav[1]/ul/li/div/form/div[2]/div/input",
    "submit": "/html/body/header/nav[1]/ul/li/div/form/input[3]",
}


class UrlState(str, Enum):
    LOADING = "loading"
    PAGE_READY = "page_ready"
    LOAD_ERROR = "load_error"
    CHALLENGE_CHECK = "challenge_check"
    CLEAN = "clean"
    CHALLENGE = "challenge"
    CHECKBOX_ATTEMPT = "checkbox_attempt"
    SHORT_WAIT = "short_wait"
    LONG_WAIT = "long_wait"
    HARD_BACKOFF = "hard_backoff"
    SESSION_ROTATE = "session_rotate"
    EXTRACT = "extract"
    DONE = "success"
    RETRY = "retry"
    FAILED = "error"


class Step(Enum):
    DONE = "done"
    RETRY = "retry"
    FAIL = "fail"


@dataclass(frozen=True)
class AttemptOutcome:
    step: Step
    result: ScrapeResult | None = None
    html: str | None = None
    error: str | None = None
    challenge_detected: bool = False
    backoff_s: float = 0.0


def next_step(outcome: AttemptOutcome, attempt: int, max_retries: int) -> Step:
    """Where the retry ladder goes after ``attempt`` (0-based)."""
    if outcome.step is Step.RETRY and attempt >= max_retries:
        return Step.FAIL
    return outcome.step


def _first_text(tree, expr: str, logger=None):
    try:
        found = tree.xpath(expr)
    except etree.XPathError as e:
        if logger:
            logger.debug(f"Bad xpath {expr!r}: {e}")
        return None
    if isinstance(found, list):
        if not found:
            return None
        found = found[0]
    if isinstance(found, str):
        text = str(found)
    elif hasattr(found, "text_content"):
        text = found.text_content()
    elif isinstance(found, bool):
        return None
    elif isinstance(found, float):
        text = str(int(found)) if found.is_integer() else str(found)
    else:
        text = getattr(found, "text", None) or ""
    return text.strip() or None


def extract_fields(html: str, fields, logger=None) -> dict:
    """Evaluate each field's XPath against ``html``; misses become None."""
    try:
        parser = lxml_html.HTMLParser(encoding="utf-8")
        # lone surrogates from JS string decoding cannot be encoded as-is
        tree = lxml_html.document_fromstring(html.encode("utf-8", errors="replace"), parser=parser)
    except (etree.ParserError, ValueError) as e:
        if logger:
            logger.warning(f"Could not parse snapshot: {e}")
        return {f.title: None for f in fields}
    return {f.title: _first_text(tree, f.xpath, logger) for f in fields}


class ScrapeOrchestrator:
    """Drives one browser session through the URL list, one URL at a time."""

    def __init__(
        self,
        cfg,
        backend_factory,
        logger,
        *,
        urls_text: str = "",
        fields_text: str = "",
        events=None,
        rng: random.Random | None = None,
        sleep=asyncio.sleep,
        profile_manager=None,
        tor=None,
        proxy: dict | None = None,
        user_agents=None,
        families=None,
    ):
        self.cfg = cfg
        self.backend_factory = backend_factory
        self.logger = logger
        self.events = events or NullEventSink()
        self.rng = rng or random.Random(cfg.seed)
        self._sleep = sleep
        self.profile_manager = profile_manager
        self.tor = tor
        self.proxy = proxy
        self.fingerprints = FingerprintFactory(logger, self.rng, user_agents, families)
        self.urls = parse_urls(urls_text)
        if cfg.auto_detect:
            self.rules = parse_raw_field_config(fields_text or cfg.raw_field_config, cfg.categories)
        else:
            self.rules = parse_field_rules(fields_text)
        self.aggregator = ResultAggregator(cfg.output_dir, logger)
        self.driver = None
        self.session = None
        self.human = None
        self._pending_rotation: str | None = None
        self._challenge_streak = 0
        self._stopped = False

    def log(self, message: str, level: int = logging.INFO):
        self.logger.log(level, message)
        self.events.emit("log", {"timestamp": utc_now(), "message": message})

    def _status(self, url: str | None, state: UrlState, **extra):
        self.events.emit("status", {"url": url, "status": state.value, **extra})

    def request_stop(self):
        self._stopped = True

    @property
    def results(self) -> list[ScrapeResult]:
        return self.aggregator.results

    # session lifecycle

    async def _open_session(self):
        profile = self.profile_manager.get_random_profile() if self.profile_manager else None
        session = self.fingerprints.create(profile)
        driver = self.backend_factory()
        try:
            await driver.create(session.options(self.proxy))
        except Exception:
            await driver.close()
            raise
        self.driver, self.session = driver, session
        self.human = HumanSimulator(driver, self.logger, self.rng, self._sleep, session.viewport)
        self.events.emit("status", {"url": None, "status": "session_open", "session": session.summary()})

    async def _close_session(self):
        if self.driver is None:
            return
        driver, self.driver = self.driver, None
        self.session = None
        self.human = None
        try:
            await driver.close()
        except Exception as e:
            self.logger.warning(f"[SESSION] close failed: {e}")

    async def _start_session(self):
        await self._open_session()
        if self.cfg.warmup:
            await self.warm_up()
        if self.cfg.has_credentials and not await self.login():
            self.log("Login failed, continuing anyway...", logging.WARNING)

    async def rotate_session(self, reason: str):
        self.log(f"[SESSION] rotating: {reason}")
        self._status(None, UrlState.SESSION_ROTATE, reason=reason)
        await self._close_session()
        await self._sleep(self.rng.uniform(*ROTATION_COOLDOWN_S))
        if self.tor is not None:
            await self.tor.new_identity()
        await self._start_session()

    def _schedule_rotation(self, reason: str):
        self._pending_rotation = reason

    async def _ensure_session(self):
        if self.driver is None:
            self._pending_rotation = None
            await self._start_session()
        elif self._pending_rotation:
            reason, self._pending_rotation = self._pending_rotation, None
            await self.rotate_session(reason)

    async def _wait_stable(self):
        try:
            await self.driver.wait_for_stable(self.cfg.stable_timeout_ms)
        except Exception as e:
            self.logger.debug(f"Paint stability wait ended early: {e}")

    async def warm_up(self):
        pages = self.rng.sample(WARMUP_PAGES, self.rng.randint(1, 2))
        for page in pages:
            self.log(f"[SESSION] warm-up visit {page}")
            try:
                await self.driver.navigate(page, self.cfg.page_load_timeout_ms)
                await self._wait_stable()
                await self.human.simulate_human_behavior(self.rng.uniform(*WARMUP_BUDGET_S))
            except Exception as e:
                self.log(f"[SESSION] warm-up stopped: {e}", logging.WARNING)
                return

    # login

    async def login(self) -> bool:
        try:
            await self._login()
        except LoginFailure as e:
            self.log(f"Login failed: {e}", logging.WARNING)
            return False
        except Exception as e:
            self.log(f"Login failed: {type(e).__name__}: {e}", logging.WARNING)
            return False
        self.log("Login done")
        return True

    async def _login(self):
        self.log(f"Logging in as {self.cfg.user}...")
        await self.driver.navigate(LOGIN_ENTRY_URL, self.cfg.page_load_timeout_ms)
        await self._wait_stable()
        verdict = assess(PageSnapshot(await self.driver.snapshot_html(), LOGIN_ENTRY_URL))
        if verdict.is_hard:
            raise LoginFailure("hard challenge on login page")
        if verdict.detected:
            self.log("[CHALLENGE] detected on login page, waiting...")
            await self._sleep(LOGIN_CHALLENGE_WAIT_S)
            if await self._recheck(LOGIN_ENTRY_URL) is None:
                raise LoginFailure("still blocked on login page")

        await self._open_sign_in()
        for name, value in (("username", self.cfg.user), ("password", self.cfg.password)):
            element = await self.driver.evaluate_xpath(LOGIN_XPATHS[name])
            if element is None:
                raise LoginFailure(f"can't find {name} field")
            if not await self.human.click_element(element):
                raise LoginFailure(f"{name} field is not visible")
            await self.human.type_like_human(value)
            await self._sleep(self.rng.uniform(0.3, 0.8))

        submit = await self.driver.evaluate_xpath(LOGIN_XPATHS["submit"])
        if submit is None or not await self.human.click_element(submit):
            raise LoginFailure("can't find submit button")
        await self._wait_stable()
        await self._sleep(LOGIN_SETTLE_S)

    async def _open_sign_in(self) -> bool:
        for selector in SIGN_IN_SELECTORS:
            element = await self.driver.query_css(selector)
            if element is not None and await self.human.click_element(element):
                await self._sleep(self.rng.uniform(0.5, 1.2))
                return True
        # the form is inline on some layouts
        return False

    # one URL

    async def _load(self, url: str) -> PageSnapshot:
        await self.driver.navigate(url, self.cfg.page_load_timeout_ms)
        self.session.urls_served += 1
        await self._wait_stable()
        html = await self.driver.snapshot_html()
        if not html or len(html) < MIN_DOCUMENT_LENGTH:
            raise NavigationError(f"Empty or truncated document ({len(html or '')} chars)")
        return PageSnapshot(html=html, url=url)

    async def _recheck(self, url: str) -> PageSnapshot | None:
        """Fresh snapshot if the page is now clean, else None."""
        snapshot = PageSnapshot(html=await self.driver.snapshot_html() or "", url=url)
        verdict = assess(snapshot)
        if verdict.is_hard:
            raise HardChallengeBackoff("Hard challenge (captcha) appeared during challenge wait")
        if verdict.detected or len(snapshot.html) < MIN_DOCUMENT_LENGTH:
            return None
        return snapshot

    async def _resolve_challenge(self, url: str) -> PageSnapshot:
        self._status(url, UrlState.CHECKBOX_ATTEMPT)
        if await self.human.try_click_challenge_checkbox():
            await self._sleep(self.rng.uniform(*CHECKBOX_SETTLE_S))
            snapshot = await self._recheck(url)
            if snapshot:
                self.log("[CHALLENGE] cleared after checkbox")
                return snapshot

        self._status(url, UrlState.SHORT_WAIT)
        self.log(f"[CHALLENGE] waiting {SHORT_CHALLENGE_WAIT_S:.0f}s...")
        await self._sleep(SHORT_CHALLENGE_WAIT_S)
        snapshot = await self._recheck(url)
        if snapshot:
            return snapshot

        self._status(url, UrlState.LONG_WAIT)
        self.log(f"[CHALLENGE] still blocked, waiting {self.cfg.challenge_wait_s:.0f}s more")
        await self._sleep(self.cfg.challenge_wait_s)
        snapshot = await self._recheck(url)
        if snapshot:
            return snapshot
        raise ChallengeFailure("Challenge did not clear")

    async def _load_and_extract(self, url, fields, category):
        self._status(url, UrlState.LOADING)
        snapshot = await self._load(url)
        self._status(url, UrlState.PAGE_READY)

        self._status(url, UrlState.CHALLENGE_CHECK)
        verdict = assess(snapshot)
        if verdict.is_hard:
            self.log("[CHALLENGE] captcha-class page, backing off", logging.WARNING)
            raise HardChallengeBackoff("Hard challenge (captcha) detected")
        if verdict.detected:
            self._status(url, UrlState.CHALLENGE, score=verdict.score, max_score=verdict.max_score)
            self.log(f"[CHALLENGE] detected ({verdict.score}/{verdict.max_score}, threshold {verdict.threshold})")
            snapshot = await self._resolve_challenge(url)
        self._status(url, UrlState.CLEAN)

        self._status(url, UrlState.EXTRACT)
        title = await self.driver.document_title()
        self.log(f"Extracting {len(fields)} field(s)")
        data = extract_fields(snapshot.html, fields, self.logger)
        for name, value in data.items():
            self.log(f"  {name}: {value if value is not None else '(empty)'}")
        result = ScrapeResult(
            url=url,
            success=True,
            extracted_data=data,
            title=title,
            challenge_detected=False,
            detected_category=category,
        )
        return result, snapshot.html

    async def _attempt(self, url, fields, category) -> AttemptOutcome:
        try:
            await self._ensure_session()
            result, html = await self._load_and_extract(url, fields, category)
        except HardChallengeBackoff as e:
            self._status(url, UrlState.HARD_BACKOFF)
            self._schedule_rotation(rotation_reason(self.session, hard_challenge=True))
            return AttemptOutcome(Step.RETRY, error=str(e), challenge_detected=True)
        except ChallengeFailure as e:
            self.log(f"[CHALLENGE] {e}", logging.WARNING)
            self._schedule_rotation("challenge did not clear")
            return AttemptOutcome(Step.RETRY, error=str(e), challenge_detected=True)
        except NavigationError as e:
            self._status(url, UrlState.LOAD_ERROR, error=str(e))
            self.log(f"Load failed: {e}", logging.WARNING)
            return AttemptOutcome(Step.RETRY, error=str(e), backoff_s=ERROR_BACKOFF_S)
        except Exception as e:
            self.log(f"Failed: {type(e).__name__}: {e}", logging.WARNING)
            return AttemptOutcome(Step.RETRY, error=f"{type(e).__name__}: {e}", backoff_s=ERROR_BACKOFF_S)
        return AttemptOutcome(Step.DONE, result=result, html=html)

    async def scrape_url(self, url, fields, category=None) -> ScrapeResult:
        challenge_seen = False
        error = None
        for attempt in range(self.cfg.max_retries + 1):
            if attempt:
                self.log(f"Retry {attempt}/{self.cfg.max_retries}")
            outcome = await self._attempt(url, fields, category)
            challenge_seen = challenge_seen or outcome.challenge_detected
            step = next_step(outcome, attempt, self.cfg.max_retries)
            if step is Step.DONE:
                self.aggregator.save_html(url, outcome.html)
                self._status(url, UrlState.DONE)
                self.log("Done")
                return outcome.result
            error = outcome.error
            if step is Step.FAIL:
                break
            self._status(url, UrlState.RETRY, error=error)
            if outcome.backoff_s:
                await self._sleep(outcome.backoff_s)
        self._status(url, UrlState.FAILED, error=error)
        self.log(f"Giving up on {url}: {error}", logging.WARNING)
        return ScrapeResult(
            url=url,
            success=False,
            error=error,
            challenge_detected=challenge_seen,
            detected_category=category,
        )

    # the run

    async def _check_rotation_triggers(self):
        if self._challenge_streak >= CHALLENGE_STREAK_LIMIT:
            self.log(
                f"{self._challenge_streak} challenges in a row, rotating and taking a "
                f"{self.cfg.streak_cooldown_s:.0f}s break"
            )
            self._schedule_rotation(rotation_reason(self.session, challenge_streak=self._challenge_streak))
            await self._sleep(self.cfg.streak_cooldown_s)
            self._challenge_streak = 0
            return
        reason = rotation_reason(self.session, urls_per_session=self.cfg.urls_per_session)
        if reason and not self._pending_rotation:
            self._schedule_rotation(reason)

    async def _pause_between_urls(self):
        delay = self.rng.uniform(self.cfg.min_delay_s, self.cfg.max_delay_s)
        delay += self.rng.uniform(-self.cfg.delay_jitter_s, self.cfg.delay_jitter_s)
        delay = max(MIN_PAUSE_S, delay)
        self.log(f"Waiting {delay:.1f}s")
        spent = 0.0
        if self.human is not None and self._pending_rotation is None:
            budget = min(delay * BEHAVIOR_SHARE, MAX_BEHAVIOR_BUDGET_S)
            spent = await self.human.simulate_human_behavior(budget)
        if delay - spent > 0:
            await self._sleep(delay - spent)

    def _record(self, result: ScrapeResult):
        self.aggregator.add(result)
        self.events.emit("result", result.to_dict())

    async def run(self) -> list[ScrapeResult]:
        if not self.urls:
            raise ConfigError("No URLs")
        if not self.cfg.auto_detect and not self.rules:
            raise ConfigError("No field rules defined")

        targets = [u for u in self.urls if TARGET_DOMAIN in u]
        skipped = len(self.urls) - len(targets)
        if skipped:
            self.log(f"Skipping {skipped} non-CardMarket URLs")
        self.log(f"Scraping {len(targets)} URLs")
        self.log("Mode: auto-detect" if self.cfg.auto_detect else f"Fields: {len(self.rules)}")
        self.log(f"Output: {self.cfg.output_dir}")
        self.events.emit("started", {
            "total_urls": len(targets),
            "field_count": "auto" if self.cfg.auto_detect else len(self.rules),
        })

        last_target = max((i for i, u in enumerate(self.urls) if TARGET_DOMAIN in u), default=-1)
        done = 0
        try:
            for index, url in enumerate(self.urls):
                if self._stopped:
                    self.log("Stopped by user")
                    break
                category, fields = resolve_plan(url, self.rules, self.cfg.auto_detect, self.cfg.categories)
                if TARGET_DOMAIN not in url:
                    self.log(f"Skipping: {url}")
                    self._record(ScrapeResult(
                        url=url, success=False, error=SITE_MISMATCH_ERROR, detected_category=category,
                    ))
                    continue

                done += 1
                self.log(f"[{done}/{len(targets)}] {url}")
                self.events.emit("progress", {"current": done, "total": len(targets), "url": url})
                if self.cfg.auto_detect:
                    self.log(
                        f"Category: {category} ({len(fields)} fields)" if category
                        else f"Unknown category, using {len(fields)} fallback fields"
                    )
                await self._check_rotation_triggers()

                result = await self.scrape_url(url, fields, category)
                self._record(result)
                self._challenge_streak = self._challenge_streak + 1 if result.challenge_detected else 0

                if index < last_target and not self._stopped:
                    await self._pause_between_urls()
        finally:
            await self._close_session()
            self.aggregator.persist(self.cfg.auto_detect)

        summary = self.aggregator.summary()
        self.events.emit("completed", summary.to_dict())
        self.log(f"Done: {summary.successful}/{summary.total_urls} ok")
        return list(self.aggregator.results)
