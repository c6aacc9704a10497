import dataclasses
import logging

import pytest

from backend_base import BrowserBackend
from config import ScrapeConfig

FILLER = "<p>Near mint, English, first edition. Ships from Germany.</p>" * 4

CLEAN_HTML = (
    "<html><head><title>Black Lotus | Cardmarket</title></head><body>"
    "<h1>Black Lotus</h1><div class=\"price\">  12,00 €  </div>"
    "<span id=\"quote\">He said \"mint\"</span>"
    + FILLER
    + "</body></html>"
)

CHALLENGE_HTML = (
    "<html><head><title>Just a moment...</title></head><body>"
    "<h2>Verifying you are human. This may take a few seconds.</h2>"
    "<script src=\"/cdn-cgi/challenge-platform/h/b/orchestrate/chl_page/v1\"></script>"
    "<script>window._cf_chl_opt={cType: 'managed'};</script>"
    "</body></html>"
)

HARD_HTML = (
    "<html><head><title>Security check</title></head><body>"
    "<div class=\"h-captcha\" data-sitekey=\"10000000-ffff\"></div>"
    "<p>Please solve the hCaptcha below to continue to the site.</p>"
    + FILLER
    + "</body></html>"
)


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)

    @property
    def total(self):
        return sum(self.calls)


class StubDriver(BrowserBackend):
    def __init__(self, browser):
        self.browser = browser
        self.options = None
        self.closed = False

    async def create(self, options):
        self.options = options
        self.browser.created.append(options)

    async def navigate(self, url, timeout_ms):
        self.browser.navigations.append(url)
        if self.browser.navigate_error:
            raise self.browser.navigate_error

    async def wait_for_stable(self, timeout_ms):
        return None

    async def snapshot_html(self):
        if self.browser.snapshots:
            return self.browser.snapshots.pop(0)
        return self.browser.default_html

    async def document_title(self):
        return self.browser.title

    async def evaluate_xpath(self, expr):
        return self.browser.xpaths.get(expr)

    async def query_css(self, selector):
        return self.browser.css.get(selector)

    async def query_all_css(self, selector):
        return list(self.browser.all_css)

    async def bounding_box(self, element):
        return self.browser.boxes.get(element)

    async def pointer_move(self, x, y):
        self.browser.moves.append((x, y))

    async def pointer_click(self, x, y):
        self.browser.clicks.append((x, y))

    async def type_text(self, text):
        self.browser.typed.append(text)

    async def scroll(self, delta_y):
        self.browser.scrolls.append(delta_y)

    async def close(self):
        self.closed = True
        self.browser.closed += 1


class StubBrowser:
    """Backend factory whose drivers share one scripted page sequence."""

    def __init__(self, snapshots=None, default_html=CLEAN_HTML, title="Black Lotus | Cardmarket"):
        self.snapshots = list(snapshots or [])
        self.default_html = default_html
        self.title = title
        self.navigate_error = None
        self.xpaths = {}
        self.css = {}
        self.all_css = []
        self.boxes = {}
        self.created = []
        self.navigations = []
        self.moves = []
        self.clicks = []
        self.typed = []
        self.scrolls = []
        self.closed = 0
        self.drivers = []

    def __call__(self):
        driver = StubDriver(self)
        self.drivers.append(driver)
        return driver


@pytest.fixture
def logger():
    return logging.getLogger("cmscrape.test")


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides):
        base = ScrapeConfig(
            output_dir=str(tmp_path / "out"),
            warmup=False,
            max_retries=2,
            min_delay_s=0.0,
            max_delay_s=0.0,
            delay_jitter_s=0.0,
            seed=7,
        )
        return dataclasses.replace(base, **overrides)
    return _make
