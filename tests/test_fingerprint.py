import asyncio
import logging
import random

import pytest

from backend_playwright import PlaywrightBackend
from backend_selenium import SeleniumBackend
from errors import ConfigError
from fingerprint import (
    BASE_VIEWPORT,
    FALLBACK_USER_AGENTS,
    TIMEZONES_BY_LOCALE,
    VIEWPORT_JITTER,
    FingerprintFactory,
    compatible_user_agents,
    load_user_agents,
    parse_browser,
    parse_os,
    rotation_reason,
)
from models import Session

LOGGER = logging.getLogger("cmscrape.test")


@pytest.mark.parametrize("ua, expected", [
    ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36", ("chrome", 128)),
    ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36 Edg/127.0.0.0", ("edge", 127)),
    ("Mozilla/5.0 (X11; Linux x86_64; rv:129.0) Gecko/20100101 Firefox/129.0", ("firefox", 129)),
    ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15", ("safari", 17)),
    ("curl/8.0", ("chrome", 124)),
])
def test_parse_browser(ua, expected):
    assert parse_browser(ua) == expected


def test_parse_os():
    assert parse_os(FALLBACK_USER_AGENTS[0]) == "Windows"
    assert parse_os(FALLBACK_USER_AGENTS[2]) == "macOS"
    assert parse_os("Mozilla/5.0 (X11; Linux x86_64)") == "Linux"


def test_created_sessions_are_internally_consistent():
    factory = FingerprintFactory(LOGGER, random.Random(3))
    for _ in range(50):
        s = factory.create()
        family, major = parse_browser(s.user_agent)
        assert (s.browser_family, s.browser_major) == (family, major)
        assert s.tls_profile_id == f"{family}-{major}"
        assert s.os_token == parse_os(s.user_agent)
        if family in ("chrome", "edge", "opera"):
            assert f'v="{major}"' in s.client_hints["sec-ch-ua"]
            assert s.client_hints["sec-ch-ua-platform"] == f'"{s.os_token}"'
        else:
            assert s.client_hints == {}
        assert s.timezone in TIMEZONES_BY_LOCALE[s.locale]
        assert abs(s.viewport[0] - BASE_VIEWPORT[0]) <= VIEWPORT_JITTER
        assert abs(s.viewport[1] - BASE_VIEWPORT[1]) <= VIEWPORT_JITTER
        assert s.uptime_hours >= 1.0
        assert s.urls_served == 0


def test_same_seed_gives_same_identity():
    a = FingerprintFactory(LOGGER, random.Random(11)).create()
    b = FingerprintFactory(LOGGER, random.Random(11)).create()
    assert a.summary() == b.summary()


def test_session_options_carry_the_fingerprint():
    s = FingerprintFactory(LOGGER, random.Random(1)).create(profile_path="/tmp/p1")
    opts = s.options(proxy={"server": "socks5://127.0.0.1:9050"})
    assert opts.user_agent == s.user_agent
    assert opts.timezone_id == s.timezone
    assert opts.tls_profile_id == s.tls_profile_id
    assert opts.profile_path == "/tmp/p1"
    assert opts.proxy["server"].startswith("socks5://")


def test_load_user_agents_from_file(tmp_path):
    path = tmp_path / "ua.txt"
    path.write_text("# comment\nAgent/1.0\n\nAgent/2.0\n", encoding="utf-8")
    assert load_user_agents(str(path)) == ("Agent/1.0", "Agent/2.0")


def test_load_user_agents_falls_back(tmp_path):
    assert load_user_agents(None) == FALLBACK_USER_AGENTS
    assert load_user_agents(str(tmp_path / "missing.txt"), LOGGER) == FALLBACK_USER_AGENTS
    empty = tmp_path / "empty.txt"
    empty.write_text("# nothing\n", encoding="utf-8")
    assert load_user_agents(str(empty)) == FALLBACK_USER_AGENTS


def _session(served):
    s = FingerprintFactory(LOGGER, random.Random(0)).create()
    s.urls_served = served
    return s


def test_rotation_reasons():
    assert rotation_reason(_session(0), hard_challenge=True) == "hard challenge"
    assert rotation_reason(_session(0), challenge_streak=3) == "3 challenges in a row"
    assert rotation_reason(_session(10), urls_per_session=10) == "10 URLs served"
    assert rotation_reason(_session(9), urls_per_session=10) is None
    assert rotation_reason(_session(50), urls_per_session=0) is None
    assert rotation_reason(None, challenge_streak=2) is None
    assert isinstance(_session(0), Session)


SAFARI_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15"
)


def test_selenium_sessions_never_claim_safari():
    factory = FingerprintFactory(
        LOGGER, random.Random(2), [SAFARI_UA, FALLBACK_USER_AGENTS[0]], SeleniumBackend.SUPPORTED_FAMILIES
    )
    families = {factory.create().browser_family for _ in range(20)}
    assert families == {"chrome"}


def test_playwright_keeps_safari_on_webkit():
    assert compatible_user_agents([SAFARI_UA], PlaywrightBackend.SUPPORTED_FAMILIES) == (SAFARI_UA,)


def test_only_incompatible_agents_fall_back_to_builtin_list():
    kept = compatible_user_agents([SAFARI_UA], SeleniumBackend.SUPPORTED_FAMILIES, LOGGER)
    assert kept
    assert all(parse_browser(ua)[0] in SeleniumBackend.SUPPORTED_FAMILIES for ua in kept)


def test_selenium_refuses_a_safari_fingerprint():
    session = FingerprintFactory(LOGGER, random.Random(0), [SAFARI_UA]).create()
    backend = SeleniumBackend(LOGGER)
    with pytest.raises(ConfigError):
        asyncio.run(backend.create(session.options()))
    assert backend.driver is None
