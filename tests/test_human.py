import asyncio
import logging
import random

from conftest import RecordingSleep, StubBrowser
from human import STEP_DELAY_CAP_MS, HumanSimulator, bezier_path

LOGGER = logging.getLogger("cmscrape.test")


def _simulator(browser, seed=5):
    sleep = RecordingSleep()
    return HumanSimulator(browser(), LOGGER, random.Random(seed), sleep), sleep


def test_bezier_path_shape():
    for seed in range(20):
        path = bezier_path((100, 100), (900, 500), random.Random(seed))
        assert 8 <= len(path) <= 15
        x, y, _ = path[-1]
        assert (x, y) == (900, 500)
        assert all(0 < delay <= STEP_DELAY_CAP_MS for _, _, delay in path)


def test_bezier_path_is_slow_fast_slow():
    path = bezier_path((0, 0), (1000, 0), random.Random(2))
    delays = [d for _, _, d in path]
    middle = delays[len(delays) // 2 - 1]
    assert delays[-1] > middle


def test_bezier_path_deterministic_under_seed():
    a = bezier_path((10, 10), (300, 400), random.Random(42))
    b = bezier_path((10, 10), (300, 400), random.Random(42))
    assert a == b


def test_human_move_drives_pointer_and_tracks_position():
    browser = StubBrowser()
    sim, sleep = _simulator(browser)
    asyncio.run(sim.human_move((0, 0), (400, 300)))
    assert 8 <= len(browser.moves) <= 15
    assert browser.moves[-1] == (400, 300)
    assert sim.position == (400, 300)
    assert sleep.total == sim.spent


def test_simulation_skips_everything_when_budget_too_small():
    browser = StubBrowser()
    sim, sleep = _simulator(browser)
    spent = asyncio.run(sim.simulate_human_behavior(0.1))
    assert spent == 0
    assert browser.moves == [] and browser.scrolls == []
    assert sleep.calls == []


def test_simulation_does_some_activity_with_budget():
    browser = StubBrowser()
    browser.all_css = ["card"]
    browser.boxes = {"card": {"x": 100, "y": 200, "width": 300, "height": 80}}
    sim, sleep = _simulator(browser, seed=9)
    spent = asyncio.run(sim.simulate_human_behavior(30.0))
    assert spent > 0
    assert browser.moves or browser.scrolls
    assert abs(spent - sleep.total) < 1e-9


def test_checkbox_not_found_returns_false():
    browser = StubBrowser()
    sim, _ = _simulator(browser)
    assert asyncio.run(sim.try_click_challenge_checkbox()) is False
    assert browser.clicks == []


def test_checkbox_widget_is_clicked_inside_its_box():
    browser = StubBrowser()
    browser.css = {".cf-turnstile": "widget"}
    browser.boxes = {"widget": {"x": 500, "y": 300, "width": 300, "height": 65}}
    sim, _ = _simulator(browser)
    assert asyncio.run(sim.try_click_challenge_checkbox()) is True
    (x, y), = browser.clicks
    assert 500 < x < 800
    assert 300 < y < 365


def test_checkbox_xpath_fallback_with_zero_area_is_not_clicked():
    browser = StubBrowser()
    browser.xpaths = {"//input[@type='checkbox']": "box"}
    browser.boxes = {"box": {"x": 10, "y": 10, "width": 0, "height": 0}}
    sim, _ = _simulator(browser)
    assert asyncio.run(sim.try_click_challenge_checkbox()) is False
    assert browser.clicks == []


def test_type_like_human_types_each_character():
    browser = StubBrowser()
    sim, sleep = _simulator(browser)
    asyncio.run(sim.type_like_human("abc"))
    assert browser.typed == ["a", "b", "c"]
    assert len(sleep.calls) == 3
