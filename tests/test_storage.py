import csv
import json
import logging

from config import SITE_MISMATCH_ERROR
from models import ScrapeResult
from storage import CSV_NAME, SUMMARY_NAME, ResultAggregator, sanitize_filename

LOGGER = logging.getLogger("cmscrape.test")


def _results():
    return [
        ScrapeResult(
            url="https://www.cardmarket.com/en/Magic/Products/Singles/Alpha/Black-Lotus",
            success=True,
            extracted_data={"Name": "Black Lotus", "Note": 'He said "mint", twice'},
            title="Black Lotus",
            detected_category="Magic",
        ),
        ScrapeResult(
            url="https://www.cardmarket.com/en/Pokemon/Products/1",
            success=False,
            error="Hard challenge (captcha) detected",
            challenge_detected=True,
        ),
        ScrapeResult(url="https://example.com/x", success=False, error=SITE_MISMATCH_ERROR),
        ScrapeResult(
            url="https://www.cardmarket.com/en/Pokemon/Products/2",
            success=True,
            extracted_data={"Name": None, "Price": "3,50 €"},
        ),
    ]


def test_sanitize_filename():
    assert sanitize_filename("https://www.cardmarket.com/en/Magic?x=1") == "www_cardmarket_com_en_Magic_x_1"
    assert len(sanitize_filename("https://a.com/" + "x" * 300)) == 100


def test_csv_round_trip(tmp_path):
    agg = ResultAggregator(str(tmp_path), LOGGER)
    for r in _results():
        agg.add(r)
    path = agg.save_csv()

    raw = path.read_text(encoding="utf-8")
    assert '"He said ""mint"", twice"' in raw
    assert raw.splitlines()[0] == '"url","detected_category","Name","Note","Price"'

    with path.open(encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 4
    for row, result in zip(rows, _results()):
        assert row["url"] == result.url
        for title in ("Name", "Note", "Price"):
            assert row[title] == (result.extracted_data.get(title) or "")
    assert rows[0]["detected_category"] == "Magic"
    assert rows[1]["detected_category"] == ""


def test_summary_counts():
    agg = ResultAggregator("unused", LOGGER)
    for r in _results():
        agg.add(r)
    s = agg.summary()
    assert (s.total_urls, s.successful, s.failed) == (4, 2, 2)
    assert s.challenge_blocked == 1
    assert s.skipped == 1


def test_json_summary_has_metadata_only(tmp_path):
    agg = ResultAggregator(str(tmp_path), LOGGER)
    for r in _results():
        agg.add(r)
    agg.save_json(auto_detect=True)
    payload = json.loads((tmp_path / SUMMARY_NAME).read_text(encoding="utf-8"))
    assert payload["successful"] == 2
    assert payload["auto_detect_mode"] is True
    assert len(payload["results"]) == 4
    assert "html" not in payload["results"][0]
    assert payload["results"][1]["error"].startswith("Hard challenge")


def test_save_html_uses_sanitized_name(tmp_path):
    agg = ResultAggregator(str(tmp_path / "out"), LOGGER)
    path = agg.save_html("https://www.cardmarket.com/en/Magic", "<html></html>")
    assert path.name == "www_cardmarket_com_en_Magic.html"
    assert path.read_text(encoding="utf-8") == "<html></html>"


def test_write_failures_are_logged_not_raised(tmp_path, caplog):
    blocker = tmp_path / "taken"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    agg = ResultAggregator(str(blocker), LOGGER)
    agg.add(_results()[0])
    with caplog.at_level(logging.ERROR, logger="cmscrape.test"):
        agg.persist()
        assert agg.save_html("https://www.cardmarket.com/en", "<html/>") is None
    assert (tmp_path / "taken").read_text(encoding="utf-8") == "a file, not a directory"
    assert len([r for r in caplog.records if r.levelno == logging.ERROR]) == 3


def test_long_urls_sharing_a_prefix_keep_separate_snapshots(tmp_path):
    agg = ResultAggregator(str(tmp_path), LOGGER)
    base = "https://www.cardmarket.com/en/Magic/Products/Singles/" + "x" * 120
    first = agg.save_html(base + "?page=1", "<html>1</html>")
    second = agg.save_html(base + "?page=2", "<html>2</html>")
    again = agg.save_html(base + "?page=1", "<html>1b</html>")
    assert first != second
    assert again == first
    assert second.read_text(encoding="utf-8") == "<html>2</html>"
    assert first.read_text(encoding="utf-8") == "<html>1b</html>"
