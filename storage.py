import csv
import hashlib
import json
import re
from pathlib import Path

from config import SITE_MISMATCH_ERROR
from models import RunSummary, ScrapeResult, utc_now

CSV_NAME = "extracted_data.csv"
SUMMARY_NAME = "summary.json"


def sanitize_filename(url: str) -> str:
    stripped = re.sub(r"^https?://", "", url)
    return re.sub(r"[^a-zA-Z0-9]", "_", stripped)[:100]


class ResultAggregator:
    """Collects one ScrapeResult per URL and writes the run's output files."""

    def __init__(self, base_dir: str, logger):
        self.base = Path(base_dir)
        self.logger = logger
        self.results: list[ScrapeResult] = []
        self._snapshot_owners: dict[str, str] = {}

    def add(self, result: ScrapeResult):
        self.results.append(result)

    def _snapshot_name(self, url: str) -> str:
        name = sanitize_filename(url)
        owner = self._snapshot_owners.setdefault(name, url)
        if owner != url:
            # long URLs that differ past the cut would overwrite each other
            name = f"{name}_{hashlib.sha1(url.encode('utf-8', errors='replace')).hexdigest()[:8]}"
            self.logger.info(f"Snapshot name taken by {owner}, saving {url} as {name}.html")
        return name

    def save_html(self, url: str, html: str) -> Path | None:
        """Written as soon as a URL succeeds so the snapshot is not held for the run."""
        path = self.base / f"{self._snapshot_name(url)}.html"
        try:
            self.base.mkdir(parents=True, exist_ok=True)
            path.write_text(html, encoding="utf-8", errors="replace")
        except (OSError, UnicodeError) as e:
            self.logger.error(f"Could not save snapshot for {url}: {e}")
            return None
        return path

    def field_titles(self) -> list[str]:
        titles: dict[str, None] = {}
        for r in self.results:
            for title in r.extracted_data:
                titles.setdefault(title, None)
        return list(titles)

    def summary(self) -> RunSummary:
        successful = sum(1 for r in self.results if r.success)
        return RunSummary(
            total_urls=len(self.results),
            successful=successful,
            failed=len(self.results) - successful,
            challenge_blocked=sum(1 for r in self.results if r.challenge_detected and not r.success),
            skipped=sum(1 for r in self.results if r.error == SITE_MISMATCH_ERROR),
        )

    def save_csv(self) -> Path | None:
        fields = self.field_titles()
        path = self.base / CSV_NAME
        try:
            self.base.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8", errors="replace", newline="") as f:
                writer = csv.writer(f, quoting=csv.QUOTE_ALL, lineterminator="\n")
                writer.writerow(["url", "detected_category", *fields])
                for r in self.results:
                    writer.writerow([
                        r.url,
                        r.detected_category or "",
                        *(r.extracted_data.get(title) or "" for title in fields),
                    ])
        except (OSError, UnicodeError) as e:
            self.logger.error(f"Could not write {path}: {e}")
            return None
        self.logger.info(f"Saved: {path}")
        return path

    def save_json(self, auto_detect: bool = False) -> Path | None:
        payload = {
            "timestamp": utc_now(),
            **self.summary().to_dict(),
            "auto_detect_mode": auto_detect,
            "results": [r.to_dict() for r in self.results],
        }
        path = self.base / SUMMARY_NAME
        try:
            self.base.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8", errors="replace") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
        except (OSError, UnicodeError) as e:
            self.logger.error(f"Could not write {path}: {e}")
            return None
        self.logger.info(f"Saved: {path}")
        return path

    def persist(self, auto_detect: bool = False):
        self.save_csv()
        self.save_json(auto_detect)
