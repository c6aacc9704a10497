"""Parsing of URL lists and field rules, and per-category rule selection.

Manual mode rules are ``title|xpath`` lines. Auto-detect mode rules carry a
third column of comma separated tags: a tag naming a category scopes the rule
to that category, ``any`` makes it a wildcard fallback and ``sum`` flags the
value for numeric aggregation further downstream.
"""
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from models import FieldRule

ANY_TAG = "any"
SUM_TAG = "sum"


def _clean_lines(text: str) -> List[str]:
    lines = []
    for line in (text or "").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        lines.append(line)
    return lines


def parse_urls(text: str) -> List[str]:
    return _clean_lines(text)


def parse_field_rules(text: str) -> List[FieldRule]:
    rules = []
    for line in _clean_lines(text):
        title, sep, xpath = line.partition("|")
        if sep:
            rules.append(FieldRule(title=title.strip(), xpath=xpath.strip()))
        else:
            rules.append(FieldRule(title=line, xpath=line))
    return rules


def parse_raw_field_config(text: str, categories: Iterable[str]) -> List[FieldRule]:
    known = {c.lower() for c in categories}
    rules = []
    for line in _clean_lines(text):
        parts = [p.strip() for p in line.split("|")]
        if len(parts) < 2:
            continue
        title, xpath = parts[0], parts[1]
        raw_tags = parts[2] if len(parts) > 2 else ""
        tags = [t.strip().lower() for t in raw_tags.split(",") if t.strip()]
        rules.append(
            FieldRule(
                title=title,
                xpath=xpath,
                category_tags=frozenset(t for t in tags if t in known),
                is_any=ANY_TAG in tags,
                is_sum=SUM_TAG in tags,
            )
        )
    return rules


def extract_category_from_url(url: str, categories: Sequence[str]) -> Optional[str]:
    # /<locale>/<category>/...  e.g. /fr/Pokemon/Products/Singles
    try:
        segments = [s for s in urlparse(url).path.split("/") if s]
    except (TypeError, ValueError, AttributeError):
        return None
    if len(segments) < 2:
        return None
    wanted = segments[1].lower()
    for category in categories:
        if category.lower() == wanted:
            return category
    return None


def select_fields_for_category(
    rules: Sequence[FieldRule],
    detected_category: Optional[str],
    categories: Sequence[str] = (),
) -> List[FieldRule]:
    """Resolve one rule per title.

    Priority: rule tagged with the detected category, then an ``any`` rule,
    then an untagged rule. Titles with none of these are left out.
    """
    wanted = detected_category.lower() if detected_category else None
    by_title: dict[str, list[FieldRule]] = {}
    for rule in rules:
        by_title.setdefault(rule.title, []).append(rule)

    selected = []
    for group in by_title.values():
        pick = None
        if wanted:
            pick = next((r for r in group if wanted in r.category_tags), None)
        if pick is None:
            pick = next((r for r in group if r.is_any), None)
        if pick is None:
            pick = next((r for r in group if r.is_universal), None)
        if pick is not None:
            selected.append(pick)
    return selected


def resolve_plan(
    url: str,
    rules: Sequence[FieldRule],
    auto_detect: bool,
    categories: Sequence[str],
) -> tuple[Optional[str], List[FieldRule]]:
    """Return ``(detected_category, fields)`` to extract for ``url``."""
    if not auto_detect:
        return None, list(rules)
    category = extract_category_from_url(url, categories)
    return category, select_fields_for_category(rules, category, categories)
