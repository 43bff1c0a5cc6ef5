"""
JudgeSync - Normalization Helpers

Pure functions shared by the sync mappers: jurisdiction codes, case numbers,
docket hashes, outcome labels and a few string/date utilities.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

COURTLISTENER_SITE = "https://www.courtlistener.com"

_OUTCOME_PATTERNS: list[tuple[str, str, tuple[str, ...]]] = [
    ("dismissed", "Dismissed", (r"dismiss", r"thrown out", r"quash", r"terminated")),
    ("settled", "Settled", (r"settle", r"stipulated judgment")),
    ("vacated", "Vacated", (r"vacated?", r"set aside")),
    ("remanded", "Remanded", (r"remand",)),
    ("judgment_plaintiff", "Judgment for Plaintiff", (r"plaintiff", r"grant.*plaintiff")),
    ("judgment_defendant", "Judgment for Defendant", (r"defendant", r"grant.*defendant")),
    ("pending", "Active", (r"pending", r"active", r"open")),
    ("closed", "Closed", (r"closed", r"disposed", r"completed")),
]


@dataclass(frozen=True)
class NormalizedOutcome:
    label: Optional[str]
    category: str


@dataclass(frozen=True)
class NormalizedCaseNumber:
    display: Optional[str]
    key: Optional[str]


def to_title(value: str) -> str:
    cleaned = re.sub(r"\s+", " ", value.lower().replace("_", " ")).strip()
    return re.sub(r"(^|\s)(\w)", lambda m: m.group(1) + m.group(2).upper(), cleaned)


def normalize_outcome_label(raw: Optional[str]) -> NormalizedOutcome:
    value = (raw or "").strip()
    if not value:
        return NormalizedOutcome(label=None, category="other")

    for category, label, patterns in _OUTCOME_PATTERNS:
        if any(re.search(p, value, re.IGNORECASE) for p in patterns):
            return NormalizedOutcome(label=label, category=category)

    return NormalizedOutcome(label=to_title(value), category="other")


def normalize_jurisdiction(value: Optional[str]) -> Optional[str]:
    """
    Collapse free-form jurisdiction strings into short codes.

    >>> normalize_jurisdiction("United States")
    'US'
    >>> normalize_jurisdiction("california")
    'CA'
    """
    if not value or not value.strip():
        return None

    upper = value.strip().upper()
    if upper in ("USA", "UNITED STATES", "FEDERAL", "US"):
        return "US"
    if re.fullmatch(r"[A-Z]{2}", upper):
        return upper
    if "CALIFORNIA" in upper:
        return "CA"
    if "NEW YORK" in upper:
        return "NY"
    return upper[:4]


def jurisdiction_from_court_name(name: Optional[str]) -> Optional[str]:
    """Derive a jurisdiction code from a court's display name, if it says."""
    name = name or ""
    if "California" in name or "CA " in name:
        return "CA"
    if "Federal" in name or "U.S." in name:
        return "US"
    return None


def court_type_from_name(name: Optional[str]) -> str:
    name = name or ""
    if "Federal" in name or "U.S." in name or "Circuit" in name:
        return "federal"
    return "state"


def normalize_case_number(
    raw: Any, fallback: Any = None
) -> NormalizedCaseNumber:
    if raw is None or not str(raw).strip():
        if fallback is not None and str(fallback).strip():
            return normalize_case_number(fallback)
        return NormalizedCaseNumber(display=None, key=None)

    display = re.sub(r"\s+", " ", re.sub(r"[–—]", "-", str(raw).strip()))
    display = display.upper()[:100]
    key = re.sub(r"[^A-Z0-9]", "", display)
    return NormalizedCaseNumber(display=display, key=key or None)


def create_docket_hash(
    case_number_key: Optional[str],
    jurisdiction: Optional[str] = None,
    judge_id: Optional[str] = None,
    courtlistener_id: Any = None,
    filing_date: Optional[str] = None,
) -> Optional[str]:
    """sha1 over the non-empty identifying parts joined with '|'."""
    parts = [
        case_number_key.upper() if case_number_key else "",
        jurisdiction.upper() if jurisdiction else "",
        str(judge_id) if judge_id else "",
        str(courtlistener_id) if courtlistener_id else "",
        filing_date[:10] if filing_date else "",
    ]
    payload = "|".join(p for p in parts if p)
    if not payload:
        return None
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


def content_hash(record: dict[str, Any]) -> str:
    """Stable digest of a mapped record, used to detect unchanged upstream data."""
    encoded = json.dumps(record, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def build_courtlistener_url(absolute_url: Optional[str]) -> Optional[str]:
    if not absolute_url:
        return None
    if absolute_url.startswith("http"):
        return absolute_url
    return f"{COURTLISTENER_SITE}{absolute_url}"


def strip_html(html: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"<[^>]+>", " ", html)).strip()


_RESOURCE_ID = re.compile(r"/(\d+)/?$")


def resource_id(value: Any) -> Optional[str]:
    """
    Extract the numeric id from a CourtListener reference, which may be an id
    or a hyperlinked URL like https://www.courtlistener.com/api/rest/v4/clusters/42/.
    """
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return str(value)
    text = str(value).strip()
    if text.isdigit():
        return text
    match = _RESOURCE_ID.search(text)
    return match.group(1) if match else None
