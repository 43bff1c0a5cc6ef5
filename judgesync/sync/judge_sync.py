"""
JudgeSync - Judge Sync

Refreshes judge profiles from CourtListener /people/. Candidates are local
judges in the jurisdiction whose last sync is older than the staleness window
(all of them with force_refresh), or an explicit id list from a webhook.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from ..core.errors import MappingError
from ..models import JudgeSyncOptions, SyncJobType, UpsertOutcome
from ..repositories import JudgeRepository
from ..services.normalization import (
    content_hash,
    jurisdiction_from_court_name,
    normalize_jurisdiction,
    parse_date,
    resource_id,
)
from .base import Candidate, SyncManager, utcnow

logger = logging.getLogger(__name__)


def _court_ref(court: Any) -> Tuple[Optional[str], Optional[str]]:
    """(court id, court name) from a nested court object or a hyperlink."""
    if isinstance(court, dict):
        court_id = court.get("id")
        return (str(court_id) if court_id else None), (court.get("full_name") or court.get("name"))
    if isinstance(court, str) and court.strip():
        return court.rstrip("/").rsplit("/", 1)[-1], None
    return None, None


def _full_name(person: Dict[str, Any]) -> Optional[str]:
    if person.get("name_full"):
        return person["name_full"]
    parts = [
        person.get("name_first"),
        person.get("name_middle"),
        person.get("name_last"),
        person.get("name_suffix"),
    ]
    joined = " ".join(p.strip() for p in parts if p and p.strip())
    return joined or person.get("name")


def current_position(positions: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not positions:
        return None
    for position in positions:
        if not position.get("date_termination"):
            return position
    return positions[0]


def map_judge(person: Dict[str, Any], fallback_jurisdiction: str) -> Dict[str, Any]:
    """Map a CourtListener person into a judges row (content_hash included)."""
    judge_id = resource_id(person.get("id"))
    if not judge_id:
        raise MappingError("person record has no id")

    name = _full_name(person)
    if not name:
        raise MappingError(f"person {judge_id} has no name", external_id=judge_id)

    positions = [p for p in person.get("positions") or [] if isinstance(p, dict)]
    position = current_position(positions)
    court_id, court_name = _court_ref(position.get("court")) if position else (None, None)

    educations = []
    for edu in person.get("educations") or []:
        if not isinstance(edu, dict):
            continue
        school = edu.get("school")
        school_name = school.get("name") if isinstance(school, dict) else None
        degree = edu.get("degree_detail") or edu.get("degree_level") or "Unknown degree"
        educations.append(f"{school_name or 'Unknown'} ({degree})")

    bio_lines = []
    for pos in positions:
        _, pos_court = _court_ref(pos.get("court"))
        title = pos.get("job_title") or pos.get("position_type") or "Judge"
        bio_lines.append(f"{title} at {pos_court or 'Unknown Court'}")

    record: Dict[str, Any] = {
        "courtlistener_id": judge_id,
        "name": name,
        "court_name": court_name,
        "court_id": court_id,
        "jurisdiction": jurisdiction_from_court_name(court_name) or normalize_jurisdiction(fallback_jurisdiction),
        "appointed_date": parse_date(position.get("date_start")) if position else None,
        "education": "; ".join(educations) or None,
        "bio": "; ".join(bio_lines) or None,
    }
    record["content_hash"] = content_hash(record)
    return record


class JudgeSyncManager(SyncManager):
    sync_type = SyncJobType.JUDGE.value
    entity = "judges"
    counter_prefix = "judges"
    options_model = JudgeSyncOptions

    def __init__(self, *args: Any, judges: Optional[JudgeRepository] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.judges = judges or JudgeRepository()

    async def build_candidates(self, options: JudgeSyncOptions) -> List[Candidate]:
        if options.ids:
            return [Candidate(key=jid, label=f"judge {jid}") for jid in options.ids]

        rows = await self.judges.list_stale(
            options.jurisdiction, self.stale_before(options), options.limit
        )
        return [
            Candidate(
                key=str(row["courtlistener_id"]),
                label=f"judge {row.get('name') or row['courtlistener_id']}",
            )
            for row in rows
        ]

    async def sync_one(self, candidate: Candidate, options: JudgeSyncOptions) -> UpsertOutcome:
        person = await self.call_upstream(
            "people", lambda: self.client.get_person(candidate.key)
        )
        if person is None:
            raise MappingError(f"person {candidate.key} not found upstream", external_id=candidate.key)

        record = map_judge(person, options.jurisdiction)
        return await self.judges.upsert(record, utcnow())
