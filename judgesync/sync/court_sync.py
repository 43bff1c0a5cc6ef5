"""
JudgeSync - Court Sync

Mirrors CourtListener courts. Candidates come from the paged /courts/ listing
filtered to the requested jurisdiction (or from explicit court ids); each
candidate's detail record is fetched, mapped and upserted.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..core.errors import MappingError
from ..models import CourtSyncOptions, SyncJobType, UpsertOutcome
from ..repositories import CourtRepository
from ..services.normalization import (
    content_hash,
    court_type_from_name,
    jurisdiction_from_court_name,
    normalize_jurisdiction,
    parse_date,
)
from .base import Candidate, SyncManager, utcnow

logger = logging.getLogger(__name__)

MAX_LISTING_PAGES = 40


def court_matches_jurisdiction(court: Dict[str, Any], jurisdiction: str) -> bool:
    full_name = court.get("full_name") or ""
    name = full_name or court.get("short_name") or court.get("name") or ""
    return jurisdiction_from_court_name(name) == jurisdiction or jurisdiction in full_name


def map_court(data: Dict[str, Any], fallback_jurisdiction: str) -> Dict[str, Any]:
    """Map a CourtListener court into a courts row (content_hash included)."""
    court_id = str(data.get("id") or "").strip()
    if not court_id:
        raise MappingError("court record has no id")

    name = data.get("full_name") or data.get("name") or data.get("short_name")
    if not name:
        raise MappingError(f"court {court_id} has no name", external_id=court_id)

    record: Dict[str, Any] = {
        "courtlistener_id": court_id,
        "name": name,
        "short_name": data.get("short_name"),
        "type": court_type_from_name(name),
        "jurisdiction": jurisdiction_from_court_name(name) or normalize_jurisdiction(fallback_jurisdiction),
        "citation_string": data.get("citation_string"),
        "website": data.get("url"),
        "start_date": parse_date(data.get("start_date")),
        "end_date": parse_date(data.get("end_date")),
        "in_use": bool(data.get("in_use", True)),
    }
    record["content_hash"] = content_hash(record)
    return record


class CourtSyncManager(SyncManager):
    sync_type = SyncJobType.COURT.value
    entity = "courts"
    counter_prefix = "courts"
    options_model = CourtSyncOptions

    def __init__(self, *args: Any, courts: Optional[CourtRepository] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.courts = courts or CourtRepository()

    async def build_candidates(self, options: CourtSyncOptions) -> List[Candidate]:
        if options.ids:
            return [Candidate(key=cid, label=f"court {cid}") for cid in options.ids]

        listed = await self._list_courts(options.jurisdiction)
        stale_before = self.stale_before(options)
        if stale_before is not None and listed:
            fresh = await self.courts.fresh_ids([c.key for c in listed], stale_before)
            if fresh:
                logger.info(f"Skipping {len(fresh)} courts synced within the staleness window")
            listed = [c for c in listed if c.key not in fresh]
        return listed

    async def _list_courts(self, jurisdiction: str) -> List[Candidate]:
        candidates: List[Candidate] = []
        seen = set()
        cursor: Optional[str] = None

        for _ in range(MAX_LISTING_PAGES):
            page = await self.call_upstream(
                "courts", lambda c=cursor: self.client.list_courts(cursor=c)
            )
            for court in page.results:
                court_id = str(court.get("id") or "").strip()
                if not court_id or court_id in seen:
                    continue
                if not court_matches_jurisdiction(court, jurisdiction):
                    continue
                seen.add(court_id)
                label = court.get("full_name") or court.get("short_name") or court_id
                candidates.append(Candidate(key=court_id, label=f"court {label}", data=court))
            if not page.next_url:
                break
            cursor = page.next_url
        else:
            logger.warning(f"Court listing truncated after {MAX_LISTING_PAGES} pages")

        return candidates

    async def sync_one(self, candidate: Candidate, options: CourtSyncOptions) -> UpsertOutcome:
        detail = await self.call_upstream(
            "courts", lambda: self.client.get_court(candidate.key)
        )
        if detail is None:
            raise MappingError(f"court {candidate.key} not found upstream", external_id=candidate.key)

        record = map_court(detail, options.jurisdiction)
        return await self.courts.upsert(record, utcnow())
