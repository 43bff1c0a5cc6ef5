"""
JudgeSync - Decision Sync

Pulls recent opinions per judge. Candidates are judges (explicit ids, or
local judges whose decisions pointer is older than the window); for each
judge the opinions authored since the judge's since-date are listed, and
every opinion's cluster is fetched, mapped and upserted as one decision.
Opinion text is stored once per decision, from the listing row when it has
any, else from /opinions/{id}/.

Accounting: each decision is one processed item. A judge whose opinion
listing fails counts as one processed item carrying one error.

Since-date, first match wins:
    days_since_last          today - days_since_last
    latest stored decision   that date + 1 day
    years_back               today - years_back years
    otherwise                today - 90 days
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from ..core.errors import MappingError, UpstreamError
from ..models import DecisionSyncOptions, SyncJobType, SyncResult, UpsertOutcome
from ..repositories import DecisionRepository, JudgeRepository
from ..services.normalization import (
    build_courtlistener_url,
    content_hash,
    create_docket_hash,
    normalize_case_number,
    normalize_outcome_label,
    parse_date,
    resource_id,
    strip_html,
)
from .base import FATAL_ERRORS, Candidate, SyncManager, utcnow

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 90
LISTING_PAGE_SIZE = 50


def decision_key(opinion: Dict[str, Any]) -> str:
    for field_name in ("opinion_id", "id"):
        value = opinion.get(field_name)
        if value:
            return str(value)
    cluster_id = opinion.get("cluster_id") or resource_id(opinion.get("cluster"))
    if cluster_id:
        return f"cluster-{cluster_id}"
    raise MappingError("opinion has no id or cluster")


def opinion_text(opinion: Dict[str, Any]) -> Optional[str]:
    """plain_text, else the HTML renderings with tags stripped."""
    text = (opinion.get("plain_text") or "").strip()
    if text:
        return text
    for field_name in ("html", "html_with_citations"):
        html = opinion.get(field_name)
        if html:
            text = strip_html(html)
            if text:
                return text
    return None


def map_decision(
    opinion: Dict[str, Any],
    cluster: Optional[Dict[str, Any]],
    judge_id: str,
    jurisdiction: str,
) -> Dict[str, Any]:
    """Map an opinion (plus its cluster, when fetched) into a decisions row."""
    key = decision_key(opinion)
    cluster = cluster or {}
    cluster_id = (
        resource_id(cluster.get("id"))
        or resource_id(opinion.get("cluster_id"))
        or resource_id(opinion.get("cluster"))
    )

    case_name = (
        cluster.get("case_name")
        or cluster.get("case_name_full")
        or cluster.get("case_name_short")
        or opinion.get("case_name")
    )
    if not case_name:
        raise MappingError(f"decision {key} has no case name", external_id=key)

    decision_date = parse_date(
        cluster.get("date_filed") or opinion.get("date_filed") or opinion.get("date_created")
    )
    case_number = normalize_case_number(
        cluster.get("docket_number") or opinion.get("docket_number"),
        fallback=cluster.get("citation_id"),
    )

    record: Dict[str, Any] = {
        "decision_key": key,
        "judge_external_id": judge_id,
        "cluster_id": cluster_id,
        "case_name": case_name.strip()[:500],
        "case_number": case_number.display,
        "docket_hash": create_docket_hash(
            case_number.key,
            jurisdiction,
            judge_id,
            cluster_id,
            decision_date.isoformat() if decision_date else None,
        ),
        "court_id": cluster.get("court_id") or opinion.get("court_id"),
        "decision_date": decision_date,
        "outcome": normalize_outcome_label(cluster.get("disposition")).label,
        "precedential_status": cluster.get("precedential_status"),
        "source_url": build_courtlistener_url(
            cluster.get("absolute_url") or opinion.get("absolute_url")
        ),
    }
    record["content_hash"] = content_hash(record)
    return record


class DecisionSyncManager(SyncManager):
    sync_type = SyncJobType.DECISION.value
    entity = "decisions"
    counter_prefix = "decisions"
    options_model = DecisionSyncOptions

    def __init__(
        self,
        *args: Any,
        judges: Optional[JudgeRepository] = None,
        decisions: Optional[DecisionRepository] = None,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.judges = judges or JudgeRepository()
        self.decisions = decisions or DecisionRepository()

    async def build_candidates(self, options: DecisionSyncOptions) -> List[Candidate]:
        if options.ids:
            return [Candidate(key=jid, label=f"judge {jid}") for jid in options.ids]

        rows = await self.judges.list_stale(
            options.jurisdiction,
            self.stale_before(options, days=options.days_since_last),
            options.limit,
            pointer="decisions_synced_at",
        )
        return [
            Candidate(
                key=str(row["courtlistener_id"]),
                label=f"judge {row.get('name') or row['courtlistener_id']}",
            )
            for row in rows
        ]

    async def process_candidate(
        self, candidate: Candidate, options: DecisionSyncOptions, result: SyncResult
    ) -> None:
        result.extra["judgesProcessed"] = result.extra.get("judgesProcessed", 0) + 1

        opinions = await self._attempt(
            result,
            f"{candidate.label} (opinion listing)",
            lambda: self._list_opinions(candidate.key, options),
        )
        if opinions is None:
            return

        for opinion in opinions:
            await self._run_item(
                result,
                f"opinion {opinion.get('id') or opinion.get('cluster')}",
                lambda op=opinion: self._sync_decision(candidate.key, op, options),
            )

        synced_at = utcnow()
        try:
            await self.judges.mark_decisions_synced(candidate.key, synced_at)
            await self.judges.refresh_case_count(candidate.key)
        except Exception as e:
            logger.warning(
                f"Could not update decision bookkeeping for {candidate.label}: {e}",
                extra={"external_id": candidate.key},
            )

    async def since_date(self, judge_id: str, options: DecisionSyncOptions) -> date:
        today = utcnow().date()
        if options.days_since_last is not None:
            return today - timedelta(days=options.days_since_last)

        latest = await self.decisions.latest_decision_date(judge_id)
        if latest:
            return latest + timedelta(days=1)

        if options.years_back:
            try:
                return today.replace(year=today.year - options.years_back)
            except ValueError:
                # Feb 29 in a non-leap target year
                return today.replace(year=today.year - options.years_back, day=28)

        return today - timedelta(days=DEFAULT_LOOKBACK_DAYS)

    async def _list_opinions(self, judge_id: str, options: DecisionSyncOptions) -> List[Dict[str, Any]]:
        since = await self.since_date(judge_id, options)
        cap = options.max_decisions_per_judge
        opinions: List[Dict[str, Any]] = []
        cursor: Optional[str] = None

        while len(opinions) < cap:
            page = await self.call_upstream(
                "opinions",
                lambda c=cursor, remaining=cap - len(opinions): self.client.list_opinions_by_author(
                    judge_id,
                    filed_after=since,
                    page_size=min(remaining, LISTING_PAGE_SIZE),
                    cursor=c,
                ),
            )
            opinions.extend(page.results)
            if not page.next_url:
                break
            cursor = page.next_url

        logger.info(
            f"Found {min(len(opinions), cap)} opinions for judge {judge_id} since {since}",
            extra={"external_id": judge_id, "count": min(len(opinions), cap)},
        )
        return opinions[:cap]

    async def _sync_decision(
        self, judge_id: str, opinion: Dict[str, Any], options: DecisionSyncOptions
    ) -> UpsertOutcome:
        cluster_id = resource_id(opinion.get("cluster")) or resource_id(opinion.get("cluster_id"))
        cluster = None
        if cluster_id:
            cluster = await self.call_upstream(
                "clusters", lambda: self.client.get_cluster(cluster_id)
            )

        record = map_decision(opinion, cluster, judge_id, options.jurisdiction)
        outcome = await self.decisions.upsert(record, utcnow())
        await self._capture_opinion_text(record["decision_key"], opinion)
        return outcome

    async def _capture_opinion_text(self, key: str, opinion: Dict[str, Any]) -> None:
        """
        Store the opinion's text once per decision. The listing row is used
        when it already carries text; otherwise /opinions/{id}/ is fetched.
        Failures here leave the decision in place and are retried next run.
        """
        opinion_id = opinion.get("opinion_id") or opinion.get("id")
        if not opinion_id or await self.decisions.has_opinion_text(key):
            return

        text = opinion_text(opinion)
        if text is None:
            try:
                detail = await self.call_upstream(
                    "opinions", lambda: self.client.get_opinion(str(opinion_id))
                )
            except FATAL_ERRORS:
                raise
            except UpstreamError as e:
                logger.warning(
                    f"Could not fetch text for opinion {opinion_id}: {e}",
                    extra={"external_id": str(opinion_id)},
                )
                return
            text = opinion_text(detail or {})

        if text is None:
            logger.warning(
                f"Opinion {opinion_id} has no text",
                extra={"external_id": str(opinion_id)},
            )
            return
        await self.decisions.store_opinion_text(key, text)
