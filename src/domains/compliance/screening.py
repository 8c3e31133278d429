"""Sanctions / PEP screening against reference list snapshots.

Scoring per candidate, all in [0, 1]:
  name     best rapidfuzz token_sort_ratio between the query name (with and
           without middle name) and the candidate's name or any alias,
           after accent stripping and punctuation folding
  dob      +0.10 exact, +0.05 same year, -0.15 different year
  country  +0.05 when nationality agrees
Attribute adjustments only apply once the name alone is plausible
(>= 0.6), so a DOB coincidence cannot carry an unrelated name over the
threshold. The combined score is clamped to [0, 1].

Two thresholds: candidates >= minimum_match_score are reported; the
result is a ``match`` when the best one is >= confirmed_match_score and a
``potential_match`` otherwise.
"""

import asyncio
import re
import unicodedata
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, date, datetime
from typing import Protocol

import structlog
from rapidfuzz import fuzz

from .config import ScreeningConfig
from .errors import SourceUnavailableError, ValidationError
from .models import (
    CandidateMatch,
    Party,
    ReferenceEntity,
    ScreeningQuery,
    ScreeningResult,
    ScreeningStatus,
)

logger = structlog.get_logger()

DOB_EXACT_BONUS = 0.10
DOB_YEAR_BONUS = 0.05
DOB_MISMATCH_PENALTY = 0.15
COUNTRY_BONUS = 0.05
ATTRIBUTE_NAME_FLOOR = 0.6


class ReferenceListProvider(Protocol):
    """Snapshot access to one or more sanctions / PEP sources."""

    async def fetch(self, source: str) -> Sequence[ReferenceEntity]: ...


class StaticReferenceListProvider:
    """In-memory reference lists keyed by source name."""

    def __init__(self, lists: Mapping[str, Sequence[ReferenceEntity]]) -> None:
        self._lists = {k.upper(): tuple(v) for k, v in lists.items()}

    async def fetch(self, source: str) -> Sequence[ReferenceEntity]:
        try:
            return self._lists[source.upper()]
        except KeyError:
            raise SourceUnavailableError(source, "not loaded") from None


def normalize_name(name: str | None) -> str:
    """Case-, accent- and punctuation-insensitive form of a name."""
    if not name:
        return ""
    name = "".join(
        c for c in unicodedata.normalize("NFD", name) if unicodedata.category(c) != "Mn"
    )
    name = re.sub(r"[^\w\s]", " ", name)
    name = re.sub(r"\s+", " ", name)
    return name.upper().strip()


def _query_names(query: ScreeningQuery) -> list[str]:
    short = normalize_name(f"{query.first_name} {query.last_name}")
    names = [short]
    if query.middle_name:
        names.append(normalize_name(f"{query.first_name} {query.middle_name} {query.last_name}"))
    return names


def _name_score(query_names: list[str], entity: ReferenceEntity) -> tuple[float, str]:
    best, best_name = 0.0, entity.name
    for candidate in (entity.name, *entity.aliases):
        normalized = normalize_name(candidate)
        if not normalized:
            continue
        for q in query_names:
            score = fuzz.token_sort_ratio(q, normalized) / 100.0
            if score > best:
                best, best_name = score, candidate
    return best, best_name


def _dob_adjustment(query_dob: date | None, entity_dob: str | None) -> float:
    if query_dob is None or not entity_dob:
        return 0.0
    entity_dob = entity_dob.strip()
    if entity_dob == query_dob.isoformat():
        return DOB_EXACT_BONUS
    try:
        entity_year = int(entity_dob[:4])
    except ValueError:
        return 0.0
    if entity_year == query_dob.year:
        return DOB_YEAR_BONUS
    return -DOB_MISMATCH_PENALTY


def score_candidate(query: ScreeningQuery, entity: ReferenceEntity) -> CandidateMatch:
    """Score a single reference entity against a query."""
    name_score, matched_name = _name_score(_query_names(query), entity)
    score = name_score
    if name_score >= ATTRIBUTE_NAME_FLOOR:
        score += _dob_adjustment(query.date_of_birth, entity.date_of_birth)
        if query.country and entity.nationality and (
            query.country.upper() == entity.nationality.upper()
        ):
            score += COUNTRY_BONUS
    score = round(max(0.0, min(1.0, score)), 4)
    return CandidateMatch(
        entity_id=entity.id,
        name=entity.name,
        matched_name=matched_name,
        score=score,
        name_score=round(name_score, 4),
        source=entity.source,
        listing_info=entity.listing_info,
        date_of_birth=entity.date_of_birth,
        nationality=entity.nationality,
    )


def validate_query(query: ScreeningQuery) -> None:
    if not (query.first_name or "").strip():
        raise ValidationError("first_name", "is required for screening")
    if not (query.last_name or "").strip():
        raise ValidationError("last_name", "is required for screening")


def screen_against(
    query: ScreeningQuery,
    candidates: Sequence[ReferenceEntity],
    config: ScreeningConfig,
    screened_at: datetime,
    sources: Sequence[str] = (),
    unavailable_sources: Sequence[str] = (),
) -> ScreeningResult:
    """Pure screening of ``query`` against an already-loaded candidate list."""
    validate_query(query)

    scored = (score_candidate(query, entity) for entity in candidates)
    matches = sorted(
        (m for m in scored if m.score >= config.minimum_match_score),
        key=lambda m: (-m.score, m.source, m.entity_id),
    )
    top = matches[0].score if matches else 0.0

    if not matches:
        status = ScreeningStatus.CLEAR
    elif top >= config.confirmed_match_score:
        status = ScreeningStatus.MATCH
    else:
        status = ScreeningStatus.POTENTIAL_MATCH

    return ScreeningResult(
        is_match=bool(matches),
        match_score=top,
        status=status,
        matches=tuple(matches),
        sources=tuple(sources),
        unavailable_sources=tuple(unavailable_sources),
        screened_at=screened_at,
    )


def query_for_party(party: Party) -> ScreeningQuery:
    return ScreeningQuery(
        first_name=party.first_name,
        middle_name=party.middle_name,
        last_name=party.last_name,
        date_of_birth=party.date_of_birth,
        country=party.nationality or party.address.country,
    )


class ScreeningMatcher:
    """Screens queries against every configured source with a per-source timeout.

    A source that times out, reports itself unavailable or fails outright is
    excluded and listed in ``unavailable_sources``; screening proceeds with
    the rest.
    """

    def __init__(
        self,
        provider: ReferenceListProvider,
        config: ScreeningConfig,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._provider = provider
        self._config = config
        self._clock = clock

    async def _fetch(self, source: str) -> Sequence[ReferenceEntity] | None:
        try:
            return await asyncio.wait_for(
                self._provider.fetch(source), timeout=self._config.source_timeout_seconds
            )
        except TimeoutError:
            logger.warning("screening_source_timeout", source=source,
                           timeout_seconds=self._config.source_timeout_seconds)
        except SourceUnavailableError as exc:
            logger.warning("screening_source_unavailable", source=source, reason=exc.reason)
        except Exception:
            logger.warning("screening_source_failed", source=source, exc_info=True)
        return None

    async def screen(
        self, query: ScreeningQuery, config: ScreeningConfig | None = None
    ) -> ScreeningResult:
        config = config or self._config
        validate_query(query)

        sources = list(dict.fromkeys(config.sources))
        fetched = await asyncio.gather(*(self._fetch(s) for s in sources))

        used: list[str] = []
        unavailable: list[str] = []
        candidates: list[ReferenceEntity] = []
        for source, entities in zip(sources, fetched, strict=True):
            if entities is None:
                unavailable.append(source)
                continue
            used.append(source)
            candidates.extend(entities)

        result = screen_against(
            query, candidates, config, self._clock(),
            sources=used, unavailable_sources=unavailable,
        )

        log = logger.warning if result.is_match else logger.info
        log(
            "screening_completed",
            status=result.status.value,
            match_count=len(result.matches),
            match_score=result.match_score,
            sources=used,
            unavailable_sources=unavailable,
        )
        return result

    async def screen_party(self, party: Party) -> ScreeningResult:
        return await self.screen(query_for_party(party))
