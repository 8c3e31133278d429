"""Tests for sanctions/PEP screening: scoring, thresholds, and source availability."""

import asyncio
from datetime import UTC, date, datetime

import pytest

from src.domains.compliance.config import ScreeningConfig
from src.domains.compliance.errors import ValidationError
from src.domains.compliance.models import (
    Party,
    ReferenceEntity,
    ScreeningQuery,
    ScreeningStatus,
)
from src.domains.compliance.screening import (
    ScreeningMatcher,
    StaticReferenceListProvider,
    normalize_name,
    score_candidate,
    screen_against,
)

NOW = datetime(2025, 3, 3, 1, 0, tzinfo=UTC)


def _entity(entity_id: str = "UN-001", name: str = "SMITH, John", **kwargs) -> ReferenceEntity:
    defaults = {"id": entity_id, "name": name, "source": "UN"}
    defaults.update(kwargs)
    return ReferenceEntity(**defaults)


def _query(**kwargs) -> ScreeningQuery:
    defaults = {"first_name": "John", "last_name": "Smith"}
    defaults.update(kwargs)
    return ScreeningQuery(**defaults)


class _SlowProvider:
    def __init__(self, lists, slow: set[str], delay: float = 1.0) -> None:
        self._inner = StaticReferenceListProvider(lists)
        self._slow = slow
        self._delay = delay

    async def fetch(self, source: str):
        if source in self._slow:
            await asyncio.sleep(self._delay)
        return await self._inner.fetch(source)


class TestNormalization:
    def test_accents_case_and_punctuation(self):
        assert normalize_name("José  Muñoz-García") == "JOSE MUNOZ GARCIA"
        assert normalize_name("o'brien, seán") == "O BRIEN SEAN"

    def test_empty(self):
        assert normalize_name(None) == ""
        assert normalize_name("   ") == ""


class TestScoring:
    def test_reordered_name_is_exact(self):
        match = score_candidate(_query(), _entity())
        assert match.name_score == 1.0
        assert match.score == 1.0

    def test_accented_list_entry_matches_plain_query(self):
        match = score_candidate(
            _query(first_name="Jose", last_name="Munoz"), _entity(name="José Muñoz")
        )
        assert match.score == 1.0

    def test_alias_is_used(self):
        entity = _entity(name="Ivan Petrov", aliases=("Johnny Smith", "John Smith"))
        match = score_candidate(_query(), entity)
        assert match.matched_name == "John Smith"
        assert match.score == 1.0

    def test_dob_mismatch_penalises(self):
        match = score_candidate(
            _query(date_of_birth=date(1980, 5, 1)), _entity(date_of_birth="1975")
        )
        assert match.score == pytest.approx(0.85)

    def test_dob_and_country_bonus_capped(self):
        match = score_candidate(
            _query(date_of_birth=date(1980, 5, 1), country="AU"),
            _entity(date_of_birth="1980-05-01", nationality="AU"),
        )
        assert match.score == 1.0

    def test_attributes_ignored_for_implausible_name(self):
        plain = score_candidate(_query(), _entity(name="Alice Brown"))
        boosted = score_candidate(
            _query(date_of_birth=date(1980, 5, 1), country="AU"),
            _entity(name="Alice Brown", date_of_birth="1980-05-01", nationality="AU"),
        )
        assert plain.name_score < 0.6
        assert boosted.score == plain.score

    def test_score_in_unit_range(self):
        for name in ("John Smith", "Jon Smyth", "Zhang Wei", "X"):
            match = score_candidate(_query(date_of_birth=date(1980, 1, 1)), _entity(name=name))
            assert 0.0 <= match.score <= 1.0


class TestScreenAgainst:
    CONFIG = ScreeningConfig(sources=("UN",), minimum_match_score=0.7, confirmed_match_score=0.9)

    def test_clear(self):
        result = screen_against(_query(), [_entity(name="Alice Brown")], self.CONFIG, NOW)
        assert result.status == ScreeningStatus.CLEAR
        assert result.is_match is False
        assert result.matches == ()
        assert result.match_score == 0.0

    def test_confirmed_match(self):
        result = screen_against(_query(), [_entity()], self.CONFIG, NOW)
        assert result.status == ScreeningStatus.MATCH
        assert result.is_match
        assert result.match_score == 1.0

    def test_potential_match(self):
        result = screen_against(
            _query(date_of_birth=date(1980, 5, 1)),
            [_entity(date_of_birth="1975")],
            self.CONFIG,
            NOW,
        )
        assert result.status == ScreeningStatus.POTENTIAL_MATCH
        assert result.is_match

    def test_matches_sorted_by_score_then_source_then_id(self):
        candidates = [
            _entity("B-2", source="OFAC"),
            _entity("A-1", source="UN"),
            _entity("A-0", source="OFAC"),
            _entity("C-9", name="Jon Smyth", source="DFAT"),
        ]
        result = screen_against(_query(), candidates, self.CONFIG, NOW)
        ids = [m.entity_id for m in result.matches]
        assert ids[:3] == ["A-0", "B-2", "A-1"]
        scores = [m.score for m in result.matches]
        assert scores == sorted(scores, reverse=True)

    def test_minimum_above_one_never_matches(self):
        config = ScreeningConfig(minimum_match_score=1.01)
        result = screen_against(_query(), [_entity()], config, NOW)
        assert result.status == ScreeningStatus.CLEAR
        assert result.matches == ()

    def test_empty_candidate_list_is_clear(self):
        result = screen_against(_query(), [], self.CONFIG, NOW)
        assert result.status == ScreeningStatus.CLEAR

    def test_missing_names_rejected(self):
        with pytest.raises(ValidationError):
            screen_against(ScreeningQuery(first_name="John"), [], self.CONFIG, NOW)
        with pytest.raises(ValidationError):
            screen_against(ScreeningQuery(first_name=" ", last_name="Smith"), [], self.CONFIG, NOW)

    def test_is_deterministic(self):
        candidates = [_entity(), _entity("UN-002", name="Jon Smith")]
        first = screen_against(_query(), candidates, self.CONFIG, NOW)
        second = screen_against(_query(), list(reversed(candidates)), self.CONFIG, NOW)
        assert first == second


class TestScreeningMatcher:
    @pytest.mark.asyncio
    async def test_screens_all_sources(self):
        provider = StaticReferenceListProvider({
            "UN": [_entity()],
            "DFAT": [_entity("DFAT-7", name="John Smith", source="DFAT")],
        })
        matcher = ScreeningMatcher(
            provider, ScreeningConfig(sources=("DFAT", "UN")), clock=lambda: NOW
        )
        result = await matcher.screen(_query())
        assert result.sources == ("DFAT", "UN")
        assert result.unavailable_sources == ()
        assert {m.entity_id for m in result.matches} == {"UN-001", "DFAT-7"}
        assert result.screened_at == NOW

    @pytest.mark.asyncio
    async def test_unloaded_source_is_reported_unavailable(self):
        provider = StaticReferenceListProvider({"UN": [_entity()]})
        matcher = ScreeningMatcher(provider, ScreeningConfig(sources=("UN", "OFAC")))
        result = await matcher.screen(_query())
        assert result.sources == ("UN",)
        assert result.unavailable_sources == ("OFAC",)
        assert result.status == ScreeningStatus.MATCH

    @pytest.mark.asyncio
    async def test_slow_source_times_out(self):
        provider = _SlowProvider({"UN": [], "OFAC": [_entity(source="OFAC")]}, slow={"OFAC"})
        matcher = ScreeningMatcher(
            provider, ScreeningConfig(sources=("UN", "OFAC"), source_timeout_seconds=0.05)
        )
        result = await matcher.screen(_query())
        assert result.unavailable_sources == ("OFAC",)
        assert result.status == ScreeningStatus.CLEAR

    @pytest.mark.asyncio
    async def test_per_call_config_override(self):
        provider = StaticReferenceListProvider({"UN": [_entity()]})
        matcher = ScreeningMatcher(provider, ScreeningConfig(sources=("UN",)))
        result = await matcher.screen(
            _query(), ScreeningConfig(sources=("UN",), minimum_match_score=1.01)
        )
        assert result.status == ScreeningStatus.CLEAR

    @pytest.mark.asyncio
    async def test_screen_party(self):
        provider = StaticReferenceListProvider({"UN": [_entity()]})
        matcher = ScreeningMatcher(provider, ScreeningConfig(sources=("UN",)))
        party = Party(id="p-1", first_name="John", last_name="Smith")
        result = await matcher.screen_party(party)
        assert result.is_match

    @pytest.mark.asyncio
    async def test_failing_source_is_reported_unavailable(self):
        class _BrokenUNProvider:
            def __init__(self) -> None:
                self._inner = StaticReferenceListProvider({
                    "DFAT": [_entity("DFAT-7", name="John Smith", source="DFAT")],
                })

            async def fetch(self, source: str):
                if source == "UN":
                    raise ConnectionError("connection reset by peer")
                return await self._inner.fetch(source)

        matcher = ScreeningMatcher(
            _BrokenUNProvider(), ScreeningConfig(sources=("DFAT", "UN")), clock=lambda: NOW
        )
        result = await matcher.screen(_query())
        assert result.sources == ("DFAT",)
        assert result.unavailable_sources == ("UN",)
        assert [m.entity_id for m in result.matches] == ["DFAT-7"]
        assert result.status == ScreeningStatus.MATCH


class TestAliasScenario:
    def test_alias_with_matching_dob(self):
        entity = _entity(
            "UN-100", name="John Smith", aliases=("Jon Smith",), date_of_birth="1980-01-01"
        )
        config = ScreeningConfig(sources=("UN",), minimum_match_score=0.7)
        result = screen_against(
            _query(first_name="Jon", date_of_birth=date(1980, 1, 1)), [entity], config, NOW
        )
        assert result.is_match is True
        assert result.status in (ScreeningStatus.POTENTIAL_MATCH, ScreeningStatus.MATCH)
        assert result.matches[0].entity_id == "UN-100"
        assert result.match_score >= 0.7
