"""Similarity clustering: group joins, new groups, fan-out and paging."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from newsdesk.models import repositories
from newsdesk.models.models import Language, SimilarGroup, SimilarReference, SummaryState
from newsdesk.pipeline.similarity import SimilarityService
from newsdesk.schemas.schemas import SimilarityResponse
from tests.support import (
    ScriptedAi,
    add_category,
    add_source,
    add_summary,
    build_harness,
    make_settings,
)

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


async def _group(session, title: str, members: list, at: datetime = T0) -> SimilarGroup:
    group = SimilarGroup(title=title, language=Language.RU, created_at=at)
    session.add(group)
    await session.flush()
    for member in members:
        session.add(SimilarReference(group_id=group.id, summary_id=member.id, created_at=at))
    await session.flush()
    return group


async def _seed(h, titles: list[str], **states):
    """Summaries one minute apart, oldest first; keyword args override a title's state."""
    async with h.session_factory() as session:
        source = await add_source(session)
        await add_category(session)
        summaries = {}
        for i, title in enumerate(titles):
            summaries[title] = await add_summary(
                session,
                source,
                title=title,
                state=states.get(title, SummaryState.VALIDATED),
                generated_at=T0 + timedelta(minutes=i),
            )
        await session.commit()
        return summaries


class TestFindSimilar:
    def test_grouped_summary_is_left_alone(self):
        ai = ScriptedAi()

        async def scenario():
            h = await build_harness(make_settings())
            try:
                s = await _seed(h, ["A", "B"])
                async with h.session_factory() as session:
                    await _group(session, "A", [s["A"], s["B"]])
                    await session.commit()
                service = SimilarityService(h.session_factory, ai, h.cache, h.settings)
                return await service.find_similar(s["B"].id)
            finally:
                await h.aclose()

        assert asyncio.run(scenario()) == []
        assert ai.calls == []

    def test_no_candidates_skips_the_model(self):
        ai = ScriptedAi()

        async def scenario():
            h = await build_harness(make_settings())
            try:
                s = await _seed(h, ["Only"])
                service = SimilarityService(h.session_factory, ai, h.cache, h.settings)
                return await service.find_similar(s["Only"].id)
            finally:
                await h.aclose()

        assert asyncio.run(scenario()) == []
        assert ai.calls == []

    def test_target_joins_existing_group_of_match(self):
        ai = ScriptedAi()

        async def scenario():
            h = await build_harness(make_settings())
            try:
                s = await _seed(h, ["X", "A", "B"])
                async with h.session_factory() as session:
                    group = await _group(session, "Flood in Osh", [s["X"], s["A"]])
                    await session.commit()
                ai.queue(
                    "SimilarityResponse",
                    SimilarityResponse(similar_summary_id=s["A"].id, reason="same flood"),
                )
                service = SimilarityService(h.session_factory, ai, h.cache, h.settings)
                joined = await service.find_similar(s["B"].id)
                async with h.session_factory() as session:
                    b_groups = await repositories.get_groups_for_summary(session, s["B"].id)
                    counts = await repositories.count_group_references(session)
                return s, group.id, joined, b_groups, counts
            finally:
                await h.aclose()

        s, group_id, joined, b_groups, counts = asyncio.run(scenario())
        assert joined == [group_id]
        assert [g.id for g in b_groups] == [group_id]
        assert counts == (1, 3)

    def test_candidates_carry_target_first_and_group_titles(self):
        ai = ScriptedAi()

        async def scenario():
            h = await build_harness(make_settings())
            try:
                s = await _seed(h, ["X", "A", "B"])
                async with h.session_factory() as session:
                    await _group(session, "Flood in Osh", [s["X"], s["A"]])
                    await session.commit()
                service = SimilarityService(h.session_factory, ai, h.cache, h.settings)
                await service.find_similar(s["B"].id)
                return s
            finally:
                await h.aclose()

        s = asyncio.run(scenario())
        payload = json.loads(ai.calls[0][2])
        assert payload[0] == {"id": s["B"].id, "title": "B", "summary": "Body of B"}
        assert [e["id"] for e in payload[1:]] == [s["A"].id, s["X"].id]
        assert payload[1]["groups"] == ["Flood in Osh"]
        sample_id = ai.samples[0].similar_summary_id
        assert sample_id not in {s[title].id for title in ("X", "A", "B")}

    def test_ungrouped_match_opens_new_group(self):
        ai = ScriptedAi()

        async def scenario():
            h = await build_harness(make_settings())
            try:
                s = await _seed(h, ["C", "D"], D=SummaryState.CREATED)
                ai.queue(
                    "SimilarityResponse",
                    SimilarityResponse(similar_summary_id=s["C"].id, reason="same vote"),
                )
                service = SimilarityService(h.session_factory, ai, h.cache, h.settings)
                joined = await service.find_similar(s["D"].id)
                async with h.session_factory() as session:
                    group = await session.get(SimilarGroup, joined[0])
                    refs = {
                        r.summary_id: r.reason
                        for r in (
                            await session.scalars(
                                select(SimilarReference).where(
                                    SimilarReference.group_id == group.id
                                )
                            )
                        ).all()
                    }
                cached_c = await h.cache.get_summary(s["C"].id)
                cached_d = await h.cache.get_summary(s["D"].id)
                return s, group, refs, cached_c, cached_d
            finally:
                await h.aclose()

        s, group, refs, cached_c, cached_d = asyncio.run(scenario())
        assert group.title == "D"
        assert group.language == Language.RU
        assert refs == {s["C"].id: "", s["D"].id: "same vote"}
        assert [r.id for r in cached_c.similarities] == [s["D"].id]
        assert cached_c.similarities[0].reason == "same vote"
        # Created summaries stay out of the cache until validated
        assert cached_d is None

    def test_match_in_several_groups_fans_out(self):
        ai = ScriptedAi()

        async def scenario():
            h = await build_harness(make_settings())
            try:
                s = await _seed(h, ["P", "Q", "M", "T"])
                async with h.session_factory() as session:
                    first = await _group(session, "One", [s["P"], s["M"]])
                    second = await _group(
                        session, "Two", [s["Q"], s["M"]], at=T0 + timedelta(minutes=1)
                    )
                    await session.commit()
                ai.queue(
                    "SimilarityResponse",
                    SimilarityResponse(similar_summary_id=s["M"].id, reason="x" * 400),
                )
                service = SimilarityService(h.session_factory, ai, h.cache, h.settings)
                joined = await service.find_similar(s["T"].id)
                async with h.session_factory() as session:
                    counts = await repositories.count_group_references(session)
                    reasons = (
                        await session.scalars(
                            select(SimilarReference.reason).where(
                                SimilarReference.summary_id == s["T"].id
                            )
                        )
                    ).all()
                return [first.id, second.id], joined, counts, reasons
            finally:
                await h.aclose()

        groups, joined, counts, reasons = asyncio.run(scenario())
        assert joined == groups
        assert counts == (2, 6)
        assert [len(r) for r in reasons] == [255, 255]

    def test_unknown_candidate_id_creates_nothing(self):
        ai = ScriptedAi()

        async def scenario():
            h = await build_harness(make_settings())
            try:
                s = await _seed(h, ["A", "B"])
                ai.queue(
                    "SimilarityResponse",
                    SimilarityResponse(similar_summary_id="not-a-candidate", reason="?"),
                )
                service = SimilarityService(h.session_factory, ai, h.cache, h.settings)
                joined = await service.find_similar(s["B"].id)
                async with h.session_factory() as session:
                    return joined, await repositories.count_group_references(session)
            finally:
                await h.aclose()

        assert asyncio.run(scenario()) == ([], (0, 0))

    def test_null_answer_creates_nothing(self):
        ai = ScriptedAi(SimilarityResponse=[SimilarityResponse(similar_summary_id=None)])

        async def scenario():
            h = await build_harness(make_settings())
            try:
                s = await _seed(h, ["A", "B"])
                service = SimilarityService(h.session_factory, ai, h.cache, h.settings)
                joined = await service.find_similar(s["B"].id)
                async with h.session_factory() as session:
                    return joined, await repositories.count_group_references(session)
            finally:
                await h.aclose()

        assert asyncio.run(scenario()) == ([], (0, 0))


class TestSimilaritiesPage:
    def test_pages_follow_next_offset(self):
        async def scenario():
            h = await build_harness(make_settings())
            try:
                titles = ["Root", "S1", "S2", "S3", "S4", "S5"]
                s = await _seed(h, titles)
                async with h.session_factory() as session:
                    group = SimilarGroup(title="Root", language=Language.RU, created_at=T0)
                    session.add(group)
                    await session.flush()
                    for i, title in enumerate(titles):
                        session.add(
                            SimilarReference(
                                group_id=group.id,
                                summary_id=s[title].id,
                                reason=f"r{i}",
                                created_at=T0 + timedelta(minutes=i),
                            )
                        )
                    await session.commit()
                service = SimilarityService(h.session_factory, ScriptedAi(), h.cache, h.settings)
                first = await service.get_similarities(s["Root"].id, 0, 2)
                second = await service.get_similarities(s["Root"].id, first.next_offset, 2)
                last = await service.get_similarities(s["Root"].id, 4, 2)
                return first, second, last
            finally:
                await h.aclose()

        first, second, last = asyncio.run(scenario())
        assert [i.title for i in first.items] == ["S5", "S4"]
        assert first.next_offset == 2
        assert [i.title for i in second.items] == ["S3", "S2"]
        assert second.next_offset == 4
        assert [i.title for i in last.items] == ["S1"]
        assert last.next_offset is None
        assert last.items[0].source == "Example"
