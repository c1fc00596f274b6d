import asyncio
from datetime import date

import pytest

from kaimaku.core.errors import NoResultsError, UpstreamUnavailable, ValidationError

from tests.fakes import MemoryCache, Upstream, anime_payload, make_service


def search(service, query):
    return asyncio.run(service.search(query))


def test_global_search_with_includes_wins_first():
    upstream = Upstream(search={"search": {"anime": [anime_payload(1, "Naruto"), anime_payload(2, "Bleach")]}})
    results = search(make_service(upstream), "naruto")
    assert [a.name for a in results] == ["Naruto"]
    assert len(upstream.requests) == 1


def test_search_without_includes_refetches_by_id():
    upstream = Upstream(
        search={"search": {"anime": [anime_payload(1, "Naruto", themes=False)]}},
        by_id={"1": anime_payload(1, "Naruto")},
    )
    results = search(make_service(upstream), "naruto")
    assert results[0].themes[0].entries[0].videos[0].basename == "Naruto-OP1.webm"
    assert any("filter[id]" in params for _, params in upstream.paths())


def test_anime_endpoint_results_are_enhanced_with_synonyms():
    upstream = Upstream(
        anime_q={"anime": [anime_payload(5, "Shingeki no Kyojin")]},
        by_id={"5": anime_payload(5, "Shingeki no Kyojin", synonyms=["Attack on Titan"], themes=False)},
    )
    results = search(make_service(upstream), "attack on titan")
    assert [a.name for a in results] == ["Shingeki no Kyojin"]
    # Themes from the first fetch are kept
    assert results[0].themes


def test_paginated_fallback_stops_at_first_match():
    upstream = Upstream(pages=[
        [anime_payload(1, "Alpha"), anime_payload(2, "Beta")],
        [anime_payload(3, "Gamma"), anime_payload(4, "Obscure Show")],
        [anime_payload(5, "Obscure Show 2"), anime_payload(6, "Delta")],
    ])
    results = search(make_service(upstream, page_size=2), "obscure")
    assert [a.name for a in results] == ["Obscure Show"]
    pages = [params["page[number]"] for _, params in upstream.paths() if "page[number]" in params]
    assert pages == ["1", "2"]


def test_paginated_fallback_gives_up_after_threshold():
    upstream = Upstream(pages=[[anime_payload(i * 2, "A"), anime_payload(i * 2 + 1, "B")] for i in range(5)])
    with pytest.raises(NoResultsError):
        search(make_service(upstream, page_size=2, no_match_threshold=4), "zzz")
    pages = [params for _, params in upstream.paths() if "page[number]" in params]
    assert len(pages) == 2


def test_short_page_ends_pagination():
    upstream = Upstream(pages=[[anime_payload(1, "Alpha")], [anime_payload(2, "Zeta")]])
    with pytest.raises(NoResultsError):
        search(make_service(upstream, page_size=2), "zeta")
    pages = [params for _, params in upstream.paths() if "page[number]" in params]
    assert len(pages) == 1


def test_unreachable_upstream():
    with pytest.raises(UpstreamUnavailable):
        search(make_service(Upstream(fail=True)), "naruto")


def test_unrecognized_payload_is_treated_as_empty():
    upstream = Upstream(search={"unexpected": True}, anime_q={"oops": []}, anime_name=[anime_payload(1, "Naruto")])
    results = search(make_service(upstream), "naruto")
    assert [a.name for a in results] == ["Naruto"]


def test_blank_query_rejected():
    with pytest.raises(ValidationError):
        search(make_service(Upstream()), "   ")


def test_results_are_cached():
    upstream = Upstream(search={"search": {"anime": [anime_payload(1, "Naruto")]}})
    service = make_service(upstream, cache=MemoryCache())
    first = search(service, "Naruto")
    second = search(service, "naruto ")
    assert first == second
    assert len(upstream.requests) == 1


def test_find_openings_requires_playable_opening():
    upstream = Upstream(search={"search": {"anime": [anime_payload(1, "Naruto")]}})
    upstream_no_video = Upstream(
        search={"search": {"anime": [{**anime_payload(1, "Naruto"), "animethemes": [{"type": "ED", "sequence": 1}]}]}},
    )
    assert len(asyncio.run(make_service(upstream).find_openings("naruto"))) == 1
    with pytest.raises(NoResultsError):
        asyncio.run(make_service(upstream_no_video).find_openings("naruto"))


def test_daily_featured_is_stable_for_a_day():
    upstream = Upstream(search={"search": {"anime": [anime_payload(i, f"Attack on Titan {i}") for i in range(1, 4)]}})
    service = make_service(upstream)
    day = date(2024, 1, 2)  # day-of-year 2 -> third result
    anime, theme = asyncio.run(service.daily_featured(day))
    assert anime.name == "Attack on Titan 3"
    assert theme.sequence == 1


def test_trending_dedupes_results():
    upstream = Upstream(search={"search": {"anime": [
        anime_payload(1, "Naruto One Piece Attack on Titan Demon Slayer Jujutsu Kaisen"),
    ]}})
    anime_list = asyncio.run(make_service(upstream).trending())
    assert len(anime_list) == 1
