import logging
import pathlib
import sys
from concurrent.futures import ThreadPoolExecutor

import pytest

from test_fetcher import BASE, FakeResponse, make_fetcher  # reuse fixtures

ROOT_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from pahe_api.catalog import CatalogClient, internal_id_from_landing, merge_release_pages
from pahe_api.errors import NotFoundError, ParseError, UpstreamError


def landing(temp_id):
    return (
        "<html><head>"
        f'<meta property="og:url" content="{BASE}/anime/{temp_id}">'
        "</head><body></body></html>"
    )


def release_url(temp_id, page):
    return f"{BASE}/api?m=release&id={temp_id}&sort=episode_asc&page={page}"


def ep(n, prefix="s"):
    return {"id": 1000 + n, "episode": n, "title": "", "snapshot": f"https://i.test/{n}.jpg", "session": f"{prefix}{n}"}


def anime_routes(session, temp_id, pages, prefix="s"):
    routes = {f"{BASE}/anime/{session}": landing(temp_id)}
    for i, numbers in enumerate(pages, start=1):
        routes[release_url(temp_id, i)] = {
            "total": sum(len(p) for p in pages),
            "last_page": len(pages),
            "data": [ep(n, prefix) for n in numbers],
        }
    return routes


# ---------------------------------------------------------------- search
def test_search_maps_results():
    payload = {"total": 1, "data": [{
        "id": 4, "title": "Naruto Shippuden", "type": "TV", "episodes": 500,
        "year": 2007, "poster": "https://i.test/p.jpg", "session": "abc-123",
    }]}
    client = CatalogClient(make_fetcher({f"{BASE}/api?m=search&q=naruto%20shippuden": payload}))
    (res,) = client.search("naruto shippuden")
    assert res.title == "Naruto Shippuden"
    assert res.url == f"{BASE}/anime/abc-123"
    assert res.session == "abc-123"
    assert res.type == "TV"
    assert res.year == 2007


def test_search_without_matches_is_empty():
    client = CatalogClient(make_fetcher({f"{BASE}/api?m=search&q=zzz": {"total": 0}}))
    assert client.search("zzz") == []


def test_search_malformed_json_is_upstream_error():
    client = CatalogClient(make_fetcher({f"{BASE}/api?m=search&q=x": "<html>challenge</html>"}))
    with pytest.raises(UpstreamError) as exc:
        client.search("x")
    assert str(exc.value).startswith("Search failed:")


# -------------------------------------------------------------- episodes
def test_internal_id_from_landing():
    assert internal_id_from_landing(landing("4321")) == "4321"
    with pytest.raises(ParseError):
        internal_id_from_landing("<html><head></head></html>")


def test_list_episodes_merges_pages_and_sorts():
    routes = anime_routes("abc", "4321", [[3, 1], [2, 5], [4]])
    client = CatalogClient(make_fetcher(routes))
    episodes = client.list_episodes("abc")
    assert [e.number for e in episodes] == [1, 2, 3, 4, 5]
    assert episodes[0].title == "Episode 1"
    assert episodes[0].session == "s1"
    assert episodes[0].snapshot == "https://i.test/1.jpg"


def test_single_page_needs_no_extra_fetches():
    routes = anime_routes("abc", "9", [[1, 2]])
    fetcher = make_fetcher(routes)
    assert [e.number for e in CatalogClient(fetcher).list_episodes("abc")] == [1, 2]
    assert len(fetcher.sessions) == 2


def test_duplicate_items_are_dropped_and_reported(caplog):
    routes = anime_routes("abc", "4321", [[1, 2], [2, 3]])
    client = CatalogClient(make_fetcher(routes))
    with caplog.at_level(logging.WARNING, logger="pahe_api.catalog"):
        episodes = client.list_episodes("abc")
    assert [e.number for e in episodes] == [1, 2, 3]
    assert "duplicate" in caplog.text


def test_merge_release_pages_size():
    pages = [[ep(1), ep(2)], [ep(2), ep(3)], [ep(4)]]
    merged = merge_release_pages(pages)
    assert len(merged) == sum(len(p) for p in pages) - 1


def test_failed_page_fails_whole_call():
    routes = anime_routes("abc", "4321", [[1], [2], [3]])
    routes[release_url("4321", 3)] = FakeResponse(500, "oops")
    client = CatalogClient(make_fetcher(routes))
    with pytest.raises(UpstreamError) as exc:
        client.list_episodes("abc")
    assert str(exc.value).startswith("Failed to get episodes:")


def test_missing_meta_is_parse_error():
    client = CatalogClient(make_fetcher({f"{BASE}/anime/abc": "<html></html>"}))
    with pytest.raises(ParseError) as exc:
        client.list_episodes("abc")
    assert "meta tag" in str(exc.value)


def test_concurrent_calls_do_not_interfere():
    routes = {}
    routes.update(anime_routes("one", "11", [[1, 2], [3, 4], [5]], prefix="a"))
    routes.update(anime_routes("two", "22", [[10, 11], [12]], prefix="b"))
    client = CatalogClient(make_fetcher(routes))

    with ThreadPoolExecutor(max_workers=4) as ex:
        futures = [ex.submit(client.list_episodes, s) for s in ("one", "two", "one", "two")]
        results = [f.result() for f in futures]

    for episodes in results[0::2]:
        assert [e.session for e in episodes] == ["a1", "a2", "a3", "a4", "a5"]
    for episodes in results[1::2]:
        assert [e.session for e in episodes] == ["b10", "b11", "b12"]


# --------------------------------------------------------------- sources
def test_get_sources_reads_play_page():
    html = (
        '<button data-src="https://kwik.si/e/abc" data-fansub="X" '
        'data-resolution="720" data-audio="jpn">X</button>'
    )
    client = CatalogClient(make_fetcher({f"{BASE}/play/anime1/ep1": html}))
    (src,) = client.get_sources("anime1", "ep1")
    assert src.url == "https://kwik.si/e/abc"
    assert src.quality == "720p"


def test_get_sources_adds_context_to_errors():
    client = CatalogClient(make_fetcher({f"{BASE}/play/anime1/ep1": "<html></html>"}))
    with pytest.raises(NotFoundError) as exc:
        client.get_sources("anime1", "ep1")
    assert str(exc.value) == "Failed to get sources: No kwik links found on play page"
