import httpx

from ui.pages.offline_test import extract_items


def test_items_are_read_from_the_payload():
    res = httpx.Response(200, json={"items": [{"name": "Ada"}, "junk"]})
    assert extract_items(res) == [{"name": "Ada"}]


def test_html_fallback_reads_as_empty():
    res = httpx.Response(200, text="<html>offline</html>", headers={"Content-Type": "text/html"})
    assert extract_items(res) == []


def test_other_json_shapes_read_as_empty():
    assert extract_items(httpx.Response(200, json=[{"name": "Ada"}])) == []
    assert extract_items(httpx.Response(200, json={"items": None})) == []
    assert extract_items(httpx.Response(200, json={"items": "nope"})) == []
