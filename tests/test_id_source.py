"""Tests for scrapers/id_source.py - opaque-ID catalog resolution."""

import json
from unittest.mock import MagicMock

import pytest

from models.config import SourceSettings
from models.models import SourceKind
from scrapers.id_source import IdSource, is_likely_opaque_id, parse_links
from utils.exceptions import NetworkError, NotFound, UnsupportedSource

SHOW_ID = "ReooPAxPMsHM4KPMY"
# "--" + encoded "/apivtwo/clock?id=1"
ENCODED_CLOCK = "--175948514e4c4f57175b54575b5307515c0509"


def episode_payload(*source_urls):
    return {"data": {"episode": {"episodeString": "1", "sourceUrls": [{"sourceUrl": u} for u in source_urls]}}}


def links_payload(*links):
    return {"links": [{"link": link, "resolutionStr": label} for link, label in links]}


class Router:
    """Session stand-in answering by URL prefix."""

    def __init__(self, routes):
        self.routes = routes
        self.urls = []

    def request(self, method, url, timeout=None, **kwargs):
        self.urls.append(url)
        for prefix, answer in self.routes.items():
            if url.startswith(prefix):
                if isinstance(answer, Exception):
                    raise answer
                return answer
        return self.default(url)

    def default(self, url):
        raise AssertionError(f"Unexpected request to {url}")


class TestIsLikelyOpaqueId:
    @pytest.mark.parametrize("value", [SHOW_ID, "abc123XYZ", "show_id-42a"])
    def test_ids(self, value):
        assert is_likely_opaque_id(value)

    @pytest.mark.parametrize(
        "value",
        ["", "12345678", "https://example.com/show", "abc", "a" * 40, "has space id"],
    )
    def test_not_ids(self, value):
        assert not is_likely_opaque_id(value)


class TestParseLinks:
    def test_json_links(self):
        body = json.dumps(
            {
                "links": [
                    {"link": "https://cdn.example/1080.mp4", "resolutionStr": "1080p"},
                    {"link": "https://cdn.example/master.m3u8", "hls": True},
                    {"link": "not-a-url", "resolutionStr": "720p"},
                ]
            }
        )
        variants = parse_links(body)
        assert [(v.label, v.url) for v in variants] == [
            ("1080p", "https://cdn.example/1080.mp4"),
            ("hls", "https://cdn.example/master.m3u8"),
        ]

    def test_regex_fallback(self):
        body = '{"links":[{"link":"https:\\/\\/cdn.example\\/720.mp4","resolutionStr":"720p"} BROKEN'
        variants = parse_links(body)
        assert variants[0].url == "https://cdn.example/720.mp4"
        assert variants[0].label == "720p"


class TestNormalizeSourceUrl:
    def test_decodes_and_prefixes_base(self):
        source = IdSource(MagicMock(), SourceSettings(base_url="https://allanime.day"))
        assert source.normalize_source_url(ENCODED_CLOCK) == "https://allanime.day/apivtwo/clock.json?id=1"

    def test_plain_url_untouched(self):
        source = IdSource(MagicMock())
        assert source.normalize_source_url("https://host.example/e/1") == "https://host.example/e/1"


class TestIdSourceResolve:
    """Test both resolution strategies against a routed fake session."""

    def make_source(self, response, routes):
        settings = SourceSettings(api_url="https://api.example/api", base_url="https://allanime.day")
        session = Router({k: (response(200, v) if isinstance(v, (dict, str)) else v) for k, v in routes.items()})
        return IdSource(session, settings), session

    def test_requires_episode_number(self):
        with pytest.raises(UnsupportedSource):
            IdSource(MagicMock()).resolve(SHOW_ID)

    def test_enhanced_ranks_by_host(self, response):
        source, session = self.make_source(
            response,
            {
                "https://api.example/api": episode_payload(ENCODED_CLOCK, "https://other.example/src"),
                "https://allanime.day/apivtwo/clock.json": links_payload(
                    ("https://cdn.unranked.example/ep.mp4", "720p"),
                ),
                "https://other.example/src": links_payload(
                    ("https://x.sharepoint.com/ep.mp4", "1080p"),
                ),
            },
        )
        descriptor = source.resolve(SHOW_ID, 3)

        assert descriptor.urls[0] == "https://x.sharepoint.com/ep.mp4"
        assert len(descriptor.variants) == 2
        assert descriptor.headers == {"Referer": "https://allanime.to"}
        assert descriptor.kind == SourceKind.DIRECT

    def test_failing_source_skipped(self, response):
        source, _ = self.make_source(
            response,
            {
                "https://api.example/api": episode_payload("https://dead.example/src", "https://ok.example/src"),
                "https://dead.example/src": NetworkError("refused"),
                "https://ok.example/src": links_payload(("https://cdn.example/master.m3u8", "auto")),
            },
        )
        descriptor = source.resolve(SHOW_ID, 1)
        assert descriptor.urls == ["https://cdn.example/master.m3u8"]
        assert descriptor.kind == SourceKind.PLAYLIST

    def test_plain_strategy_used_for_malformed_json(self, response):
        raw = '{"data":{"episode":{"sourceUrls":[{"sourceUrl":"' + ENCODED_CLOCK + '"} TRUNCATED'
        source, session = self.make_source(
            response,
            {
                "https://api.example/api": raw,
                "https://allanime.day/apivtwo/clock.json": links_payload(("https://cdn.example/ep.mp4", "480p")),
            },
        )
        descriptor = source.resolve(SHOW_ID, 1)
        assert descriptor.urls == ["https://cdn.example/ep.mp4"]
        assert session.urls.count("https://api.example/api") == 2

    def test_no_links_anywhere(self, response):
        source, _ = self.make_source(
            response,
            {
                "https://api.example/api": episode_payload("https://empty.example/src"),
                "https://empty.example/src": {"links": []},
            },
        )
        with pytest.raises(NotFound):
            source.resolve(SHOW_ID, 1)

    def test_graphql_query_parameters(self, response):
        source, _ = self.make_source(
            response,
            {
                "https://api.example/api": episode_payload("https://ok.example/src"),
                "https://ok.example/src": links_payload(("https://cdn.example/ep.mp4", "720p")),
            },
        )
        session = MagicMock(wraps=source.session)
        source.session = session
        source.resolve(SHOW_ID, 7)

        first = session.request.call_args_list[0]
        variables = json.loads(first.kwargs["params"]["variables"])
        assert variables == {"showId": SHOW_ID, "translationType": "sub", "episodeString": "7"}
        assert first.kwargs["headers"] == {"Referer": "https://allanime.to"}
