"""Tests for scrapers/page_source.py - episode page resolution."""

from unittest.mock import MagicMock

import pytest

from models.models import SourceKind
from scrapers.page_source import PageSource, find_player_reference, scan_for_media_url
from utils.exceptions import NotFound, ParseError

PAGE_URL = "https://aggregator.example/watch/dandadan/1"


def page_source(*responses):
    session = MagicMock()
    session.request.side_effect = list(responses)
    return PageSource(session), session


class TestFindPlayerReference:
    """Test player detection in HTML."""

    def test_video_tag(self):
        html = '<html><body><video src="https://cdn.example/ep1.mp4"></video></body></html>'
        assert find_player_reference(html) == "https://cdn.example/ep1.mp4"

    def test_data_attribute(self):
        html = '<div class="player" data-video-src="https://cdn.example/ep1.mp4"></div>'
        assert find_player_reference(html) == "https://cdn.example/ep1.mp4"

    def test_relative_reference_made_absolute(self):
        html = '<div data-src="/video/abc123"></div>'
        assert find_player_reference(html, PAGE_URL) == "https://aggregator.example/video/abc123"

    def test_iframe(self):
        html = '<iframe src="https://host.example/player/42"></iframe>'
        assert find_player_reference(html) == "https://host.example/player/42"

    def test_inline_script_fallback(self):
        html = '<script>var file = "https:\\/\\/cdn.example\\/hls\\/master.m3u8?t=1";</script>'
        assert find_player_reference(html) == "https://cdn.example/hls/master.m3u8?t=1"

    def test_blob_source_skipped_for_next_attribute(self):
        html = (
            '<video src="blob:https://x.example/abc"></video>'
            '<div data-video-src="https://cdn.example/ep1.mp4"></div>'
        )
        assert find_player_reference(html) == "https://cdn.example/ep1.mp4"

    def test_data_uri_falls_back_to_script_scan(self):
        html = '<video src="data:video/mp4;base64,AAAA"></video><script>f="https://cdn.example/ep1.mp4"</script>'
        assert find_player_reference(html) == "https://cdn.example/ep1.mp4"

    def test_nothing_found(self):
        assert find_player_reference("<html><p>No player here</p></html>") is None


class TestScanForMediaUrl:
    def test_blogger_embed_preferred(self):
        text = (
            "https://cdn.example/a.mp4 "
            "https://www.blogger.com/video.g?token=AD6v5dx-abc_123"
        )
        assert scan_for_media_url(text) == "https://www.blogger.com/video.g?token=AD6v5dx-abc_123"


class TestPageSourceResolve:
    """Test PageSource.resolve() with a mocked session."""

    def test_can_handle(self):
        source = PageSource(MagicMock())
        assert source.can_handle(PAGE_URL)
        assert not source.can_handle("ReooPAxPMsHM4KPMY")

    def test_direct_video(self, response):
        source, _ = page_source(
            response(200, '<video src="https://cdn.example/ep1.mp4"></video>')
        )
        descriptor = source.resolve(PAGE_URL)
        assert descriptor.urls == ["https://cdn.example/ep1.mp4"]
        assert descriptor.kind == SourceKind.DIRECT

    def test_quality_endpoint_followed(self, response):
        payload = {
            "data": [
                {"src": "https://cdn.example/ep1-480.mp4", "label": "480p"},
                {"src": "https://cdn.example/ep1-1080.mp4", "label": "1080p"},
            ]
        }
        source, session = page_source(
            response(200, '<div data-video-src="/video/ep1"></div>'),
            response(200, payload),
        )
        descriptor = source.resolve(PAGE_URL)

        assert [v.label for v in descriptor.variants] == ["480p", "1080p"]
        assert session.request.call_args_list[1].args[1] == "https://aggregator.example/video/ep1"

    def test_playlist_kind(self, response):
        payload = {"data": [{"src": "https://cdn.example/master.m3u8", "label": "auto"}]}
        source, _ = page_source(response(200, payload))
        descriptor = source.resolve("https://aggregator.example/video/ep1")
        assert descriptor.kind == SourceKind.PLAYLIST

    def test_no_player_raises_not_found(self, response):
        source, _ = page_source(response(200, "<html></html>"))
        with pytest.raises(NotFound):
            source.resolve(PAGE_URL)

    def test_only_blob_player_raises_not_found(self, response):
        source, _ = page_source(response(200, '<video src="blob:https://x.example/abc"></video>'))
        with pytest.raises(NotFound):
            source.resolve(PAGE_URL)

    def test_non_http_variants_dropped(self, response):
        body = {"data": [{"src": "blob:https://x.example/1", "label": "1080p"}, {"src": "/v/480.mp4", "label": "480p"}]}
        source, _ = page_source(response(200, body))
        descriptor = source.resolve("https://aggregator.example/video/ep1")
        assert [v.label for v in descriptor.variants] == ["480p"]
        assert descriptor.variants[0].url == "https://aggregator.example/v/480.mp4"

    def test_unexpected_json_shape(self, response):
        source, _ = page_source(response(200, {"sources": []}))
        with pytest.raises(ParseError):
            source.resolve("https://aggregator.example/video/ep1")

    def test_empty_variant_list(self, response):
        source, _ = page_source(response(200, {"data": [{"label": "720p"}]}))
        with pytest.raises(NotFound):
            source.resolve("https://aggregator.example/video/ep1")

    def test_non_json_endpoint_scanned(self, response):
        source, _ = page_source(response(200, "file: https://cdn.example/ep1.mp4"))
        descriptor = source.resolve("https://aggregator.example/video/ep1")
        assert descriptor.urls == ["https://cdn.example/ep1.mp4"]

    def test_missing_page(self, response):
        source, _ = page_source(response(404))
        with pytest.raises(NotFound):
            source.resolve(PAGE_URL)
