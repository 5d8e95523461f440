"""Tests for services/skip_service.py - AniSkip lookups and download sidecars."""

import json
from unittest.mock import MagicMock

import pytest

from models.config import SkipSettings
from models.models import EpisodeRef, SkipInterval, SkipTimes
from services.skip_service import (
    AniSkipProvider,
    SidecarSkipProvider,
    parse_skip_response,
    read_skip_sidecar,
    sidecar_path,
    write_skip_sidecar,
)
from utils.exceptions import NetworkError, ParseError

ANISKIP_BODY = {
    "found": True,
    "results": [
        {"interval": {"start_time": 85.2, "end_time": 175.0}, "skip_type": "op"},
        {"interval": {"start_time": 1290.0, "end_time": 1380.5}, "skip_type": "ed"},
    ],
}


class TestParseSkipResponse:
    def test_op_and_ed(self):
        times = parse_skip_response(ANISKIP_BODY)
        assert times.op == SkipInterval(start=85.2, end=175.0)
        assert times.ed.end == 1380.5

    def test_not_found(self):
        assert parse_skip_response({"found": False, "results": []}).empty

    def test_malformed(self):
        with pytest.raises(ParseError):
            parse_skip_response({"found": True, "results": [{"skip_type": "op"}]})


class TestAniSkipProvider:
    """Test the HTTP provider with a mocked session."""

    def test_fetch(self, sample_episode, response):
        session = MagicMock()
        session.request.return_value = response(200, ANISKIP_BODY)
        provider = AniSkipProvider(session, SkipSettings(api_url="https://api.aniskip.com/v1/skip-times"))

        times = provider.fetch(sample_episode)

        assert times.op.start == 85.2
        url = session.request.call_args.args[1]
        assert url == "https://api.aniskip.com/v1/skip-times/57334/1"
        assert session.request.call_args.kwargs["params"] == [("types", "op"), ("types", "ed")]

    def test_no_mal_id_skips_request(self):
        session = MagicMock()
        episode = EpisodeRef(series="Show", number=1, url="https://a.example/1")
        assert AniSkipProvider(session).fetch(episode).empty
        session.request.assert_not_called()

    def test_disabled(self, sample_episode):
        session = MagicMock()
        assert AniSkipProvider(session, SkipSettings(enabled=False)).fetch(sample_episode).empty
        session.request.assert_not_called()

    def test_404_is_empty(self, sample_episode, response):
        session = MagicMock()
        session.request.return_value = response(404)
        assert AniSkipProvider(session).fetch(sample_episode).empty

    def test_server_error_propagates(self, sample_episode, response):
        session = MagicMock()
        session.request.return_value = response(500)
        with pytest.raises(NetworkError):
            AniSkipProvider(session).fetch(sample_episode)


class TestSidecar:
    def test_write_and_read(self, tmp_path, sample_episode):
        video = tmp_path / "1.mp4"
        times = parse_skip_response(ANISKIP_BODY)

        path = write_skip_sidecar(video, times, sample_episode)

        assert path == sidecar_path(video) == tmp_path / "1.skips.json"
        data = json.loads(path.read_text())
        assert data["op_start"] == 85 and data["ed_end"] == 1380
        assert data["episode"] == 1
        restored = read_skip_sidecar(video)
        assert restored.op == SkipInterval(start=85, end=175)

    def test_empty_times_not_written(self, tmp_path, sample_episode):
        assert write_skip_sidecar(tmp_path / "1.mp4", SkipTimes(), sample_episode) is None
        assert not (tmp_path / "1.skips.json").exists()

    def test_sidecar_provider_falls_back(self, tmp_path, sample_episode):
        fallback = MagicMock()
        fallback.fetch.return_value = SkipTimes(op=SkipInterval(start=0, end=90))
        provider = SidecarSkipProvider(tmp_path / "1.mp4", fallback)

        assert provider.fetch(sample_episode).op.end == 90
        fallback.fetch.assert_called_once_with(sample_episode)

    @pytest.mark.parametrize(
        "payload",
        [
            {"op_start": 200, "op_end": 100},
            {"op_start": "soon", "op_end": 90},
            ["not", "a", "dict"],
        ],
    )
    def test_invalid_sidecar_reads_as_empty(self, tmp_path, payload):
        (tmp_path / "1.skips.json").write_text(json.dumps(payload))
        assert read_skip_sidecar(tmp_path / "1.mp4").empty

    def test_invalid_sidecar_uses_fallback(self, tmp_path, sample_episode):
        (tmp_path / "1.skips.json").write_text(json.dumps({"op_start": 200, "op_end": 100}))
        fallback = MagicMock()
        fallback.fetch.return_value = SkipTimes(ed=SkipInterval(start=1290, end=1380))
        provider = SidecarSkipProvider(tmp_path / "1.mp4", fallback)

        assert provider.fetch(sample_episode).ed.start == 1290
