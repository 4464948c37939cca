"""Tests for image URL resolution and asset probing."""
from unittest.mock import MagicMock, patch

import requests
from PIL import Image

from settings import Settings
from utils.assets import make_url_resolver, probe_asset


def _png(path):
    Image.new("RGB", (8, 8), (200, 40, 40)).save(path, format="PNG")
    return path


def _http_response(content: bytes, status: int = 200) -> MagicMock:
    response = MagicMock()
    response.content = content
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return response


class TestUrlResolver:
    def test_base_url(self, tmp_path):
        resolve = make_url_resolver(Settings(project_dir=tmp_path, asset_base_url="https://cdn.example.com/"))
        assert resolve("img 1.jpg") == "https://cdn.example.com/uploads/img%201.jpg"

    def test_local_uploads(self, tmp_path):
        resolve = make_url_resolver(Settings(project_dir=tmp_path, asset_base_url=None))
        url = resolve("a.png")
        assert url.startswith("file://")
        assert url.endswith("/uploads/a.png")


class TestProbeAsset:
    def test_valid_local_image(self, tmp_path):
        assert probe_asset(str(_png(tmp_path / "ok.png"))) is True

    def test_file_uri(self, tmp_path):
        assert probe_asset(_png(tmp_path / "ok.png").resolve().as_uri()) is True

    def test_corrupt_image(self, tmp_path):
        path = tmp_path / "bad.png"
        path.write_bytes(b"definitely not an image")
        assert probe_asset(str(path)) is False

    def test_missing_file(self, tmp_path):
        assert probe_asset(str(tmp_path / "absent.png")) is False

    def test_empty_url(self):
        assert probe_asset("") is False

    def test_http_image(self, tmp_path):
        content = _png(tmp_path / "remote.png").read_bytes()
        with patch("utils.assets.requests.get", return_value=_http_response(content)) as get:
            assert probe_asset("https://cdn.example.com/uploads/remote.png", timeout=3.0) is True
        get.assert_called_once_with("https://cdn.example.com/uploads/remote.png", timeout=3.0)

    def test_http_error_status(self):
        with patch("utils.assets.requests.get", return_value=_http_response(b"", status=404)):
            assert probe_asset("https://cdn.example.com/uploads/missing.png") is False

    def test_http_connection_error(self):
        with patch("utils.assets.requests.get", side_effect=requests.ConnectionError("down")):
            assert probe_asset("https://cdn.example.com/uploads/x.png") is False
