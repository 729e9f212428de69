"""Integration tests for productshot.api.main — FastAPI REST API endpoints.

All tests use the FastAPI TestClient with a pipeline wired around a scripted
fake Gemini client so that no network access occurs. Tests cover:

- ``GET /api/health`` — Liveness payload.
- ``POST /api/generate`` — Square canvas generation.
- ``POST /api/generate/exact`` — Exact-size generation.
- Error responses and their status codes.
"""

from __future__ import annotations

import base64
import io

from PIL import Image

from productshot import __version__


def _decode(payload: dict) -> Image.Image:
    img = Image.open(io.BytesIO(base64.b64decode(payload["base64"])))
    img.load()
    return img


# ---------------------------------------------------------------------------
# Health endpoint tests.
# ---------------------------------------------------------------------------


class TestHealth:
    """Test GET /api/health."""

    def test_health(self, test_client):
        resp = test_client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["endpoint"] == "/api/generate"
        assert data["version"] == __version__


# ---------------------------------------------------------------------------
# Canvas generation tests.
# ---------------------------------------------------------------------------


class TestGenerateCanvas:
    """Test POST /api/generate — square canvases."""

    @staticmethod
    def _make_payload(references, **overrides) -> dict:
        payload = {
            "prompt_text": "studio shot of a red kettle",
            "references": references,
            "output_count": 2,
            "target_size": 512,
        }
        payload.update(overrides)
        return payload

    def test_generate_returns_canvases(self, test_client, make_image, data_url):
        refs = [data_url(make_image(400, 300, "JPEG"), "image/jpeg")]
        resp = test_client.post("/api/generate", json=self._make_payload(refs))

        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["prompt_used"] == "studio shot of a red kettle"
        assert len(data["images"]) == 2
        for image in data["images"]:
            assert image["mime_type"] == "image/jpeg"
            assert (image["width"], image["height"]) == (512, 512)
            assert _decode(image).size == (512, 512)

    def test_override_prompt_reported(self, test_client, make_image, data_url):
        refs = [data_url(make_image(100, 100))]
        resp = test_client.post(
            "/api/generate",
            json=self._make_payload(refs, override_prompt_text="kettle on marble"),
        )
        assert resp.json()["prompt_used"] == "kettle on marble"

    def test_default_prompt_reported(self, test_client, make_image, data_url):
        refs = [data_url(make_image(100, 100))]
        resp = test_client.post("/api/generate", json=self._make_payload(refs, prompt_text=""))
        assert resp.status_code == 200
        assert "e-commerce" in resp.json()["prompt_used"]

    def test_output_count_clamped(self, test_client, fake_client, make_image, data_url):
        refs = [data_url(make_image(100, 100))]
        resp = test_client.post("/api/generate", json=self._make_payload(refs, output_count=9))
        assert resp.status_code == 200
        assert len(resp.json()["images"]) == 6
        assert len(fake_client.calls) == 6

    def test_cover_fit_mode(self, test_client, make_image, data_url):
        refs = [data_url(make_image(100, 100))]
        resp = test_client.post(
            "/api/generate", json=self._make_payload(refs, fit_mode="cover", output_count=1)
        )
        assert resp.status_code == 200
        assert _decode(resp.json()["images"][0]).size == (512, 512)

    def test_missing_references(self, test_client, fake_client):
        resp = test_client.post("/api/generate", json=self._make_payload([]))
        assert resp.status_code == 400
        data = resp.json()
        assert data["ok"] is False
        assert data["stage"] == "request"
        assert fake_client.calls == []

    def test_string_output_count_rejected(self, test_client, make_image, data_url):
        refs = [data_url(make_image(100, 100))]
        resp = test_client.post("/api/generate", json=self._make_payload(refs, output_count="2"))
        assert resp.status_code == 422

    def test_unknown_field_rejected(self, test_client, make_image, data_url):
        refs = [data_url(make_image(100, 100))]
        resp = test_client.post("/api/generate", json=self._make_payload(refs, seed=42))
        assert resp.status_code == 422

    def test_bad_reference(self, test_client):
        resp = test_client.post(
            "/api/generate", json=self._make_payload(["data:image/png;base64,%%%"])
        )
        assert resp.status_code == 422
        assert resp.json()["stage"] == "reference"

    def test_backend_failure(self, test_client, fake_client, make_image, data_url):
        fake_client.behaviours["pro-model"] = RuntimeError("pro down")
        fake_client.behaviours["std-model"] = RuntimeError("std down")
        refs = [data_url(make_image(100, 100))]

        resp = test_client.post("/api/generate", json=self._make_payload(refs, output_count=1))
        assert resp.status_code == 502
        data = resp.json()
        assert data["ok"] is False
        assert data["stage"] == "dispatch"
        assert "pro down" in data["error"]
        assert "std down" in data["error"]


# ---------------------------------------------------------------------------
# Exact-size generation tests.
# ---------------------------------------------------------------------------


class TestGenerateExact:
    """Test POST /api/generate/exact — cover-cropped exact output."""

    @staticmethod
    def _make_payload(references, **overrides) -> dict:
        payload = {
            "prompt_text": "kettle banner",
            "references": references,
            "target_width": 640,
            "target_height": 360,
        }
        payload.update(overrides)
        return payload

    def test_exact_jpeg_by_default(self, test_client, make_image, data_url):
        refs = [data_url(make_image(300, 300))]
        resp = test_client.post("/api/generate/exact", json=self._make_payload(refs))

        assert resp.status_code == 200
        image = resp.json()["images"][0]
        assert image["mime_type"] == "image/jpeg"
        assert (image["width"], image["height"]) == (640, 360)
        assert _decode(image).size == (640, 360)

    def test_exact_png(self, test_client, make_image, data_url):
        refs = [data_url(make_image(300, 300))]
        resp = test_client.post("/api/generate/exact", json=self._make_payload(refs, output_format="png"))
        image = resp.json()["images"][0]
        assert image["mime_type"] == "image/png"
        assert _decode(image).format == "PNG"

    def test_exact_bmp(self, test_client, make_image, data_url):
        """The test configuration writes BMP with the manual encoder."""
        refs = [data_url(make_image(300, 300))]
        resp = test_client.post("/api/generate/exact", json=self._make_payload(refs, output_format="bmp"))
        image = resp.json()["images"][0]
        assert image["mime_type"] == "image/bmp"
        assert _decode(image).size == (640, 360)

    def test_jpg_alias(self, test_client, make_image, data_url):
        refs = [data_url(make_image(300, 300))]
        resp = test_client.post("/api/generate/exact", json=self._make_payload(refs, output_format="JPG"))
        assert resp.json()["images"][0]["mime_type"] == "image/jpeg"

    def test_unknown_format(self, test_client, fake_client, make_image, data_url):
        refs = [data_url(make_image(300, 300))]
        resp = test_client.post("/api/generate/exact", json=self._make_payload(refs, output_format="tiff"))
        assert resp.status_code == 400
        assert resp.json()["stage"] == "request"
        assert fake_client.calls == []

    def test_dimensions_required(self, test_client, make_image, data_url):
        refs = [data_url(make_image(300, 300))]
        payload = self._make_payload(refs)
        del payload["target_height"]
        resp = test_client.post("/api/generate/exact", json=payload)
        assert resp.status_code == 422

    def test_oversized_dimensions(self, test_client, fake_client, make_image, data_url):
        refs = [data_url(make_image(300, 300))]
        resp = test_client.post("/api/generate/exact", json=self._make_payload(refs, target_width=20000))
        assert resp.status_code == 400
        assert fake_client.calls == []
