from __future__ import annotations

from pathlib import Path

import jwt
import pytest
from fastapi.testclient import TestClient

from photocloud.core.config import get_settings
from photocloud.main import create_app

from tests.conftest import JWT_AUDIENCE, JWT_ISSUER, JWT_SECRET, image_bytes


def _upload(client, headers, name, payload, mime, *, album_id="album-1", content_id=None):
    data = {"album_id": album_id}
    if content_id:
        data["content_id"] = content_id
    return client.post("/v1/files", files={"file": (name, payload, mime)}, data=data, headers=headers)


def test_v1_health_ok(client):
    resp = client.get("/v1/health")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["status"] == "ok"
    assert payload["processing_active"] == 0
    assert payload["processing_limit"] == 2


def test_upload_requires_token(client, tmp_path: Path):
    resp = _upload(client, {}, "a.jpg", image_bytes(tmp_path, 32, 32), "image/jpeg")
    assert resp.status_code == 401


def test_upload_and_serve_image(client, user_headers, other_user_headers, tmp_path: Path):
    payload = image_bytes(tmp_path, 1500, 1000)
    resp = _upload(client, user_headers, "Beach.jpg", payload, "image/jpeg")
    assert resp.status_code == 201, resp.text
    info = resp.json()
    assert info["width"] == 1500
    assert info["height"] == 1000
    assert info["display_order"] == 0
    assert info["derivatives"] == {"thumbnail": True, "medium": True, "large": True, "transcoded_video": False}
    assert info["url"] == f"/v1/i/{info['public_token']}"

    fetched = client.get(f"/v1/files/{info['id']}", headers=user_headers)
    assert fetched.status_code == 200
    assert fetched.json()["checksum"] == info["checksum"]

    foreign = client.get(f"/v1/files/{info['id']}", headers=other_user_headers)
    assert foreign.status_code == 404
    assert foreign.json()["error"] == "not_found"

    original = client.get(info["url"])
    assert original.status_code == 200
    assert original.content == payload
    assert original.headers["content-type"] == "image/jpeg"
    assert original.headers["etag"] == f'"{info["checksum"]}-0"'
    assert original.headers["cache-control"] == "public, max-age=31536000"
    assert original.headers["content-disposition"] == 'inline; filename="Beach.jpg"'
    assert "last-modified" in original.headers

    thumb = client.get(info["url"], params={"size": "thumb"})
    assert thumb.status_code == 200
    assert len(thumb.content) < len(payload)

    cached = client.get(info["url"], headers={"If-None-Match": original.headers["etag"]})
    assert cached.status_code == 304

    bad_size = client.get(info["url"], params={"size": "poster"})
    assert bad_size.status_code == 400

    assert client.get("/v1/i/" + "0" * 48).status_code == 404


def test_duplicate_upload_returns_same_asset(client, user_headers, tmp_path: Path):
    payload = image_bytes(tmp_path, 48, 48)
    first = _upload(client, user_headers, "a.jpg", payload, "image/jpeg").json()
    second = _upload(client, user_headers, "b.jpg", payload, "image/jpeg")
    assert second.status_code == 201
    assert second.json()["id"] == first["id"]


def test_rejects_unsupported_type(client, user_headers):
    resp = _upload(client, user_headers, "notes.txt", b"hello", "text/plain")
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_failed"


def test_rejects_oversized_upload(monkeypatch, configure_environment, fake_runner, user_headers):
    monkeypatch.setenv("PHOTOCLOUD_MAX_FILE_SIZE_BYTES", "16")
    get_settings.cache_clear()
    with TestClient(create_app(runner=fake_runner)) as client:
        resp = _upload(client, user_headers, "a.jpg", b"x" * 64, "image/jpeg")
    assert resp.status_code == 413
    assert resp.json()["error"] == "file_too_large"


def test_heic_conversion_failure_is_unprocessable(client, fake_runner, user_headers):
    fake_runner.failures.add("heic")
    resp = _upload(client, user_headers, "IMG_0001.HEIC", b"heic-container", "image/heic")
    assert resp.status_code == 422
    assert resp.json()["error"] == "heic_conversion_failed"


def test_video_is_range_served(client, user_headers):
    resp = _upload(client, user_headers, "clip.mov", b"mov-bytes", "video/quicktime")
    assert resp.status_code == 201, resp.text
    info = resp.json()
    assert info["duration_ms"] == 12500
    assert info["derivatives"]["transcoded_video"] is True

    partial = client.get(info["url"], headers={"Range": "bytes=0-3"})
    assert partial.status_code == 206
    assert partial.content == b"fake"
    assert partial.headers["content-range"] == "bytes 0-3/8"
    assert partial.headers["content-length"] == "4"
    assert partial.headers["accept-ranges"] == "bytes"
    assert partial.headers["content-type"] == "video/mp4"

    full = client.get(info["url"])
    assert full.status_code == 200
    assert full.content == b"fake-mp4"

    unsatisfiable = client.get(info["url"], headers={"Range": "bytes=100-"})
    assert unsatisfiable.status_code == 416
    assert unsatisfiable.headers["content-range"] == "bytes */8"

    original = client.get(info["url"], params={"size": "original"})
    assert original.content == b"mov-bytes"


def test_rotate_left_issues_new_token(client, user_headers, tmp_path: Path):
    info = _upload(client, user_headers, "card.png", image_bytes(tmp_path, 40, 20, name="card.png"), "image/png").json()

    resp = client.post(f"/v1/files/{info['id']}/rotate-left", headers=user_headers)
    assert resp.status_code == 200, resp.text
    rotated = resp.json()
    assert rotated["rotation"] == 90
    assert (rotated["width"], rotated["height"]) == (20, 40)
    assert rotated["public_token"] != info["public_token"]

    assert client.get(info["url"]).status_code == 404
    served = client.get(rotated["url"], headers={"If-None-Match": f'"{info["checksum"]}-0"'})
    assert served.status_code == 200
    assert served.headers["etag"] == f'"{info["checksum"]}-1"'


def test_delete_file(client, user_headers, other_user_headers, tmp_path: Path):
    info = _upload(client, user_headers, "a.jpg", image_bytes(tmp_path, 32, 32), "image/jpeg").json()

    assert client.delete(f"/v1/files/{info['id']}", headers=other_user_headers).status_code == 404
    assert client.delete(f"/v1/files/{info['id']}", headers=user_headers).status_code == 204
    assert client.get(f"/v1/files/{info['id']}", headers=user_headers).status_code == 404
    assert client.get(info["url"]).status_code == 404


def test_recording_upload_and_playback(client, user_headers):
    resp = client.post(
        "/v1/recordings",
        files={"file": ("memo.webm", b"webm-bytes", "audio/webm")},
        data={"album_id": "album-1"},
        headers=user_headers,
    )
    assert resp.status_code == 201, resp.text
    info = resp.json()
    assert info["mime_type"] == "audio/webm"

    audio = client.get(info["url"], headers={"Range": "bytes=0-3"})
    assert audio.status_code == 206
    assert audio.content == b"OggS"
    assert audio.headers["cache-control"] == "public, max-age=31536000, immutable"

    assert client.get("/v1/recordings/" + "f" * 48 + "/audio").status_code == 404


def test_admin_env_check_requires_scope(client, user_headers):
    resp = client.get("/v1/admin/env-check", headers=user_headers)
    assert resp.status_code == 403


def test_admin_env_check(client, admin_headers, fake_runner):
    resp = client.get("/v1/admin/env-check", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"ffmpeg": True, "ffprobe": True, "imagemagick": True}
    assert len(fake_runner.calls_for("version")) == 3


def test_backfill_requires_admin(client, user_headers):
    assert client.post("/v1/admin/derivatives/backfill", headers=user_headers).status_code == 403


def test_backfill_job_is_accepted(client, admin_headers, user_headers, tmp_path: Path):
    _upload(client, user_headers, "a.jpg", image_bytes(tmp_path, 32, 32), "image/jpeg")

    resp = client.post("/v1/admin/derivatives/backfill", params={"overwrite": "true"}, headers=admin_headers)
    assert resp.status_code == 202, resp.text
    body = resp.json()
    assert body["job_id"]
    assert body["task"] == "backfill_derivatives"
    assert body["overwrite"] is True


def test_dev_token_round_trip(client):
    resp = client.post("/v1/admin/dev-token", json={"user_id": "user-7", "scopes": ["admin"]})
    assert resp.status_code == 200
    token = resp.json()["token"]
    decoded = jwt.decode(token, JWT_SECRET, algorithms=["HS256"], audience=JWT_AUDIENCE, issuer=JWT_ISSUER)
    assert decoded["sub"] == "user-7"
    assert decoded["scopes"] == ["admin"]

    resp = client.get("/v1/admin/env-check", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200


@pytest.mark.parametrize("token", ["not-a-jwt", jwt.encode({"sub": "x"}, "wrong-secret", algorithm="HS256")])
def test_invalid_tokens_are_rejected(client, token):
    resp = client.get("/v1/files/1", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
