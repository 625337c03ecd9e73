from __future__ import annotations

import io

import pytest
from PIL import Image
from pypdf import PdfWriter


def _image(size=(200, 100), color=(10, 120, 200, 255), fmt="PNG") -> bytes:
    out = io.BytesIO()
    img = Image.new("RGBA", size, color)
    if fmt == "JPEG":
        img = img.convert("RGB")
    img.save(out, format=fmt)
    return out.getvalue()


def _blank_pdf(pages: int = 1) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


def test_crop_to_logo_fits_into_square_canvas():
    from proposalhub.services.images import crop_to_logo

    png = crop_to_logo(_image(), {"x": 0, "y": 0, "width": 1, "height": 1})
    with Image.open(io.BytesIO(png)) as img:
        assert img.format == "PNG"
        assert img.size == (400, 400)
        assert img.mode == "RGBA"
        # 2:1 source is letterboxed: transparent top rows, opaque middle.
        assert img.getpixel((200, 10))[3] == 0
        assert img.getpixel((200, 200))[3] == 255


def test_crop_uses_relative_coordinates():
    from proposalhub.services.images import _relative_box

    assert _relative_box({"x": 0.25, "y": 0.5, "width": 0.5, "height": 0.5}, 200, 100) == (50, 50, 150, 100)


@pytest.mark.parametrize(
    "crop",
    [
        {"x": 0, "y": 0, "width": 0, "height": 1},
        {"x": 0.5, "y": 0, "width": 0.8, "height": 1},
        {"x": -0.1, "y": 0, "width": 0.5, "height": 0.5},
        {"x": "left", "y": 0, "width": 1, "height": 1},
        {"x": 0, "y": 0},
    ],
)
def test_bad_crops_are_rejected(crop):
    from proposalhub.services.images import ImageProcessingError, crop_to_logo

    with pytest.raises(ImageProcessingError):
        crop_to_logo(_image(), crop)


def test_unreadable_image_is_rejected():
    from proposalhub.services.images import ImageProcessingError, crop_to_logo, sniff_image_extension

    with pytest.raises(ImageProcessingError):
        crop_to_logo(b"definitely not an image", {"x": 0, "y": 0, "width": 1, "height": 1})
    assert sniff_image_extension(b"nope") is None
    assert sniff_image_extension(_image(fmt="JPEG")) == "jpg"


def test_upload_image_stores_allowed_types(client, signup, s3):
    tenant = signup()
    data = _image()

    r = client.post("/api/upload", files={"file": ("logo.PNG", data, "image/png")}, headers=tenant.headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["key"].startswith("logos/") and body["key"].endswith(".png")
    assert body["url"].startswith(f"https://test-assets.s3.test/{body['key']}?expires=")
    assert s3.objects[body["key"]]["body"] == data
    assert s3.objects[body["key"]]["content_type"] == "image/png"

    r = client.post("/api/upload", files={"file": ("notes.txt", b"hello", "text/plain")}, headers=tenant.headers)
    assert r.status_code == 400
    r = client.post("/api/upload", files={"file": ("empty.jpg", b"", "image/jpeg")}, headers=tenant.headers)
    assert r.status_code == 400


def test_crop_image_route_stores_png(client, signup, s3, monkeypatch):
    from proposalhub.routers import uploads

    tenant = signup()
    fetched: list[str] = []

    def _fetch(url: str) -> bytes:
        fetched.append(url)
        return _image(size=(300, 300))

    monkeypatch.setattr(uploads, "fetch_image_bytes", _fetch)

    r = client.post(
        "/api/crop-image",
        json={"imageUrl": "https://cdn.test/raw.png", "crop": {"x": 0.1, "y": 0.1, "width": 0.5, "height": 0.5}},
        headers=tenant.headers,
    )
    assert r.status_code == 200, r.text
    key = r.json()["key"]
    assert fetched == ["https://cdn.test/raw.png"]
    assert s3.objects[key]["content_type"] == "image/png"
    with Image.open(io.BytesIO(s3.objects[key]["body"])) as img:
        assert img.size == (400, 400)

    r = client.post(
        "/api/crop-image",
        json={"imageUrl": "https://cdn.test/raw.png", "crop": {"x": 0.9, "y": 0, "width": 0.5, "height": 1}},
        headers=tenant.headers,
    )
    assert r.status_code == 400
    r = client.post("/api/crop-image", json={"imageUrl": "https://cdn.test/raw.png"}, headers=tenant.headers)
    assert r.status_code == 400


def test_crop_image_rejects_non_http_urls(client, signup):
    tenant = signup()
    r = client.post(
        "/api/crop-image",
        json={"imageUrl": "file:///etc/passwd", "crop": {"x": 0, "y": 0, "width": 1, "height": 1}},
        headers=tenant.headers,
    )
    assert r.status_code == 400


def test_upload_pdf_returns_page_texts(client, signup, s3):
    tenant = signup()
    pdf = _blank_pdf(pages=2)

    r = client.post("/api/upload-pdf", files={"file": ("rfp.pdf", pdf, "application/pdf")}, headers=tenant.headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["pageCount"] == 2
    assert body["pages"] == [{"page": 1, "text": ""}, {"page": 2, "text": ""}]
    assert body["key"].startswith("proposals/unassigned/")
    assert s3.objects[body["key"]]["body"] == pdf


def test_upload_pdf_validates_type_and_proposal(client, signup):
    tenant = signup()

    r = client.post("/api/upload-pdf", files={"file": ("notes.txt", b"hello", "text/plain")}, headers=tenant.headers)
    assert r.status_code == 400
    r = client.post(
        "/api/upload-pdf", files={"file": ("broken.pdf", b"%PDF-garbage", "application/pdf")}, headers=tenant.headers
    )
    assert r.status_code == 400
    r = client.post(
        "/api/upload-pdf",
        files={"file": ("rfp.pdf", _blank_pdf(), "application/pdf")},
        data={"proposalId": "proposal_missing"},
        headers=tenant.headers,
    )
    assert r.status_code == 404


def test_upload_handlers_run_in_the_threadpool():
    import inspect

    from fastapi.routing import APIRoute

    from proposalhub.main import create_app

    upload_paths = {
        "/api/upload",
        "/api/upload-pdf",
        "/api/crop-image",
        "/api/solutions/{solution_id}/media",
        "/api/opportunities",
        "/api/rfps",
        "/api/proposals/{proposal_id}/documents",
    }
    routes = [r for r in create_app().routes if isinstance(r, APIRoute) and r.path in upload_paths]
    assert {r.path for r in routes} == upload_paths
    assert [r.path for r in routes if inspect.iscoroutinefunction(r.endpoint)] == []
