import asyncio

import cloudinary.api
import pytest

from lostfound_chat.utils.media import CloudinaryMediaStore, InMemoryMediaStore, extract_public_id


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://res.cloudinary.com/demo/image/upload/v1712345678/messages/abc123.jpg", "messages/abc123"),
        ("https://res.cloudinary.com/demo/image/upload/messages/abc123.png", "messages/abc123"),
        ("https://res.cloudinary.com/demo/image/upload/v2/a/b/c.webp?x=1", "a/b/c"),
        ("https://example.com/photos/abc.jpg", None),
        ("https://res.cloudinary.com/demo/image/fetch/abc.jpg", None),
        ("", None),
    ],
)
def test_extract_public_id(url, expected):
    assert extract_public_id(url) == expected


def test_cloudinary_delete_many_batches_and_accepts_not_found(monkeypatch):
    calls = []

    def fake_delete_resources(public_ids, **kwargs):
        calls.append(list(public_ids))
        return {"deleted": {pid: ("not_found" if pid.endswith("gone") else "deleted") for pid in public_ids}}

    monkeypatch.setattr(cloudinary.api, "delete_resources", fake_delete_resources)
    store = CloudinaryMediaStore("demo", "key", "secret")
    urls = [f"https://res.cloudinary.com/demo/image/upload/v1/messages/p{i}.jpg" for i in range(150)]
    urls.append("https://res.cloudinary.com/demo/image/upload/v1/messages/gone.jpg")
    urls.append("https://example.com/elsewhere.jpg")

    result = asyncio.run(store.delete_many(urls + urls[:3]))

    assert [len(c) for c in calls] == [100, 51]
    assert len(result.deleted) == 151
    assert result.failed == ["https://example.com/elsewhere.jpg"]
    assert not result.success


def test_cloudinary_errors_become_failures(monkeypatch):
    def boom(public_ids, **kwargs):
        raise RuntimeError("rate limited")

    monkeypatch.setattr(cloudinary.api, "delete_resources", boom)
    store = CloudinaryMediaStore("demo", "key", "secret")

    result = asyncio.run(store.delete_many(["https://res.cloudinary.com/demo/image/upload/v1/messages/a.jpg"]))

    assert result.deleted == []
    assert len(result.failed) == 1


def test_in_memory_store_tracks_uploads_and_failures():
    store = InMemoryMediaStore(fail_urls=["https://res.cloudinary.com/x/image/upload/stuck.jpg"])
    uploaded = asyncio.run(store.upload(b"\x00\x01", folder="ids"))
    store.add("https://res.cloudinary.com/x/image/upload/stuck.jpg")

    result = asyncio.run(store.delete_many([uploaded, "https://res.cloudinary.com/x/image/upload/stuck.jpg", None]))

    assert "/ids/" in uploaded
    assert result.deleted == [uploaded]
    assert result.failed == ["https://res.cloudinary.com/x/image/upload/stuck.jpg"]
    assert store.urls == {"https://res.cloudinary.com/x/image/upload/stuck.jpg"}
