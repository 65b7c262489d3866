"""
tests/test_storage.py — Object Storage Unit Tests
===================================================
"""

from __future__ import annotations

import re

import pytest

from agora.errors import InvalidInputError
from agora.services.storage_service import ObjectStorage


class TestUpload:
    def test_key_layout_and_url(self, storage):
        url = storage.upload("user-1", "avatars", "Me.PNG", b"\x89PNG", "image/png")
        assert re.fullmatch(r"/api/storage/user-1/avatars/\d+\.png", url)
        assert storage.exists(url)

    def test_same_millisecond_uploads_do_not_collide(self, storage):
        urls = {storage.upload("u", "chat-files", "a.txt", b"x") for _ in range(5)}
        assert len(urls) == 5

    def test_unknown_extension_falls_back(self, storage):
        url = storage.upload("u", "chat-files", "noext", b"x")
        assert url.endswith(".bin")

    @pytest.mark.parametrize("user_id, category, content", [
        ("u", "secrets", b"x"),
        ("../evil", "avatars", b"x"),
        ("", "avatars", b"x"),
        ("u", "avatars", b""),
        ("u", "avatars", b"x" * 1025),
    ])
    def test_rejected_uploads(self, storage, user_id, category, content):
        with pytest.raises(InvalidInputError):
            storage.upload(user_id, category, "f.png", content)


class TestUrls:
    def test_key_for_foreign_url(self, storage):
        assert storage.key_for("https://elsewhere.example.com/a.png") is None
        assert storage.key_for(None) is None

    def test_key_for_rejects_traversal(self, storage):
        assert storage.key_for("/api/storage/../../etc/passwd") is None
        assert storage.exists("/api/storage/../../etc/passwd") is False

    def test_absolute_public_url(self, tmp_path):
        store = ObjectStorage(tmp_path, public_url="https://cdn.example.com/storage/")
        url = store.upload("u", "banners", "b.jpg", b"x")
        assert url.startswith("https://cdn.example.com/storage/u/banners/")
        assert store.key_for(url).startswith("u/banners/")

    def test_delete(self, storage):
        url = storage.upload("u", "discussion-images", "i.gif", b"GIF")
        assert storage.delete(url) is True
        assert storage.delete(url) is False
        assert storage.exists(url) is False
