"""Tests for local file placement and the collaborator implementations."""

from __future__ import annotations

import os
import tempfile
import unittest

from filebeam.collaborators import AlbumGallery, DirectoryPermissions
from filebeam.transfers.fileops import finalize_part, human_bytes, part_path, resolve_file_target


def _touch(path: str, data: bytes = b"") -> None:
    with open(path, "wb") as f:
        f.write(data)


class FileOpsTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.dir = tmp.name

    def test_free_name_is_used_as_is(self) -> None:
        self.assertEqual(resolve_file_target(self.dir, "a.jpg"), os.path.join(self.dir, "a.jpg"))

    def test_existing_part_and_reserved_names_are_skipped(self) -> None:
        _touch(os.path.join(self.dir, "a.jpg"))
        _touch(part_path(os.path.join(self.dir, "a (1).jpg")))
        reserved = [os.path.join(self.dir, "a (2).jpg")]

        self.assertEqual(resolve_file_target(self.dir, "a.jpg", reserved), os.path.join(self.dir, "a (3).jpg"))

    def test_finalize_moves_part_into_place(self) -> None:
        final = os.path.join(self.dir, "sub", "x.bin")
        tmp = os.path.join(self.dir, "x.bin.part")
        _touch(tmp, b"data")

        finalize_part(tmp, final)

        self.assertFalse(os.path.exists(tmp))
        with open(final, "rb") as f:
            self.assertEqual(f.read(), b"data")

    def test_human_bytes(self) -> None:
        self.assertEqual(human_bytes(None), "?")
        self.assertEqual(human_bytes(512), "512.0 B")
        self.assertEqual(human_bytes(2048), "2.0 KB")


class CollaboratorTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.dir = tmp.name

    def test_album_is_created_on_first_import(self) -> None:
        src = os.path.join(self.dir, "a.jpg")
        _touch(src, b"img")
        gallery = AlbumGallery(os.path.join(self.dir, "Pictures"), "Download")

        first = gallery.import_file(src)
        second = gallery.import_file(src)

        self.assertEqual(first, os.path.join(self.dir, "Pictures", "Download", "a.jpg"))
        self.assertEqual(os.path.basename(second), "a (1).jpg")

    def test_directory_permissions_create_missing_directory(self) -> None:
        target = os.path.join(self.dir, "new", "downloads")
        self.assertTrue(DirectoryPermissions(target).request())
        self.assertTrue(os.path.isdir(target))

    def test_directory_permissions_denied_when_path_is_a_file(self) -> None:
        blocker = os.path.join(self.dir, "blocker")
        _touch(blocker)
        self.assertFalse(DirectoryPermissions(os.path.join(blocker, "downloads")).request())


if __name__ == "__main__":
    unittest.main()
