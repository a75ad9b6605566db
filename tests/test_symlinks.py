"""
Tests for the cs / cc workspace links.
"""

import unittest

from mms.errors import FilesystemError
from mms.symlinks import (
    check_symlinks,
    course_link,
    remove_course_symlink,
    update_course_symlink,
    update_semester_symlink,
)

from support import Workspace


class TestSymlinks(unittest.TestCase):
    def setUp(self) -> None:
        self.ws = Workspace()
        self.a = self.ws.root / "a"
        self.b = self.ws.root / "b"
        self.a.mkdir()
        self.b.mkdir()

    def tearDown(self) -> None:
        self.ws.close()

    def test_create_and_replace(self) -> None:
        link = update_course_symlink(self.ws.config, self.a)
        self.assertEqual(link, self.ws.links / "cc")
        self.assertTrue(link.is_symlink())
        update_course_symlink(self.ws.config, self.b)
        cs, cc = check_symlinks(self.ws.config)
        self.assertFalse(cs.exists)
        self.assertEqual(cc.target, self.b)

    def test_replaces_plain_file_but_not_directory(self) -> None:
        self.ws.links.mkdir(parents=True)
        course_link(self.ws.config).write_text("junk", encoding="utf-8")
        update_course_symlink(self.ws.config, self.a)
        self.assertTrue(course_link(self.ws.config).is_symlink())

        (self.ws.links / "cs").mkdir()
        with self.assertRaises(FilesystemError):
            update_semester_symlink(self.ws.config, self.a)
        self.assertTrue((self.ws.links / "cs").is_dir())

    def test_broken_link_and_remove(self) -> None:
        update_course_symlink(self.ws.config, self.a)
        self.a.rmdir()
        _, cc = check_symlinks(self.ws.config)
        self.assertTrue(cc.is_broken)
        self.assertTrue(remove_course_symlink(self.ws.config))
        self.assertFalse(remove_course_symlink(self.ws.config))


if __name__ == "__main__":
    unittest.main()
