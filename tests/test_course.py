"""
Tests for course creation, update (incl. rename) and deletion.
"""

import tempfile
import unittest
from pathlib import Path

from mms.course import delete_course, get_course_by_short_name, list_courses, resolve_course_ref, update_course
from mms.descriptors import read_course_descriptor
from mms.errors import CorruptedDescriptorError, NotFoundError, ValidationError

from support import Workspace


class TestCourse(unittest.TestCase):
    def setUp(self) -> None:
        self.ws = Workspace()
        self.sem = self.ws.semester(3)

    def tearDown(self) -> None:
        self.ws.close()

    def test_create_course_directory_and_descriptor(self) -> None:
        course = self.ws.course(self.sem.id, "algo", lecturer="Prof. Knuth")
        self.assertEqual(course.directory_path, self.ws.base / "b3" / "algo")
        desc = read_course_descriptor(course.directory_path)
        self.assertEqual(desc.name, "Algo")
        self.assertEqual(desc.lecturer, "Prof. Knuth")
        # location falls back to the configured default
        self.assertEqual(course.location, "Campus")

    def test_invalid_input_has_no_side_effects(self) -> None:
        with self.assertRaises(ValidationError):
            self.ws.course(self.sem.id, "bad name")
        with self.assertRaises(ValidationError):
            self.ws.course(self.sem.id, "big", ects=31)
        self.assertEqual(list_courses(self.ws.con), [])
        self.assertEqual(sorted(p.name for p in (self.ws.base / "b3").iterdir()), [".semester.toml"])

    def test_duplicate_short_name(self) -> None:
        self.ws.course(self.sem.id, "algo")
        with self.assertRaises(ValidationError):
            self.ws.course(self.sem.id, "algo")

    def test_external_course_with_original_path(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            course = self.ws.course(self.sem.id, "ext", is_external=True, original_path=d)
            self.assertEqual(course.directory_path, Path(d))
            self.assertFalse((Path(d) / ".course.toml").exists())
            delete_course(self.ws.con, course.id, delete_directory=True)
            self.assertTrue(Path(d).exists())

    def test_external_course_without_original_path_gets_directory(self) -> None:
        course = self.ws.course(self.sem.id, "ext", is_external=True)
        self.assertTrue((course.directory_path / ".course.toml").is_file())

    def test_rename_moves_directory(self) -> None:
        course = self.ws.course(self.sem.id, "algo")
        (course.directory_path / "notes.md").write_text("hi", encoding="utf-8")
        updated = update_course(self.ws.con, course.id, {"short_name": "algo2", "ects": 9})
        self.assertEqual(updated.directory_path, self.ws.base / "b3" / "algo2")
        self.assertTrue((updated.directory_path / "notes.md").exists())
        self.assertFalse(course.directory_path.exists())
        self.assertEqual(read_course_descriptor(updated.directory_path).ects, 9)

    def test_update_keeps_extra_descriptor_keys(self) -> None:
        course = self.ws.course(self.sem.id, "algo")
        toml = course.directory_path / ".course.toml"
        toml.write_text(toml.read_text(encoding="utf-8") + 'exam_room = "A 104"\n', encoding="utf-8")
        update_course(self.ws.con, course.id, {"tutor": "Bob"})
        desc = read_course_descriptor(course.directory_path)
        self.assertEqual(desc.tutor, "Bob")
        self.assertEqual(desc.extra["exam_room"], "A 104")

    def test_corrupted_descriptor_needs_force(self) -> None:
        course = self.ws.course(self.sem.id, "algo")
        (course.directory_path / ".course.toml").write_text("not = [valid", encoding="utf-8")
        with self.assertRaises(CorruptedDescriptorError):
            update_course(self.ws.con, course.id, {"name": "Algorithms"})
        updated = update_course(self.ws.con, course.id, {"name": "Algorithms"}, force_recreate_toml=True)
        self.assertEqual(read_course_descriptor(updated.directory_path).name, "Algorithms")

    def test_unknown_field(self) -> None:
        course = self.ws.course(self.sem.id, "algo")
        with self.assertRaises(ValidationError):
            update_course(self.ws.con, course.id, {"semester_id": 2})

    def test_lookup_prefers_current_semester(self) -> None:
        other = self.ws.semester(2, current=False)
        old = self.ws.course(other.id, "algo")
        new = self.ws.course(self.sem.id, "algo")
        self.assertEqual(get_course_by_short_name(self.ws.con, "algo").id, new.id)
        self.assertEqual(get_course_by_short_name(self.ws.con, "algo", semester_id=other.id).id, old.id)
        self.assertEqual(resolve_course_ref(self.ws.con, str(old.id)).id, old.id)
        with self.assertRaises(NotFoundError):
            resolve_course_ref(self.ws.con, "nope")

    def test_list_filters(self) -> None:
        a = self.ws.course(self.sem.id, "a")
        self.ws.course(self.sem.id, "b")
        update_course(self.ws.con, a.id, {"is_dropped": True})
        names = [c.short_name for c in list_courses(self.ws.con, semester_id=self.sem.id, include_dropped=False)]
        self.assertEqual(names, ["b"])


if __name__ == "__main__":
    unittest.main()
