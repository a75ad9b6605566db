"""
End-to-end tests for the `mms` command line.

Each test gets its own config file, database and university folder; the
rich console is redirected into a buffer so the output can be checked.
"""

import contextlib
import io
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from rich.console import Console

from mms import cli, db
from mms import interactive as ui
from mms.config import Config
from mms.db import close_connection, connect, get_active


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve()
        self.base = self.root / "university"
        self.links = self.root / "links"
        self.db_path = self.root / "mms.db"
        self.config_path = self.root / "config.toml"

        config = Config()
        config.general.university_base_path = str(self.base)
        config.general.symlink_path = str(self.links)
        config.general.student_name = "Ada"
        config.general.student_id = "12345"
        config.general.default_editor = "vim"
        config.general.default_pdf_viewer = "evince"
        config.save(self.config_path)

        env = mock.patch.dict(
            os.environ,
            {"MMS_CONFIG_DIR": str(self.root / "cfg"), "MMS_DATA_DIR": str(self.root / "data")},
        )
        env.start()
        self.addCleanup(env.stop)

        self.out = io.StringIO()
        console = mock.patch.object(ui, "console", Console(file=self.out, width=200))
        console.start()
        self.addCleanup(console.stop)

    def tearDown(self) -> None:
        close_connection()
        self._tmp.cleanup()

    def run_cli(self, *argv: str) -> int:
        with self.assertRaises(SystemExit) as cm:
            cli.main(["--db", str(self.db_path), "--config", str(self.config_path), *argv])
        return cm.exception.code

    def _semester_and_course(self) -> None:
        self.assertEqual(
            self.run_cli("semester", "add", "b3", "--start", "01.10.2024", "--end", "01.02.2025", "--current"), 0
        )
        self.assertEqual(self.run_cli("course", "add", "algo", "Algorithmen", "--ects", "6"), 0)

    def test_semester_and_course_flow(self) -> None:
        self._semester_and_course()
        self.assertTrue((self.base / "b3" / "algo" / ".course.toml").is_file())
        self.assertEqual((self.links / "cs").resolve(), self.base / "b3")

        self.assertEqual(self.run_cli("course", "list"), 0)
        self.assertIn("Algorithmen", self.out.getvalue())
        self.assertEqual(self.run_cli("course", "set-active", "algo"), 0)
        self.assertEqual((self.links / "cc").resolve(), self.base / "b3" / "algo")

    def test_schedule_and_today(self) -> None:
        self._semester_and_course()
        self.assertEqual(self.run_cli("schedule", "add", "algo", "--day", "mon", "--time", "14:00-16:00"), 0)
        self.assertEqual(self.run_cli("today", "--date", "18.11.2024"), 0)
        self.assertIn("14:00", self.out.getvalue())

    def test_grade_and_stats(self) -> None:
        self._semester_and_course()
        self.assertEqual(self.run_cli("course", "grade", "algo", "1,7"), 0)
        self.assertIn("passed", self.out.getvalue())
        self.assertEqual(self.run_cli("stats", "average", "--include-non-gpa"), 0)

    def test_errors_map_to_exit_codes(self) -> None:
        self.assertEqual(self.run_cli("course", "show", "nope"), 1)
        self.assertEqual(self.run_cli("semester", "add", "x3"), 1)
        self.assertEqual(self.run_cli("service", "stop"), 3)

    def test_no_command_prints_help(self) -> None:
        buf = io.StringIO()
        with contextlib.redirect_stdout(buf):
            self.assertEqual(self.run_cli(), 1)
        self.assertIn("usage:", buf.getvalue())
        self.assertIn("semester", buf.getvalue())

    def test_connection_closed_after_command(self) -> None:
        self._semester_and_course()
        self.assertIsNone(db._connection)
        self.assertEqual(self.run_cli("course", "show", "nope"), 1)
        self.assertIsNone(db._connection)

    def test_delete_requires_confirmation_off_terminal(self) -> None:
        self._semester_and_course()
        with mock.patch("sys.stdin", io.StringIO()):
            self.assertEqual(self.run_cli("course", "delete", "algo"), 1)
            self.assertEqual(self.run_cli("course", "delete", "algo", "--yes"), 0)

    def test_missing_config_fields_off_terminal(self) -> None:
        Config().save(self.config_path)
        with mock.patch("sys.stdin", io.StringIO()):
            self.assertEqual(self.run_cli("sync"), 1)

    def test_sync_and_status(self) -> None:
        self._semester_and_course()
        self.assertEqual(self.run_cli("sync"), 0)
        self.assertIn("Nothing to sync!", self.out.getvalue())
        self.assertEqual(self.run_cli("status"), 0)
        self.assertIn("=== mms status ===", self.out.getvalue())

    def test_set_active_writes_pointer(self) -> None:
        self._semester_and_course()
        self.run_cli("course", "set-active", "algo")
        con = connect(self.db_path)
        try:
            self.assertIsNotNone(get_active(con).course_id)
        finally:
            con.close()


if __name__ == "__main__":
    unittest.main()
