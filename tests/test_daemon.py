"""
Tests for the background service: ticks, symlink repair and the PID file.
"""

import os
import shutil
import unittest
from datetime import datetime

from mms.daemon import Daemon, Transition, _pid_alive
from mms.db import get_active
from mms.errors import AlreadyRunningError, NotRunningError
from mms.semester import update_semester
from mms.symlinks import check_symlinks

from support import Workspace

# well above any kernel pid_max
UNUSED_PID = 99_999_999


class TestTransition(unittest.TestCase):
    def test_messages(self) -> None:
        self.assertEqual(Transition(None, "Algo").message, "Course started: Algo")
        self.assertEqual(Transition("Algo", "Ml").message, "Switched: Algo -> Ml")
        self.assertEqual(Transition("Algo", None).message, "No active course (was: Algo)")


class TestTick(unittest.TestCase):
    def setUp(self) -> None:
        self.ws = Workspace()
        self.sem = self.ws.semester(3)
        self.algo = self.ws.course(self.sem.id, "algo")
        self.ml = self.ws.course(self.sem.id, "ml")
        self.ws.monday_lecture(self.algo.id, "14:00", "16:00")
        self.ws.monday_lecture(self.ml.id, "16:00", "18:00")
        self.daemon = Daemon(self.ws.config, db_path=self.ws.db_path, pid_path=self.ws.root / "mms.pid")

    def tearDown(self) -> None:
        self.ws.close()

    def test_transitions_update_row_and_links(self) -> None:
        t = self.daemon.tick(datetime(2024, 11, 18, 14, 30))
        self.assertEqual(t.message, "Course started: Algo")
        active = get_active(self.ws.con)
        self.assertEqual((active.semester_id, active.course_id), (self.sem.id, self.algo.id))
        cs, cc = check_symlinks(self.ws.config)
        self.assertEqual(cs.target, self.sem.directory_path)
        self.assertEqual(cc.target, self.algo.directory_path)

        self.assertIsNone(self.daemon.tick(datetime(2024, 11, 18, 15, 0)))

        t = self.daemon.tick(datetime(2024, 11, 18, 16, 0))
        self.assertEqual(t.message, "Switched: Algo -> Ml")
        self.assertEqual(check_symlinks(self.ws.config)[1].target, self.ml.directory_path)

        t = self.daemon.tick(datetime(2024, 11, 18, 18, 0))
        self.assertEqual(t.message, "No active course (was: Ml)")
        self.assertIsNone(get_active(self.ws.con).course_id)
        self.assertFalse(check_symlinks(self.ws.config)[1].exists)

    def test_failed_symlink_is_repaired_next_tick(self) -> None:
        blocker = self.ws.links / "cc"
        blocker.mkdir(parents=True)
        t = self.daemon.tick(datetime(2024, 11, 18, 14, 30))
        self.assertIsNotNone(t)
        self.assertEqual(get_active(self.ws.con).course_id, self.algo.id)
        self.assertTrue(blocker.is_dir() and not blocker.is_symlink())

        shutil.rmtree(blocker)
        self.assertIsNone(self.daemon.tick(datetime(2024, 11, 18, 14, 35)))
        self.assertEqual(check_symlinks(self.ws.config)[1].target, self.algo.directory_path)

    def test_links_removed_when_no_semester_is_current(self) -> None:
        self.daemon.tick(datetime(2024, 11, 18, 14, 30))
        self.assertTrue(check_symlinks(self.ws.config)[0].exists)

        update_semester(self.ws.con, self.sem.id, is_current=False)
        t = self.daemon.tick(datetime(2024, 11, 18, 14, 35))
        self.assertEqual(t.message, "No active course (was: Algo)")
        active = get_active(self.ws.con)
        self.assertIsNone(active.semester_id)
        self.assertIsNone(active.course_id)
        cs, cc = check_symlinks(self.ws.config)
        self.assertFalse(cs.exists)
        self.assertFalse(cc.exists)

    def test_tick_survives_unusable_database(self) -> None:
        broken = Daemon(self.ws.config, db_path=self.ws.root / "missing" / "dir" / "mms.db")
        (self.ws.root / "missing").write_text("not a directory", encoding="utf-8")
        self.assertIsNone(broken.tick(datetime(2024, 11, 18, 14, 30)))


class TestPidFile(unittest.TestCase):
    def setUp(self) -> None:
        self.ws = Workspace()
        self.pid_file = self.ws.root / "run" / "mms.pid"
        self.daemon = Daemon(self.ws.config, db_path=self.ws.db_path, pid_path=self.pid_file)

    def tearDown(self) -> None:
        self.ws.close()

    def test_pid_alive(self) -> None:
        self.assertTrue(_pid_alive(os.getpid()))
        self.assertFalse(_pid_alive(0))
        self.assertFalse(_pid_alive(UNUSED_PID))

    def test_live_pid_blocks_second_instance(self) -> None:
        self.pid_file.parent.mkdir(parents=True)
        self.pid_file.write_text(f"{os.getppid()}\n", encoding="utf-8")
        with self.assertRaises(AlreadyRunningError):
            self.daemon.run(max_ticks=1)
        self.assertTrue(self.daemon.status().running)

    def test_stale_pid_is_replaced(self) -> None:
        self.pid_file.parent.mkdir(parents=True)
        self.pid_file.write_text(f"{UNUSED_PID}\n", encoding="utf-8")
        self.assertFalse(self.daemon.status().running)
        self.daemon.run(max_ticks=1)
        self.assertFalse(self.pid_file.exists())

    def test_stop_without_daemon(self) -> None:
        with self.assertRaises(NotRunningError):
            self.daemon.stop()

    def test_run_command_carries_paths(self) -> None:
        d = Daemon(self.ws.config, db_path="/tmp/x.db", config_path="/tmp/c.toml")
        cmd = d._run_command()
        self.assertEqual(cmd[1:3], ["-m", "mms"])
        self.assertEqual(cmd[3:], ["--db", "/tmp/x.db", "--config", "/tmp/c.toml", "service", "run"])


if __name__ == "__main__":
    unittest.main()
