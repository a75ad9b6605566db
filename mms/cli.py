"""
CLI (Command Line Interface).

    mms config {init|show|edit}
    mms semester {add|list|set-current|show|archive|delete}
    mms course {add|list|show|edit|open|grade|set-active|delete}
    mms schedule {add|cancel|override|list|edit|delete}
    mms holiday {add|list|add-exception|remove}
    mms degree {add|list|show|add-area|map|unmap|unmapped|delete}
    mms today
    mms status
    mms sync [--dry-run]
    mms service {install|uninstall|start|stop|status|run}
    mms stats {average|categories|overview}

Global flags: --db PATH, --config PATH, -v/--verbose.

Note:
- output goes through mms.interactive (rich); this module only parses
  arguments, calls the domain modules and picks the exit code
- every MmsError is turned into a red message and its exit code
  (1 input, 2 I/O or database, 3 daemon state)
- dates accept DD.MM.YYYY (leading zeros optional) and YYYY-MM-DD
"""

from __future__ import annotations

import argparse
import logging
import subprocess
import sys
import time
import webbrowser
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from mms import interactive as ui
from mms.config import Config, init_default_config
from mms.course import (
    create_course,
    delete_course,
    get_course_by_id,
    list_courses,
    resolve_course_ref,
    update_course,
)
from mms.daemon import Daemon
from mms.db import close_connection, get_active, get_connection, set_active
from mms.degree import (
    AreaInput,
    add_degree_area,
    create_degree,
    delete_degree,
    find_degree_area,
    get_degree_by_id,
    get_degree_progress,
    get_unmapped_courses,
    list_degrees,
    map_course_to_area,
    unmap_course_from_area,
)
from mms.errors import MissingConfigFieldError, MmsError, ValidationError
from mms.grade import (
    GPA_SCOPES,
    calculate_gpa,
    format_grade,
    get_final_grade,
    list_final_grades,
    list_grades_by_course,
    parse_component_spec,
    parse_grade_value,
    record_grade,
)
from mms.logsetup import configure_logging, enable_console_info
from mms.model import GradingScheme, ScheduleType, SemesterType
from mms.paths import config_path, daemon_log_path, pid_path
from mms.schedule import (
    add_holiday,
    add_holiday_exception,
    add_one_time_event,
    add_schedule,
    cancel_occurrence,
    delete_event,
    delete_holiday,
    delete_schedule,
    entries_for_day,
    list_events,
    list_holiday_exceptions,
    list_holidays,
    list_schedules,
    override_occurrence,
    remove_holiday_exception,
    update_schedule,
)
from mms.semester import (
    archive_semester,
    create_semester,
    delete_semester,
    get_current_semester,
    get_semester_by_id,
    list_semesters,
    parse_semester_code,
    resolve_semester_ref,
    set_current_semester,
)
from mms.symlinks import check_symlinks, update_course_symlink, update_semester_symlink
from mms.sync import check_status, sync_to_filesystem
from mms.validation import parse_optional_date, parse_time_range, parse_user_date, parse_weekday

logger = logging.getLogger(__name__)


@dataclass
class Context:
    """What every command handler needs: config, where it came from, and the DB."""

    config: Config
    config_path: Path
    db_path: Optional[Path] = None
    explicit_config: bool = False

    @property
    def con(self):
        return get_connection(self.db_path)

    def daemon(self) -> Daemon:
        return Daemon(
            self.config,
            db_path=self.db_path,
            pid_path=pid_path(),
            config_path=self.config_path if self.explicit_config else None,
        )


def _ensure_config(ctx: Context) -> None:
    """
    Commands that touch the workspace need the personal settings. On a
    terminal the setup wizard asks for whatever is missing and saves it.
    """
    missing = ctx.config.missing_fields()
    if not missing:
        return
    if not sys.stdin.isatty():
        raise MissingConfigFieldError(missing)
    ui.warning("Some settings are missing, let's fill them in first.")
    ui.run_setup_wizard(ctx.config, only_missing=True)
    ctx.config.save(ctx.config_path)
    ui.success(f"Configuration saved to {ctx.config_path}")


def _update_links_for(ctx: Context, semester_id: Optional[int], course_id: Optional[int]) -> None:
    """Point cs/cc at the given semester/course; a failure is only a warning."""
    try:
        if semester_id is not None:
            update_semester_symlink(ctx.config, get_semester_by_id(ctx.con, semester_id).directory_path)
        if course_id is not None:
            update_course_symlink(ctx.config, get_course_by_id(ctx.con, course_id).directory_path)
    except MmsError as e:
        ui.warning(f"Symlinks not updated: {e}")


def _semester_or_current(ctx: Context, ref: Optional[str]):
    if ref:
        return resolve_semester_ref(ctx.con, ref)
    current = get_current_semester(ctx.con)
    if current is None:
        raise ValidationError("No current semester. Pass --semester or run: mms semester set-current <code>")
    return current


def _course_names(ctx: Context) -> dict[int, str]:
    return {c.id: c.short_name for c in list_courses(ctx.con)}


def _semester_codes(ctx: Context) -> dict[int, str]:
    return {s.id: s.code for s in list_semesters(ctx.con)}


def _confirm_or_yes(args: argparse.Namespace, question: str) -> bool:
    if getattr(args, "yes", False):
        return True
    if not sys.stdin.isatty():
        raise ValidationError("Refusing to delete without confirmation (use --yes)")
    return ui.confirm(question)


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


def _cmd_config_init(args: argparse.Namespace, ctx: Context) -> int:
    if ctx.config_path.exists() and not args.force:
        raise ValidationError(f"Config file already exists: {ctx.config_path} (use --force to overwrite)")
    config = init_default_config()
    if not args.defaults:
        ui.run_setup_wizard(config)
    path = config.save(ctx.config_path)
    ctx.config = config
    ui.success(f"Configuration written to {path}")
    return 0


def _cmd_config_show(args: argparse.Namespace, ctx: Context) -> int:
    ui.render_config(ctx.config, ctx.config_path)
    missing = ctx.config.missing_fields()
    if missing:
        ui.warning("Missing: " + ", ".join(missing))
    return 0


def _cmd_config_edit(args: argparse.Namespace, ctx: Context) -> int:
    editor = ctx.config.editor
    if not editor:
        raise ValidationError("No editor configured (set $EDITOR or general.default_editor)")
    if not ctx.config_path.exists():
        ctx.config.save(ctx.config_path)
    try:
        result = subprocess.run([editor, str(ctx.config_path)])
    except OSError as e:
        raise ValidationError(f"Cannot start editor {editor!r}: {e}") from e
    # reload so a broken edit is reported right away
    Config.load(ctx.config_path)
    return result.returncode


# ---------------------------------------------------------------------------
# semester
# ---------------------------------------------------------------------------


def _cmd_semester_add(args: argparse.Namespace, ctx: Context) -> int:
    _ensure_config(ctx)
    if args.number is None:
        semester_type, number = parse_semester_code(args.type)
    else:
        semester_type, number = SemesterType.parse(args.type), args.number
    semester = create_semester(
        ctx.con,
        ctx.config,
        semester_type.value,
        number,
        start_date=parse_optional_date(args.start),
        end_date=parse_optional_date(args.end),
        university=args.university,
        default_location=args.location,
        is_current=args.current,
    )
    ui.success(f"Created semester {semester.code} at {semester.directory_path}")
    if semester.is_current:
        _update_links_for(ctx, semester.id, None)
    return 0


def _cmd_semester_list(args: argparse.Namespace, ctx: Context) -> int:
    ui.render_semesters(list_semesters(ctx.con, include_archived=args.all))
    return 0


def _cmd_semester_set_current(args: argparse.Namespace, ctx: Context) -> int:
    semester = set_current_semester(ctx.con, resolve_semester_ref(ctx.con, args.semester).id)
    ui.success(f"Current semester: {semester.code}")
    _update_links_for(ctx, semester.id, None)
    return 0


def _cmd_semester_show(args: argparse.Namespace, ctx: Context) -> int:
    semester = _semester_or_current(ctx, args.semester)
    ui.render_semester_detail(semester, list_courses(ctx.con, semester_id=semester.id))
    return 0


def _cmd_semester_archive(args: argparse.Namespace, ctx: Context) -> int:
    semester = archive_semester(ctx.con, resolve_semester_ref(ctx.con, args.semester).id, archived=not args.undo)
    ui.success(f"{'Unarchived' if args.undo else 'Archived'} semester {semester.code}")
    return 0


def _cmd_semester_delete(args: argparse.Namespace, ctx: Context) -> int:
    semester = resolve_semester_ref(ctx.con, args.semester)
    extra = " and its directory" if args.delete_directory else ""
    if not _confirm_or_yes(args, f"Delete semester {semester.code}{extra} (all its courses go with it)?"):
        ui.warning("Aborted.")
        return 0
    delete_semester(ctx.con, semester.id, delete_directory=args.delete_directory)
    ui.success(f"Deleted semester {semester.code}")
    return 0


# ---------------------------------------------------------------------------
# course
# ---------------------------------------------------------------------------

_COURSE_TEXT_OPTIONS = (
    "lecturer",
    "lecturer_email",
    "tutor",
    "tutor_email",
    "learning_platform_url",
    "university",
    "location",
    "git_remote_url",
)


def _course_text_fields(args: argparse.Namespace) -> dict[str, Any]:
    return {k: getattr(args, k) for k in _COURSE_TEXT_OPTIONS if getattr(args, k, None) is not None}


def _cmd_course_add(args: argparse.Namespace, ctx: Context) -> int:
    _ensure_config(ctx)
    semester = _semester_or_current(ctx, args.semester)
    course = create_course(
        ctx.con,
        ctx.config,
        semester.id,
        args.short_name,
        args.name,
        args.ects,
        is_external=args.external,
        original_path=args.original_path,
        has_git_repo=args.git,
        **_course_text_fields(args),
    )
    ui.success(f"Created course {course.short_name} in {semester.code} at {course.directory_path}")
    return 0


def _cmd_course_list(args: argparse.Namespace, ctx: Context) -> int:
    semester_id = None
    title = "Courses"
    if not args.all_semesters:
        semester = resolve_semester_ref(ctx.con, args.semester) if args.semester else get_current_semester(ctx.con)
        if semester is not None:
            semester_id = semester.id
            title = f"Courses in {semester.code}"
    courses = list_courses(
        ctx.con,
        semester_id=semester_id,
        include_archived=args.include_archived,
        include_dropped=args.include_dropped,
    )
    ui.render_courses(courses, title=title, semester_codes=_semester_codes(ctx) if semester_id is None else None)
    return 0


def _cmd_course_show(args: argparse.Namespace, ctx: Context) -> int:
    course = resolve_course_ref(ctx.con, args.course)
    semester = get_semester_by_id(ctx.con, course.semester_id)
    ui.render_course_detail(
        course, semester.code, list_schedules(ctx.con, course_id=course.id), get_final_grade(ctx.con, course.id)
    )
    return 0


def _cmd_course_edit(args: argparse.Namespace, ctx: Context) -> int:
    course = resolve_course_ref(ctx.con, args.course)
    changes = _course_text_fields(args)
    if args.name is not None:
        changes["name"] = args.name
    if args.short_name is not None:
        changes["short_name"] = args.short_name
    if args.ects is not None:
        changes["ects"] = args.ects
    if args.dropped is not None:
        changes["is_dropped"] = args.dropped
    if args.archived is not None:
        changes["is_archived"] = args.archived
    if not changes:
        ui.warning("Nothing to change.")
        return 0
    updated = update_course(ctx.con, course.id, changes, force_recreate_toml=args.force_recreate)
    ui.success(f"Updated course {updated.short_name}")
    return 0


def _cmd_course_open(args: argparse.Namespace, ctx: Context) -> int:
    course = resolve_course_ref(ctx.con, args.course)
    if args.platform:
        if not course.learning_platform_url:
            raise ValidationError(f"Course {course.short_name} has no learning platform URL")
        webbrowser.open(course.learning_platform_url)
        return 0
    editor = ctx.config.editor
    if not editor:
        raise ValidationError("No editor configured (set $EDITOR or general.default_editor)")
    try:
        return subprocess.run([editor, str(course.directory_path)]).returncode
    except OSError as e:
        raise ValidationError(f"Cannot start editor {editor!r}: {e}") from e


def _cmd_course_grade(args: argparse.Namespace, ctx: Context) -> int:
    course = resolve_course_ref(ctx.con, args.course)
    scheme = GradingScheme.parse(args.scheme)
    components = [parse_component_spec(c) for c in (args.component or [])]

    if args.grade is None and not components:
        ui.render_grades([(course, g) for g in list_grades_by_course(ctx.con, course.id)], title=f"Grades of {course.short_name}")
        return 0

    grade = record_grade(
        ctx.con,
        course.id,
        grade=parse_grade_value(args.grade, scheme) if args.grade is not None else None,
        scheme=scheme,
        components=components,
        is_final=not args.not_final,
        exam_date=parse_optional_date(args.exam_date),
        notes=args.notes,
    )
    verdict = "passed" if grade.passed else "failed"
    ui.success(f"Recorded {format_grade(grade.grade, scheme)} ({scheme.value}) for {course.short_name}: {verdict}")
    return 0


def _cmd_course_set_active(args: argparse.Namespace, ctx: Context) -> int:
    course = resolve_course_ref(ctx.con, args.course)
    set_active(ctx.con, course.semester_id, course.id)
    _update_links_for(ctx, course.semester_id, course.id)
    ui.success(f"Active course: {course.short_name}")
    if ctx.daemon().status().running:
        ui.warning("The service is running and may switch the course again on its next check.")
    return 0


def _cmd_course_delete(args: argparse.Namespace, ctx: Context) -> int:
    course = resolve_course_ref(ctx.con, args.course)
    extra = " and its directory" if args.delete_directory and not course.is_external else ""
    if not _confirm_or_yes(args, f"Delete course {course.short_name}{extra}?"):
        ui.warning("Aborted.")
        return 0
    delete_course(ctx.con, course.id, delete_directory=args.delete_directory)
    ui.success(f"Deleted course {course.short_name}")
    return 0


# ---------------------------------------------------------------------------
# schedule
# ---------------------------------------------------------------------------


def _cmd_schedule_add(args: argparse.Namespace, ctx: Context) -> int:
    course = resolve_course_ref(ctx.con, args.course)
    start, end = parse_time_range(args.time)
    if args.date:
        event = add_one_time_event(
            ctx.con,
            course.id,
            parse_user_date(args.date),
            start,
            end,
            schedule_type=args.type,
            room=args.room,
            location=args.location,
            description=args.description,
        )
        ui.success(f"Added one-time {event.schedule_type.value} for {course.short_name} on {event.date} (event {event.id})")
        return 0

    if args.day is None:
        raise ValidationError("Give --day for a weekly schedule or --date for a one-time event")
    schedule = add_schedule(
        ctx.con,
        course.id,
        args.type,
        parse_weekday(args.day),
        start,
        end,
        start_date=parse_optional_date(args.start),
        end_date=parse_optional_date(args.end),
        room=args.room,
        location=args.location,
    )
    ui.success(f"Added {schedule.schedule_type.value} for {course.short_name} (schedule {schedule.id})")
    return 0


def _cmd_schedule_cancel(args: argparse.Namespace, ctx: Context) -> int:
    event = cancel_occurrence(ctx.con, args.schedule_id, parse_user_date(args.date), reason=args.reason)
    ui.success(f"Cancelled schedule {args.schedule_id} on {event.date}")
    return 0


def _cmd_schedule_override(args: argparse.Namespace, ctx: Context) -> int:
    start = end = None
    if args.time:
        start, end = parse_time_range(args.time)
    event = override_occurrence(
        ctx.con, args.schedule_id, parse_user_date(args.date), room=args.room, start_time=start, end_time=end
    )
    ui.success(f"Override for {event.date}: {event.start_time}-{event.end_time} {event.room or ''}".rstrip())
    return 0


def _cmd_schedule_list(args: argparse.Namespace, ctx: Context) -> int:
    course_id = resolve_course_ref(ctx.con, args.course).id if args.course else None
    names = _course_names(ctx)
    ui.render_schedules(list_schedules(ctx.con, course_id=course_id), names)
    if args.events:
        ui.render_events(list_events(ctx.con, course_id=course_id), names)
    return 0


def _cmd_schedule_edit(args: argparse.Namespace, ctx: Context) -> int:
    changes: dict[str, Any] = {}
    if args.type is not None:
        changes["schedule_type"] = args.type
    if args.day is not None:
        changes["day_of_week"] = parse_weekday(args.day)
    if args.time is not None:
        changes["start_time"], changes["end_time"] = parse_time_range(args.time)
    if args.start is not None:
        changes["start_date"] = parse_user_date(args.start)
    if args.end is not None:
        changes["end_date"] = parse_user_date(args.end)
    if args.room is not None:
        changes["room"] = args.room
    if args.location is not None:
        changes["location"] = args.location
    if not changes:
        ui.warning("Nothing to change.")
        return 0
    update_schedule(ctx.con, args.schedule_id, **changes)
    ui.success(f"Updated schedule {args.schedule_id}")
    return 0


def _cmd_schedule_delete(args: argparse.Namespace, ctx: Context) -> int:
    if args.event:
        delete_event(ctx.con, args.id)
        ui.success(f"Deleted event {args.id}")
    else:
        delete_schedule(ctx.con, args.id)
        ui.success(f"Deleted schedule {args.id}")
    return 0


# ---------------------------------------------------------------------------
# holiday
# ---------------------------------------------------------------------------


def _cmd_holiday_add(args: argparse.Namespace, ctx: Context) -> int:
    semester_id = resolve_semester_ref(ctx.con, args.semester).id if args.semester else None
    holiday = add_holiday(
        ctx.con, args.name, parse_user_date(args.start), parse_optional_date(args.end), semester_id=semester_id
    )
    ui.success(f"Added holiday {holiday.name} ({holiday.start_date} - {holiday.end_date}), id {holiday.id}")
    return 0


def _cmd_holiday_list(args: argparse.Namespace, ctx: Context) -> int:
    semester_id = resolve_semester_ref(ctx.con, args.semester).id if args.semester else None
    names = _course_names(ctx)
    exceptions: dict[int, list[str]] = {}
    for exc in list_holiday_exceptions(ctx.con):
        exceptions.setdefault(exc.holiday_id, []).append(names.get(exc.course_id, str(exc.course_id)))
    ui.render_holidays(list_holidays(ctx.con, semester_id), _semester_codes(ctx), exceptions)
    return 0


def _cmd_holiday_add_exception(args: argparse.Namespace, ctx: Context) -> int:
    course = resolve_course_ref(ctx.con, args.course)
    add_holiday_exception(ctx.con, args.holiday_id, course.id)
    ui.success(f"{course.short_name} keeps its schedule during holiday {args.holiday_id}")
    return 0


def _cmd_holiday_remove(args: argparse.Namespace, ctx: Context) -> int:
    if args.exception:
        course = resolve_course_ref(ctx.con, args.exception)
        remove_holiday_exception(ctx.con, args.holiday_id, course.id)
        ui.success(f"Removed exception for {course.short_name} from holiday {args.holiday_id}")
        return 0
    holiday = delete_holiday(ctx.con, args.holiday_id)
    ui.success(f"Removed holiday {holiday.name}")
    return 0


# ---------------------------------------------------------------------------
# degree
# ---------------------------------------------------------------------------


def _parse_area_spec(text: str) -> AreaInput:
    """NAME:ECTS or NAME:ECTS:nogpa"""
    parts = [p.strip() for p in (text or "").split(":")]
    if len(parts) not in (2, 3) or not parts[1].isdigit():
        raise ValidationError(f"Invalid area {text!r}: use NAME:ECTS or NAME:ECTS:nogpa")
    counts = not (len(parts) == 3 and parts[2].lower() in ("nogpa", "no", "false", "0"))
    return AreaInput(parts[0], int(parts[1]), counts)


def _cmd_degree_add(args: argparse.Namespace, ctx: Context) -> int:
    areas = [_parse_area_spec(a) for a in (args.area or [])]
    if args.from_config:
        areas += [
            AreaInput(name, cat.required_ects, cat.counts_towards_average)
            for name, cat in sorted(ctx.config.categories.items())
        ]
    degree = create_degree(
        ctx.con,
        args.type,
        args.name,
        args.university,
        total_ects=args.ects,
        start_date=parse_optional_date(args.start),
        expected_end_date=parse_optional_date(args.end),
        areas=areas,
    )
    ui.success(f"Created degree {degree} (id {degree.id}) with {len(areas)} area(s)")
    return 0


def _cmd_degree_list(args: argparse.Namespace, ctx: Context) -> int:
    ui.render_degrees(list_degrees(ctx.con, include_inactive=args.all))
    return 0


def _cmd_degree_show(args: argparse.Namespace, ctx: Context) -> int:
    ui.render_degree_progress(get_degree_progress(ctx.con, args.degree_id))
    return 0


def _cmd_degree_add_area(args: argparse.Namespace, ctx: Context) -> int:
    area = add_degree_area(ctx.con, args.degree_id, args.name, args.ects, counts_towards_gpa=not args.no_gpa)
    ui.success(f"Added area {area.category_name} ({area.required_ects} ECTS) to degree {args.degree_id}")
    return 0


def _cmd_degree_map(args: argparse.Namespace, ctx: Context) -> int:
    course = resolve_course_ref(ctx.con, args.course)
    area = find_degree_area(ctx.con, args.degree_id, args.area)
    map_course_to_area(ctx.con, course.id, area.id, ects_override=args.ects)
    ui.success(f"Mapped {course.short_name} to {area.category_name}")
    return 0


def _cmd_degree_unmap(args: argparse.Namespace, ctx: Context) -> int:
    course = resolve_course_ref(ctx.con, args.course)
    area = find_degree_area(ctx.con, args.degree_id, args.area)
    unmap_course_from_area(ctx.con, course.id, area.id)
    ui.success(f"Unmapped {course.short_name} from {area.category_name}")
    return 0


def _cmd_degree_unmapped(args: argparse.Namespace, ctx: Context) -> int:
    courses = get_unmapped_courses(ctx.con)
    if not courses:
        ui.success("Every course is mapped to a degree area.")
        return 0
    ui.render_courses(courses, title="Courses without degree area", semester_codes=_semester_codes(ctx))
    return 0


def _cmd_degree_delete(args: argparse.Namespace, ctx: Context) -> int:
    degree = get_degree_by_id(ctx.con, args.degree_id)
    if not _confirm_or_yes(args, f"Delete degree {degree}?"):
        ui.warning("Aborted.")
        return 0
    delete_degree(ctx.con, degree.id)
    ui.success(f"Deleted degree {degree}")
    return 0


# ---------------------------------------------------------------------------
# today / status / sync
# ---------------------------------------------------------------------------


def _cmd_today(args: argparse.Namespace, ctx: Context) -> int:
    now = datetime.now()
    day = parse_user_date(args.date) if args.date else now.date()
    ui.render_today(entries_for_day(ctx.con, day), day, now=now)
    return 0


def _cmd_status(args: argparse.Namespace, ctx: Context) -> int:
    _ensure_config(ctx)
    active = get_active(ctx.con)
    semester = get_semester_by_id(ctx.con, active.semester_id) if active.semester_id else get_current_semester(ctx.con)
    course = get_course_by_id(ctx.con, active.course_id) if active.course_id else None
    base = ctx.config.university_base_path
    ui.render_status(semester, course, check_symlinks(ctx.config), check_status(ctx.con, base), base)
    return 0


def _cmd_sync(args: argparse.Namespace, ctx: Context) -> int:
    _ensure_config(ctx)
    report = sync_to_filesystem(ctx.con, ctx.config.university_base_path, dry_run=args.dry_run)
    if report.nothing_to_do:
        ui.success("Nothing to sync!")
        return 0
    for action in report.actions:
        ui.info(f"[DRY-RUN] {action}" if args.dry_run else action)
    for path, reason in report.failures:
        ui.failure(f"{path}: {reason}")
    if report.failures:
        ui.warning(f"{len(report.failures)} of {len(report.actions)} action(s) failed")
        return 2
    if not args.dry_run:
        ui.success(f"Synced {len(report.actions)} semester folder(s)")
    return 0


# ---------------------------------------------------------------------------
# service
# ---------------------------------------------------------------------------


def _cmd_service_install(args: argparse.Namespace, ctx: Context) -> int:
    plist = ctx.daemon().install()
    ui.success(f"Service installed: {plist}")
    return 0


def _cmd_service_uninstall(args: argparse.Namespace, ctx: Context) -> int:
    plist = ctx.daemon().uninstall()
    ui.success(f"Service uninstalled: {plist}")
    return 0


def _cmd_service_start(args: argparse.Namespace, ctx: Context) -> int:
    _ensure_config(ctx)
    daemon = ctx.daemon()
    daemon.start_background()
    time.sleep(0.5)
    state = daemon.status()
    if state.running:
        ui.success(f"Service started (PID: {state.pid})")
        return 0
    ui.failure(f"Service did not start, see {daemon_log_path()}")
    return 3


def _cmd_service_stop(args: argparse.Namespace, ctx: Context) -> int:
    daemon = ctx.daemon()
    state = daemon.status()
    if state.running:
        ui.info(f"Stopping service (PID: {state.pid})...")
    daemon.stop()
    ui.success("Service stopped")
    return 0


def _cmd_service_status(args: argparse.Namespace, ctx: Context) -> int:
    state = ctx.daemon().status()
    if state.running:
        ui.success(f"Service is running (PID: {state.pid})")
    else:
        ui.warning("Service is not running")
    active = get_active(ctx.con)
    if active.course_id:
        course = get_course_by_id(ctx.con, active.course_id)
        ui.info(f"Active course: {course.short_name} (since {active.activated_at})")
    return 0


def _cmd_service_run(args: argparse.Namespace, ctx: Context) -> int:
    _ensure_config(ctx)
    configure_logging(verbose=args.verbose, log_file=daemon_log_path())
    enable_console_info()
    ctx.daemon().run()
    return 0


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------


def _cmd_stats_average(args: argparse.Namespace, ctx: Context) -> int:
    scheme = GradingScheme.parse(args.scheme)
    scope_id = args.id
    if args.scope == "semester" and scope_id is None:
        scope_id = _semester_or_current(ctx, None).id
    info = calculate_gpa(ctx.con, args.scope, scope_id, include_non_gpa=args.include_non_gpa, scheme=scheme)
    label = "Average" if args.scope == "overall" else f"Average ({args.scope} {scope_id})"
    ui.render_gpa(label, info)
    return 0


def _cmd_stats_categories(args: argparse.Namespace, ctx: Context) -> int:
    degrees = [get_degree_by_id(ctx.con, args.degree)] if args.degree else list_degrees(ctx.con, include_inactive=False)
    if not degrees:
        ui.warning("No active degree. Create one with: mms degree add")
        return 0
    for degree in degrees:
        ui.render_degree_progress(get_degree_progress(ctx.con, degree.id))
    return 0


def _cmd_stats_overview(args: argparse.Namespace, ctx: Context) -> int:
    courses = {c.id: c for c in list_courses(ctx.con)}
    grades = [g for g in list_final_grades(ctx.con) if g.course_id in courses]
    passed_ects = sum(courses[g.course_id].ects for g in grades if g.passed)
    ui.info(f"Semesters: {len(list_semesters(ctx.con))}")
    ui.info(f"Courses:   {len(courses)}")
    ui.info(f"Graded:    {len(grades)} ({passed_ects} ECTS passed)")
    ui.render_grades([(courses[g.course_id], g) for g in grades], title="Final grades")
    ui.render_gpa("Average (all passed courses)", calculate_gpa(ctx.con, include_non_gpa=True))
    ui.render_gpa("Average (GPA areas only)", calculate_gpa(ctx.con))
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _add_course_text_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--lecturer", type=str)
    p.add_argument("--lecturer-email", dest="lecturer_email", type=str)
    p.add_argument("--tutor", type=str)
    p.add_argument("--tutor-email", dest="tutor_email", type=str)
    p.add_argument("--platform-url", dest="learning_platform_url", type=str, help="Learning platform URL")
    p.add_argument("--university", type=str)
    p.add_argument("--location", type=str)
    p.add_argument("--git-remote", dest="git_remote_url", type=str)


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="mms", description="mms - study management system")
    parser.add_argument("--db", type=str, help="Database file (default: user data dir)")
    parser.add_argument("--config", type=str, help="Config file (default: user config dir)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # config
    p_config = sub.add_parser("config", help="Show or edit the configuration")
    s = p_config.add_subparsers(dest="action", required=True)
    p = s.add_parser("init", help="Create the config file (runs the setup wizard)")
    p.add_argument("--defaults", action="store_true", help="Write defaults without asking")
    p.add_argument("--force", action="store_true", help="Overwrite an existing file")
    s.add_parser("show", help="Print the configuration")
    s.add_parser("edit", help="Open the config file in your editor")

    # semester
    p_sem = sub.add_parser("semester", help="Manage semesters")
    s = p_sem.add_subparsers(dest="action", required=True)
    p = s.add_parser("add", help="Create a semester (e.g. 'b 3' or 'b3')")
    p.add_argument("type", type=str, help="bachelor|master (or a code like b3)")
    p.add_argument("number", type=int, nargs="?", help="Semester number")
    p.add_argument("--start", type=str, help="Start date (DD.MM.YYYY)")
    p.add_argument("--end", type=str, help="End date (DD.MM.YYYY)")
    p.add_argument("--university", type=str)
    p.add_argument("--location", type=str)
    p.add_argument("--current", action="store_true", help="Make it the current semester")
    p = s.add_parser("list", help="List semesters")
    p.add_argument("--all", action="store_true", help="Include archived semesters")
    p = s.add_parser("set-current", help="Make a semester current")
    p.add_argument("semester", type=str, help="Code (b3) or id")
    p = s.add_parser("show", help="Show a semester and its courses")
    p.add_argument("semester", type=str, nargs="?", help="Code or id (default: current)")
    p = s.add_parser("archive", help="Archive a semester")
    p.add_argument("semester", type=str)
    p.add_argument("--undo", action="store_true", help="Unarchive")
    p = s.add_parser("delete", help="Delete a semester")
    p.add_argument("semester", type=str)
    p.add_argument("--delete-directory", action="store_true", help="Also remove the folder")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask")

    # course
    p_course = sub.add_parser("course", help="Manage courses")
    s = p_course.add_subparsers(dest="action", required=True)
    p = s.add_parser("add", help="Create a course")
    p.add_argument("short_name", type=str, help="Directory name, e.g. algo")
    p.add_argument("name", type=str, help="Full name")
    p.add_argument("--ects", type=int, required=True)
    p.add_argument("--semester", type=str, help="Code or id (default: current)")
    p.add_argument("--external", action="store_true", help="Taken at another university")
    p.add_argument("--original-path", dest="original_path", type=str, help="Existing folder of an external course")
    p.add_argument("--git", action="store_true", help="Course folder is a git repository")
    _add_course_text_options(p)
    p = s.add_parser("list", help="List courses")
    p.add_argument("--semester", type=str, help="Code or id (default: current)")
    p.add_argument("--all-semesters", action="store_true")
    p.add_argument("--include-dropped", action="store_true")
    p.add_argument("--include-archived", action="store_true")
    p = s.add_parser("show", help="Show course details")
    p.add_argument("course", type=str, help="Short name or id")
    p = s.add_parser("edit", help="Change course fields")
    p.add_argument("course", type=str)
    p.add_argument("--name", type=str)
    p.add_argument("--short-name", dest="short_name", type=str, help="Renames the folder")
    p.add_argument("--ects", type=int)
    p.add_argument("--dropped", dest="dropped", action="store_true", default=None)
    p.add_argument("--undrop", dest="dropped", action="store_false")
    p.add_argument("--archived", dest="archived", action="store_true", default=None)
    p.add_argument("--unarchive", dest="archived", action="store_false")
    p.add_argument("--force-recreate", action="store_true", help="Rebuild a corrupted .course.toml")
    _add_course_text_options(p)
    p = s.add_parser("open", help="Open the course folder in your editor")
    p.add_argument("course", type=str)
    p.add_argument("--platform", action="store_true", help="Open the learning platform in the browser")
    p = s.add_parser("grade", help="Record or list grades")
    p.add_argument("course", type=str)
    p.add_argument("grade", type=str, nargs="?", help="Grade value (omit to list grades)")
    p.add_argument("--scheme", type=str, default="german", help="german|ects|us|percentage|passfail")
    p.add_argument(
        "--component",
        action="append",
        help="NAME:WEIGHT:EARNED/TOTAL, NAME:WEIGHT:GRADE or NAME:bonus:POINTS (repeatable)",
    )
    p.add_argument("--not-final", action="store_true", help="Record as a non-final attempt")
    p.add_argument("--exam-date", type=str)
    p.add_argument("--notes", type=str)
    p = s.add_parser("set-active", help="Make a course the active one")
    p.add_argument("course", type=str)
    p = s.add_parser("delete", help="Delete a course")
    p.add_argument("course", type=str)
    p.add_argument("--delete-directory", action="store_true")
    p.add_argument("-y", "--yes", action="store_true")

    # schedule
    p_sch = sub.add_parser("schedule", help="Manage the timetable")
    s = p_sch.add_subparsers(dest="action", required=True)
    p = s.add_parser("add", help="Add a weekly slot (--day) or a one-time event (--date)")
    p.add_argument("course", type=str)
    p.add_argument("--time", type=str, required=True, help="HH:MM-HH:MM")
    p.add_argument("--day", type=str, help="Weekday (mon, tue, ...)")
    p.add_argument("--date", type=str, help="Date of a one-time event")
    p.add_argument("--type", type=str, default=ScheduleType.LECTURE.value, help="lecture|tutorium|exercise")
    p.add_argument("--start", type=str, help="First day (default: semester start)")
    p.add_argument("--end", type=str, help="Last day (default: semester end)")
    p.add_argument("--room", type=str)
    p.add_argument("--location", type=str)
    p.add_argument("--description", type=str)
    p = s.add_parser("cancel", help="Cancel one occurrence")
    p.add_argument("schedule_id", type=int)
    p.add_argument("date", type=str)
    p.add_argument("--reason", type=str)
    p = s.add_parser("override", help="Change room/time of one occurrence")
    p.add_argument("schedule_id", type=int)
    p.add_argument("date", type=str)
    p.add_argument("--room", type=str)
    p.add_argument("--time", type=str, help="HH:MM-HH:MM")
    p = s.add_parser("list", help="List schedules")
    p.add_argument("course", type=str, nargs="?")
    p.add_argument("--events", action="store_true", help="Also list events")
    p = s.add_parser("edit", help="Change a weekly slot")
    p.add_argument("schedule_id", type=int)
    p.add_argument("--type", type=str)
    p.add_argument("--day", type=str)
    p.add_argument("--time", type=str)
    p.add_argument("--start", type=str)
    p.add_argument("--end", type=str)
    p.add_argument("--room", type=str)
    p.add_argument("--location", type=str)
    p = s.add_parser("delete", help="Delete a schedule (or an event with --event)")
    p.add_argument("id", type=int)
    p.add_argument("--event", action="store_true")

    # holiday
    p_hol = sub.add_parser("holiday", help="Manage holidays")
    s = p_hol.add_subparsers(dest="action", required=True)
    p = s.add_parser("add", help="Add a holiday")
    p.add_argument("name", type=str)
    p.add_argument("start", type=str)
    p.add_argument("end", type=str, nargs="?")
    p.add_argument("--semester", type=str, help="Only for this semester")
    p = s.add_parser("list", help="List holidays")
    p.add_argument("--semester", type=str)
    p = s.add_parser("add-exception", help="Keep a course running during a holiday")
    p.add_argument("holiday_id", type=int)
    p.add_argument("course", type=str)
    p = s.add_parser("remove", help="Remove a holiday (or one exception)")
    p.add_argument("holiday_id", type=int)
    p.add_argument("--exception", type=str, metavar="COURSE", help="Only remove this course's exception")

    # degree
    p_deg = sub.add_parser("degree", help="Manage degrees")
    s = p_deg.add_subparsers(dest="action", required=True)
    p = s.add_parser("add", help="Create a degree")
    p.add_argument("type", type=str, help="bachelor|master|phd")
    p.add_argument("name", type=str)
    p.add_argument("university", type=str)
    p.add_argument("--ects", type=int, help="Total ECTS (default by type)")
    p.add_argument("--start", type=str)
    p.add_argument("--end", type=str)
    p.add_argument("--area", action="append", help="NAME:ECTS or NAME:ECTS:nogpa (repeatable)")
    p.add_argument("--from-config", action="store_true", help="Create areas from [categories]")
    p = s.add_parser("list", help="List degrees")
    p.add_argument("--all", action="store_true", help="Include inactive degrees")
    p = s.add_parser("show", help="Show degree progress")
    p.add_argument("degree_id", type=int)
    p = s.add_parser("add-area", help="Add an area to a degree")
    p.add_argument("degree_id", type=int)
    p.add_argument("name", type=str)
    p.add_argument("ects", type=int)
    p.add_argument("--no-gpa", action="store_true", help="Grades do not count towards the GPA")
    p = s.add_parser("map", help="Map a course into a degree area")
    p.add_argument("course", type=str)
    p.add_argument("degree_id", type=int)
    p.add_argument("area", type=str, help="Area name or id")
    p.add_argument("--ects", type=int, help="ECTS counted in this area")
    p = s.add_parser("unmap", help="Remove a course mapping")
    p.add_argument("course", type=str)
    p.add_argument("degree_id", type=int)
    p.add_argument("area", type=str)
    s.add_parser("unmapped", help="Courses not mapped to any area")
    p = s.add_parser("delete", help="Delete a degree")
    p.add_argument("degree_id", type=int)
    p.add_argument("-y", "--yes", action="store_true")

    # today / status / sync
    p = sub.add_parser("today", help="Today's timetable")
    p.add_argument("--date", type=str, help="Another day")
    sub.add_parser("status", help="Active pointers and workspace drift")
    p = sub.add_parser("sync", help="Create missing semester folders")
    p.add_argument("--dry-run", action="store_true")

    # service
    p_srv = sub.add_parser("service", help="Background course switcher")
    s = p_srv.add_subparsers(dest="action", required=True)
    s.add_parser("install", help="Install as launchd agent (macOS)")
    s.add_parser("uninstall", help="Remove the launchd agent")
    s.add_parser("start", help="Start in the background")
    s.add_parser("stop", help="Stop the background service")
    s.add_parser("status", help="Is the service running?")
    s.add_parser("run", help="Run in the foreground")

    # stats
    p_stats = sub.add_parser("stats", help="Grades and progress")
    s = p_stats.add_subparsers(dest="action", required=True)
    p = s.add_parser("average", help="GPA")
    p.add_argument("--scope", choices=GPA_SCOPES, default="overall")
    p.add_argument("--id", type=int, help="Semester/degree/area id for the scope")
    p.add_argument("--include-non-gpa", action="store_true")
    p.add_argument("--scheme", type=str, default="german")
    p = s.add_parser("categories", help="Progress per degree area")
    p.add_argument("--degree", type=int)
    s.add_parser("overview", help="Everything at a glance")

    return parser


HANDLERS: dict[tuple[str, Optional[str]], Callable[[argparse.Namespace, Context], int]] = {
    ("config", "init"): _cmd_config_init,
    ("config", "show"): _cmd_config_show,
    ("config", "edit"): _cmd_config_edit,
    ("semester", "add"): _cmd_semester_add,
    ("semester", "list"): _cmd_semester_list,
    ("semester", "set-current"): _cmd_semester_set_current,
    ("semester", "show"): _cmd_semester_show,
    ("semester", "archive"): _cmd_semester_archive,
    ("semester", "delete"): _cmd_semester_delete,
    ("course", "add"): _cmd_course_add,
    ("course", "list"): _cmd_course_list,
    ("course", "show"): _cmd_course_show,
    ("course", "edit"): _cmd_course_edit,
    ("course", "open"): _cmd_course_open,
    ("course", "grade"): _cmd_course_grade,
    ("course", "set-active"): _cmd_course_set_active,
    ("course", "delete"): _cmd_course_delete,
    ("schedule", "add"): _cmd_schedule_add,
    ("schedule", "cancel"): _cmd_schedule_cancel,
    ("schedule", "override"): _cmd_schedule_override,
    ("schedule", "list"): _cmd_schedule_list,
    ("schedule", "edit"): _cmd_schedule_edit,
    ("schedule", "delete"): _cmd_schedule_delete,
    ("holiday", "add"): _cmd_holiday_add,
    ("holiday", "list"): _cmd_holiday_list,
    ("holiday", "add-exception"): _cmd_holiday_add_exception,
    ("holiday", "remove"): _cmd_holiday_remove,
    ("degree", "add"): _cmd_degree_add,
    ("degree", "list"): _cmd_degree_list,
    ("degree", "show"): _cmd_degree_show,
    ("degree", "add-area"): _cmd_degree_add_area,
    ("degree", "map"): _cmd_degree_map,
    ("degree", "unmap"): _cmd_degree_unmap,
    ("degree", "unmapped"): _cmd_degree_unmapped,
    ("degree", "delete"): _cmd_degree_delete,
    ("today", None): _cmd_today,
    ("status", None): _cmd_status,
    ("sync", None): _cmd_sync,
    ("service", "install"): _cmd_service_install,
    ("service", "uninstall"): _cmd_service_uninstall,
    ("service", "start"): _cmd_service_start,
    ("service", "stop"): _cmd_service_stop,
    ("service", "status"): _cmd_service_status,
    ("service", "run"): _cmd_service_run,
    ("stats", "average"): _cmd_stats_average,
    ("stats", "categories"): _cmd_stats_categories,
    ("stats", "overview"): _cmd_stats_overview,
}


def main(argv: list[str] | None = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)

    handler = HANDLERS.get((args.command, getattr(args, "action", None)))
    if handler is None:
        parser.print_help()
        raise SystemExit(1)

    try:
        cfg_path = Path(args.config).expanduser() if args.config else config_path()
        ctx = Context(
            config=Config.load(cfg_path),
            config_path=cfg_path,
            db_path=Path(args.db).expanduser() if args.db else None,
            explicit_config=bool(args.config),
        )
        code = handler(args, ctx)
    except MmsError as e:
        logger.debug("Command failed", exc_info=True)
        ui.failure(str(e))
        raise SystemExit(e.exit_code)
    finally:
        close_connection()

    raise SystemExit(code)
