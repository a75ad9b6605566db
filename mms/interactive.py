from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mms.config import Config
from mms.degree import DegreeProgress
from mms.grade import GPAInfo, format_grade
from mms.model import Course, CourseEvent, CourseSchedule, Degree, Grade, Holiday, Semester
from mms.schedule import AgendaEntry
from mms.symlinks import LinkState
from mms.sync import SyncStatus
from mms.validation import format_german_date, stored_time_to_minutes, weekday_name

console = Console()

EDITOR_CHOICES = ["zed", "vim", "nano", "code", "emacs"]
PDF_VIEWER_CHOICES = ["skim", "preview", "zathura", "evince"]


def _println(msg: Any = "") -> None:
    console.print(msg)


def _prompt(msg: str) -> str:
    return console.input(msg)


def _safe_str(x: Any) -> str:
    return "" if x is None else str(x)


def info(msg: str) -> None:
    _println(escape(msg))


def success(msg: str) -> None:
    _println(f"[green]✓[/] {escape(msg)}")


def warning(msg: str) -> None:
    _println(f"[yellow]⚠[/] {escape(msg)}")


def failure(msg: str) -> None:
    _println(f"[red]✗[/] {escape(msg)}")


def confirm(msg: str, default: bool = False) -> bool:
    hint = "[Y/n]" if default else "[y/N]"
    answer = _prompt(f"{msg} {hint}: ").strip().lower()
    if not answer:
        return default
    return answer in ("y", "yes")


# ---------------------------------------------------------------------------
# Setup wizard
# ---------------------------------------------------------------------------


def _ask(label: str, current: str = "", required: bool = True) -> str:
    while True:
        suffix = f" [{current}]" if current else ""
        answer = _prompt(f"{label}{suffix}: ").strip()
        value = answer or current
        if value or not required:
            return value
        _println("[red]This field is required.[/]")


def _choose(label: str, choices: list[str], current: str = "") -> str:
    _println(f"\n{label}:")
    for i, name in enumerate(choices, start=1):
        marker = " (current)" if name == current else ""
        _println(f"  {i}) {name}{marker}")
    _println(f"  {len(choices) + 1}) Other")
    while True:
        pick = _prompt("Choose number (blank = keep current): ").strip()
        if not pick and current:
            return current
        if pick.isdigit() and 1 <= int(pick) <= len(choices):
            return choices[int(pick) - 1]
        if pick.isdigit() and int(pick) == len(choices) + 1:
            return _ask("Command")
        _println("[red]Invalid choice.[/]")


def run_setup_wizard(config: Config, only_missing: bool = False) -> Config:
    """
    Ask for the general settings and store them in `config` (not saved here).

    With only_missing, fields that already have a value are not asked again.
    """
    g = config.general
    missing = set(config.missing_fields()) if only_missing else None

    def wanted(name: str) -> bool:
        return missing is None or name in missing

    _println("\n[bold]=== mms setup ===[/]")
    if wanted("student_name"):
        g.student_name = _ask("Student name", g.student_name)
    if wanted("student_id"):
        g.student_id = _ask("Student ID", g.student_id)
    if wanted("university_base_path"):
        g.university_base_path = _ask("Studies directory", g.university_base_path)
    if wanted("default_editor"):
        g.default_editor = _choose("Editor", EDITOR_CHOICES, g.default_editor)
    if wanted("default_pdf_viewer"):
        g.default_pdf_viewer = _choose("PDF viewer", PDF_VIEWER_CHOICES, g.default_pdf_viewer)
    if wanted("default_location"):
        g.default_location = _ask("Default location", g.default_location)
    return config


def render_config(config: Config, path: Path) -> None:
    _println(f"[bold]Configuration[/] ({path})")
    for section, values in config.to_dict().items():
        if section == "categories":
            continue
        table = Table(title=f"[{section}]", box=box.SIMPLE, show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in values.items():
            table.add_row(key, _safe_str(value))
        console.print(table)
    if config.categories:
        table = Table(title="[categories]", box=box.SIMPLE)
        table.add_column("Category", style="cyan")
        table.add_column("Required ECTS", justify="right")
        table.add_column("Counts towards average")
        for name, cat in sorted(config.categories.items()):
            table.add_row(name, str(cat.required_ects), "yes" if cat.counts_towards_average else "no")
        console.print(table)


# ---------------------------------------------------------------------------
# Semesters and courses
# ---------------------------------------------------------------------------


def render_semesters(semesters: Sequence[Semester]) -> None:
    if not semesters:
        _println("No semesters yet. Create one with: mms semester add <b|m> <number>")
        return
    table = Table(title="Semesters", box=box.SIMPLE)
    table.add_column("ID", justify="right")
    table.add_column("Code", style="bold cyan")
    table.add_column("Period")
    table.add_column("University")
    table.add_column("Status")
    for s in semesters:
        status = []
        if s.is_current:
            status.append("[green]current[/]")
        if s.is_archived:
            status.append("[dim]archived[/]")
        period = ""
        if s.start_date or s.end_date:
            period = f"{format_german_date(s.start_date)} - {format_german_date(s.end_date)}"
        table.add_row(str(s.id), s.code, period, _safe_str(s.university), " ".join(status))
    console.print(table)


def render_semester_detail(semester: Semester, courses: Sequence[Course]) -> None:
    _println(f"[bold cyan]{semester.code}[/] {semester}")
    _println(f"  Directory: {semester.directory_path}")
    if semester.start_date or semester.end_date:
        _println(f"  Period:    {format_german_date(semester.start_date)} - {format_german_date(semester.end_date)}")
    if semester.university:
        _println(f"  University: {semester.university}")
    if semester.default_location:
        _println(f"  Location:  {semester.default_location}")
    _println(f"  Current:   {'yes' if semester.is_current else 'no'}")
    render_courses(courses, title=f"Courses in {semester.code}")


def render_courses(courses: Sequence[Course], title: str = "Courses", semester_codes: Optional[dict[int, str]] = None) -> None:
    if not courses:
        _println("No courses.")
        return
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("ID", justify="right")
    if semester_codes:
        table.add_column("Sem")
    table.add_column("Short", style="bold cyan")
    table.add_column("Name")
    table.add_column("ECTS", justify="right")
    table.add_column("Lecturer", style="magenta")
    table.add_column("Flags")
    for c in courses:
        flags = []
        if c.is_external:
            flags.append("external")
        if c.is_dropped:
            flags.append("[red]dropped[/]")
        if c.is_archived:
            flags.append("[dim]archived[/]")
        row = [str(c.id)]
        if semester_codes:
            row.append(semester_codes.get(c.semester_id, "?"))
        row += [c.short_name, c.name, str(c.ects), _safe_str(c.lecturer), " ".join(flags)]
        table.add_row(*row)
    console.print(table)


def render_course_detail(
    course: Course, semester_code: str, schedules: Sequence[CourseSchedule], grade: Optional[Grade]
) -> None:
    _println(f"[bold cyan]{course.short_name}[/] {course.name} ({course.ects} ECTS, {semester_code})")
    rows = [
        ("Directory", course.directory_path),
        ("Lecturer", course.lecturer),
        ("Lecturer email", course.lecturer_email),
        ("Tutor", course.tutor),
        ("Tutor email", course.tutor_email),
        ("Platform", course.learning_platform_url),
        ("University", course.university),
        ("Location", course.location),
        ("Original path", course.original_path),
        ("Git remote", course.git_remote_url),
    ]
    for label, value in rows:
        if value:
            _println(f"  {label + ':':<16}{value}")
    if schedules:
        render_schedules(schedules, {course.id: course.short_name})
    if grade is not None:
        status = "[green]passed[/]" if grade.passed else "[red]failed[/]"
        _println(f"  Grade: {format_grade(grade.grade, grade.grading_scheme)} ({grade.grading_scheme.value}) {status}")


# ---------------------------------------------------------------------------
# Timetable
# ---------------------------------------------------------------------------


def render_schedules(schedules: Sequence[CourseSchedule], names: dict[int, str]) -> None:
    if not schedules:
        _println("No schedules.")
        return
    table = Table(title="Schedules", box=box.SIMPLE)
    table.add_column("ID", justify="right")
    table.add_column("Course", style="bold cyan")
    table.add_column("Type")
    table.add_column("Day")
    table.add_column("Time")
    table.add_column("Period")
    table.add_column("Room")
    for s in schedules:
        table.add_row(
            str(s.id),
            names.get(s.course_id, str(s.course_id)),
            s.schedule_type.value,
            weekday_name(s.day_of_week),
            f"{s.start_time}-{s.end_time}",
            f"{format_german_date(s.start_date)} - {format_german_date(s.end_date)}",
            _safe_str(s.room),
        )
    console.print(table)


def render_events(events: Sequence[CourseEvent], names: dict[int, str]) -> None:
    if not events:
        return
    table = Table(title="Events", box=box.SIMPLE)
    table.add_column("ID", justify="right")
    table.add_column("Course", style="bold cyan")
    table.add_column("Type")
    table.add_column("Date")
    table.add_column("Time")
    table.add_column("Room")
    table.add_column("Note")
    for e in events:
        times = f"{e.start_time}-{e.end_time}" if e.has_times else "all day"
        table.add_row(
            str(e.id),
            names.get(e.course_id, str(e.course_id)),
            e.event_type.value,
            format_german_date(e.date),
            times,
            _safe_str(e.room),
            _safe_str(e.description),
        )
    console.print(table)


def render_holidays(holidays: Sequence[Holiday], semester_codes: dict[int, str], exceptions: dict[int, list[str]]) -> None:
    if not holidays:
        _println("No holidays.")
        return
    table = Table(title="Holidays", box=box.SIMPLE)
    table.add_column("ID", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Semester")
    table.add_column("Exceptions")
    for h in holidays:
        table.add_row(
            str(h.id),
            h.name,
            format_german_date(h.start_date),
            format_german_date(h.end_date),
            semester_codes.get(h.semester_id, "all") if h.semester_id else "all",
            ", ".join(exceptions.get(h.id, [])),
        )
    console.print(table)


_KIND_STYLE = {
    "regular": "",
    "modified": "yellow",
    "special": "magenta",
    "cancelled": "red strike",
    "holiday": "dim",
}


def render_today(entries: Sequence[AgendaEntry], day: date, now: Optional[datetime] = None) -> None:
    _println(f"[bold]{weekday_name(day.weekday())}, {format_german_date(day)}[/]")
    if not entries:
        _println("Nothing scheduled today.")
        return

    now_minute = None
    if now is not None and now.date() == day:
        now_minute = now.hour * 60 + now.minute

    table = Table(box=box.SIMPLE)
    table.add_column("Time")
    table.add_column("Course", style="bold cyan")
    table.add_column("Type")
    table.add_column("Room")
    table.add_column("Note")
    for e in entries:
        times = f"{e.start_time}-{e.end_time}" if e.start_time and e.end_time else "all day"
        note = []
        if e.kind != "regular":
            note.append(e.kind)
        if e.note:
            note.append(e.note)
        if now_minute is not None and e.end_time and stored_time_to_minutes(e.end_time) <= now_minute:
            note.append("(done)")
        table.add_row(
            times,
            e.course.short_name,
            e.schedule_type.value,
            _safe_str(e.room),
            " ".join(note),
            style=_KIND_STYLE.get(e.kind, ""),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Status and sync
# ---------------------------------------------------------------------------


def _link_line(label: str, state: LinkState) -> str:
    if not state.exists:
        return f"  {label}: [dim](not set)[/]"
    if state.is_broken:
        return f"  {label}: {state.target} [red](broken)[/]"
    return f"  {label}: {state.target}"


def render_status(
    semester: Optional[Semester],
    course: Optional[Course],
    links: tuple[LinkState, LinkState],
    sync_status: SyncStatus,
    base: Path,
) -> None:
    _println("[bold]=== mms status ===[/]")
    _println(f"Active semester: {semester.code if semester else '(none)'}")
    _println(f"Active course:   {course.short_name + ' - ' + course.name if course else '(none)'}")
    _println("Symlinks:")
    _println(_link_line("cs", links[0]))
    _println(_link_line("cc", links[1]))

    _println(f"\nWorkspace: {base}")
    for s in sync_status.synced:
        _println(f"  [green]✓[/] {s.code}")
    for s in sync_status.db_only:
        _println(f"  [yellow]⚠[/] {s.code} (database only, folder missing)")
    for d in sync_status.disk_only:
        if d.parsed is None:
            _println(f"  [yellow]⚠[/] {escape(d.name)} (on disk only, [red]invalid format[/])")
        else:
            _println(f"  [yellow]⚠[/] {escape(d.name)} (on disk only, not in database)")

    _println(
        f"\nSummary: {len(sync_status.synced)} synced, "
        f"{len(sync_status.db_only)} database only, {len(sync_status.disk_only)} on disk only"
    )
    if not sync_status.is_synced():
        _println("Run 'mms sync' to create missing folders.")


# ---------------------------------------------------------------------------
# Degrees and grades
# ---------------------------------------------------------------------------


def render_degrees(degrees: Sequence[Degree]) -> None:
    if not degrees:
        _println("No degrees yet. Create one with: mms degree add")
        return
    table = Table(title="Degrees", box=box.SIMPLE)
    table.add_column("ID", justify="right")
    table.add_column("Type")
    table.add_column("Name", style="bold cyan")
    table.add_column("University")
    table.add_column("ECTS", justify="right")
    table.add_column("Active")
    for d in degrees:
        table.add_row(
            str(d.id), d.type.value, d.name, d.university, str(d.total_ects_required), "yes" if d.is_active else "no"
        )
    console.print(table)


def render_degree_progress(progress: DegreeProgress) -> None:
    d = progress.degree
    _println(f"[bold cyan]{d}[/]")
    if d.start_date or d.expected_end_date:
        _println(f"  Period: {format_german_date(d.start_date)} - {format_german_date(d.expected_end_date)}")
    table = Table(box=box.SIMPLE)
    table.add_column("Area", style="bold")
    table.add_column("Earned / Required", justify="right")
    table.add_column("Done", justify="right")
    table.add_column("GPA", justify="right")
    for a in progress.areas:
        gpa = f"{a.area_gpa:.2f}" if a.area_gpa is not None else "-"
        if not a.counts_towards_gpa:
            gpa = "[dim]not counted[/]"
        table.add_row(a.category_name, f"{a.earned_ects} / {a.required_ects}", f"{a.percent_complete:.0f}%", gpa)
    console.print(table)
    total = f"{progress.total_earned} / {progress.total_required} ECTS ({progress.percent_complete:.0f}%)"
    _println(f"Total: {total}")
    _println(f"Overall GPA: {progress.overall_gpa:.2f}" if progress.overall_gpa is not None else "Overall GPA: -")


def render_grades(rows: Sequence[tuple[Course, Grade]], title: str = "Grades") -> None:
    if not rows:
        _println("No grades recorded.")
        return
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("Course", style="bold cyan")
    table.add_column("ECTS", justify="right")
    table.add_column("Grade", justify="right")
    table.add_column("Scheme")
    table.add_column("Attempt", justify="right")
    table.add_column("Result")
    for course, g in rows:
        table.add_row(
            course.short_name,
            str(course.ects),
            format_grade(g.grade, g.grading_scheme),
            g.grading_scheme.value,
            str(g.attempt_number),
            "[green]passed[/]" if g.passed else "[red]failed[/]",
        )
    console.print(table)


def render_gpa(label: str, info: GPAInfo) -> None:
    value = f"{info.gpa:.2f}" if info.gpa is not None else "-"
    _println(f"{label}: [bold]{value}[/] ({info.total_courses} courses, {info.total_ects} ECTS)")
