"""
mms – study management system.

Keeps a university workspace on disk and a local SQLite database in agreement
and rotates the "current semester / current course" pointers from the weekly
timetable.
"""
