"""
Package entry point.

Allows running the application via:

    python -m mms

This is also what the background service spawns (`python -m mms service run`).
"""

from mms.cli import main

if __name__ == "__main__":
    main()
