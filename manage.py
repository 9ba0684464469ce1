#!/usr/bin/env python
"""Command-line entry point for the hospital administration backend."""
import os
import sys


def main() -> None:
    """Run administrative tasks (migrate, runserver, refresh_stats, ...)."""
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'hospital.settings')
    from django.core.management import execute_from_command_line  # type: ignore

    execute_from_command_line(sys.argv)


if __name__ == '__main__':
    main()
