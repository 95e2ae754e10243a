#!/usr/bin/env python
"""
Command-line entry point for the carehub project.

Besides the stock Django commands this runs the payment expiry worker:
``python manage.py run_payment_worker``.
"""
import os
import sys


def main() -> None:
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'carehub.settings')
    try:
        from django.core.management import execute_from_command_line  # type: ignore
    except ImportError as exc:
        raise ImportError(
            "Couldn't import Django. Is it installed and is the virtualenv active?"
        ) from exc
    execute_from_command_line(sys.argv)


if __name__ == '__main__':
    main()
