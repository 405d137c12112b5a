#!/usr/bin/env python
"""
PATH: manage.py

Till management entrypoint (runserver, test, watch_payment).

DJANGO_SETTINGS_MODULE falls back to backend.settings.dev when it is unset
or names the settings package itself. The till machine sets
backend.settings.prod explicitly.
"""

from __future__ import annotations

import os
import sys

DEFAULT_SETTINGS = "backend.settings.dev"


def _settings_module() -> str:
    configured = (os.environ.get("DJANGO_SETTINGS_MODULE") or "").strip()
    # the package has no INSTALLED_APPS of its own
    if configured in ("", "backend.settings"):
        return DEFAULT_SETTINGS
    return configured


def main() -> None:
    os.environ["DJANGO_SETTINGS_MODULE"] = _settings_module()

    try:
        from django.core.management import execute_from_command_line
    except ImportError as exc:
        raise ImportError(
            "Django is not importable. Install the project (pip install -e .) "
            "inside the till's virtual environment first."
        ) from exc

    execute_from_command_line(sys.argv)


if __name__ == "__main__":
    main()
