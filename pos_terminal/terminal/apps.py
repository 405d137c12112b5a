# terminal/apps.py

"""
TERMINAL APP CONFIG

Single-till POS module:
- POS session (login/logout against the retail backend)
- In-memory cart
- Checkout orchestration + payment confirmation polling
- Invoice projection + printable receipt
"""

from django.apps import AppConfig


class TerminalConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "terminal"
    verbose_name = "POS Terminal"

    def ready(self):
        # Connect cache-invalidation receivers.
        from terminal.services import notifications  # noqa: F401
