#!/usr/bin/env python3
"""
Daily reminder job (run from cron or a scheduled worker).

- Unsigned service agreements / consent forms activated more than 48 hours ago
- Partial payments whose next balance reminder date has arrived

Usage:
    python scripts/send_reminders.py [--only forms|billing]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def run(only: str | None = None) -> dict:
    from app.portal import create_app
    from app.portal.db import session_scope
    from app.portal.modules.reminders.service import send_billing_reminders, send_form_reminders

    app = create_app()
    results: dict = {}
    # Email templates render through Flask, so the jobs need an app context.
    with app.app_context():
        if only in (None, "forms"):
            with session_scope(app) as s:
                results["forms"] = send_form_reminders(s)
        if only in (None, "billing"):
            with session_scope(app) as s:
                results["billing"] = send_billing_reminders(s)
    return results


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description="Send scheduled patient reminders.")
    parser.add_argument("--only", choices=("forms", "billing"), default=None)
    args = parser.parse_args()
    results = run(args.only)
    for job, counts in results.items():
        print(f"{job}: {counts['sent']} sent, {counts['failed']} failed, {counts['total']} total", flush=True)


if __name__ == "__main__":
    main()
