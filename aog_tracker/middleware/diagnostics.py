"""
Startup diagnostics, run once from create_app (skipped under TESTING).

Logs a banner with the store backend, missing AOG tables and the budget
gateway mode. Problems are logged as warnings; startup never aborts here.
"""

import logging
import sys

from flask import Flask
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError

from aog_tracker.models import db

logger = logging.getLogger(__name__)


def _backend(uri: str) -> str:
    for prefix, name in (("postgresql", "PostgreSQL"), ("sqlite", "SQLite"), ("mysql", "MySQL")):
        if uri.startswith(prefix):
            return name
    return "unknown"


def run_startup_diagnostics(app: Flask):
    if app.config.get("TESTING"):
        return

    issues: list[str] = []
    backend = _backend(str(app.config.get("SQLALCHEMY_DATABASE_URI") or ""))

    with app.app_context():
        try:
            db.session.execute(db.text("SELECT 1"))
            store = f"{backend} (ok)"
        except SQLAlchemyError as exc:
            store = f"{backend} (FAILED)"
            issues.append(f"Event store unreachable: {exc}")

        expected = set(db.metadata.tables)
        try:
            missing = sorted(expected - set(sa_inspect(db.engine).get_table_names()))
        except SQLAlchemyError:
            missing = sorted(expected)
        if missing:
            issues.append(f"Missing tables {missing}; run 'flask db upgrade'")

    budget_url = app.config.get("BUDGET_SERVICE_URL") or ""
    budget = f"remote {budget_url}" if budget_url else "local actual_spends table"
    py = ".".join(str(p) for p in sys.version_info[:3])

    logger.info(
        "\n"
        "  AOG Tracker startup\n"
        "    python  : %s\n"
        "    debug   : %s\n"
        "    store   : %s\n"
        "    tables  : %d/%d\n"
        "    budget  : %s",
        py, app.debug, store, len(expected) - len(missing), len(expected), budget,
    )
    for issue in issues:
        logger.warning("Startup issue: %s", issue)
