"""
__init__.py – CoachHQ booking engine
────────────────────────────────────────────────────────────
Initialises the Flask app and registers all feature blueprints.

 • bookings_router   → trial / recurring lifecycle
 • packages_router   → packages & payment ledger
 • group_router      → group sessions & capacity-gated signups
 • reminders_router  → pending / due reminders, mark-sent hook
 • dashboard_router  → today / week / month / upcoming snapshot
 • tasks_router      → reminder backfill & purge trigger
────────────────────────────────────────────────────────────
"""

import logging
from typing import Optional

from flask import Flask

from . import config, db


# ─────────────────────────────────────────────────────────────
# Flask App Factory
# ─────────────────────────────────────────────────────────────
def create_app(database_url: Optional[str] = None):
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # ── Configure logging ───────────────────────────────
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s :: %(message)s",
    )

    # ── Database ────────────────────────────────────────
    if database_url or db.engine is None:
        db.configure(database_url or config.DATABASE_URL)
    db.init_db()

    # ── Register Blueprints ─────────────────────────────
    from .bookings_router import bp as bookings_bp
    from .packages_router import bp as packages_bp
    from .group_router import bp as group_bp
    from .reminders_router import bp as reminders_bp
    from .dashboard_router import bp as dashboard_bp
    from .tasks_router import tasks_bp

    app.register_blueprint(bookings_bp, url_prefix="/bookings")
    app.register_blueprint(packages_bp, url_prefix="/packages")
    app.register_blueprint(group_bp, url_prefix="/group-sessions")
    app.register_blueprint(reminders_bp, url_prefix="/reminders")
    app.register_blueprint(dashboard_bp, url_prefix="/dashboard")
    app.register_blueprint(tasks_bp, url_prefix="/tasks")

    # ── Root health check ───────────────────────────────
    @app.route("/health", methods=["GET"])
    def health_root():
        return {"status": "ok", "service": "CoachHQ Booking Engine"}, 200

    return app
