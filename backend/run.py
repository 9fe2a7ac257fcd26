"""
run.py — Process entrypoint (`apartment-ledger` console script, or
`python -m backend.run`).

Startup sequence: logging → app factory (config + production checks) →
database ping → optional create_all (postgres.autocreate) → serve.

Exit codes: 0 on clean shutdown, 1 when configuration, the database or a
required secret is unusable.
"""

from __future__ import annotations

import logging
import os
import sys

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from yaml import YAMLError

logger = logging.getLogger("backend.run")


def _configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    _configure_logging()
    config_name = os.getenv("FLASK_ENV", "development")

    try:
        from backend.app import create_app

        app = create_app(config_name)
    except (ValueError, YAMLError) as exc:
        logger.error("Configuration error: %s", exc)
        return 1

    from backend.app.extensions import db

    with app.app_context():
        try:
            db.session.execute(text("SELECT 1"))
            if app.config.get("DB_AUTOCREATE"):
                db.create_all()
                logger.info("Database tables created")
        except SQLAlchemyError as exc:
            logger.error("Database unavailable: %s", exc)
            return 1
        finally:
            db.session.remove()

    port = app.config["SERVER_PORT"]
    logger.info("%s listening on port %s (%s)", app.config["SERVICE_NAME"], port, config_name)
    try:
        app.run(host="0.0.0.0", port=port, debug=app.config.get("DEBUG", False))
    except KeyboardInterrupt:
        logger.info("Shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
