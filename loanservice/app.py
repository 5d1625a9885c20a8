"""Application wiring and the command that serves the API."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from typing import Any

import redis
from dotenv import load_dotenv
from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from .cache import open_redis
from .config import DEFAULT_IDEMPOTENCY_TTL_SECS, load_config
from .db import open_engine
from .handlers import ApprovalHandler, LoanHandler, health
from .idempotency import install_idempotency
from .repository import SqlApprovalRepository, SqlLoanRepository, SqlUnitOfWork
from .usecases import ApprovalUsecase, LoanUsecase
from .validation import Validator

__all__ = ["create_app", "main"]

logger = logging.getLogger(__name__)


def create_app(
    loan_usecase: LoanUsecase,
    approval_usecase: ApprovalUsecase,
    redis_client: Any = None,
    idempotency_ttl: timedelta | float = DEFAULT_IDEMPOTENCY_TTL_SECS,
) -> Flask:
    """Build the Flask app with its routes; mutating requests are idempotent when a
    Redis client is given."""
    app = Flask(__name__, static_folder=None)
    if redis_client is not None:
        install_idempotency(app, redis_client, idempotency_ttl)

    validator = Validator()
    loans = LoanHandler(loan_usecase, validator)
    approvals = ApprovalHandler(approval_usecase, validator)

    app.add_url_rule("/health", view_func=health, methods=["GET"])
    app.add_url_rule("/loans", view_func=loans.create_loan, methods=["POST"])
    app.add_url_rule(
        "/loans/<loan_id>/approve", view_func=approvals.approve_loan, methods=["POST"]
    )
    app.add_url_rule("/loans/<loan_id>", view_func=loans.get_loan, methods=["GET"])

    for rule in app.url_map.iter_rules():
        for method in sorted(rule.methods - {"HEAD", "OPTIONS"}):
            logger.info("route: %-6s %s", method, rule.rule)
    return app


def _fatal(message: str, exc: BaseException) -> SystemExit:
    logger.critical("%s: %s", message, exc)
    return SystemExit(1)


def main(argv: list[str] | None = None) -> None:
    """Load configuration, connect to MySQL and Redis, and serve the API."""
    parser = argparse.ArgumentParser(prog="loanservice", description="Serve the loan API.")
    parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stdout,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_dotenv(".env")
    config = load_config()
    try:
        config.validate()
    except ValueError as exc:
        raise _fatal("bad config", exc) from exc

    try:
        port = int(config.app_port)
    except ValueError as exc:
        raise _fatal("bad config", exc) from exc

    try:
        engine = open_engine(config.mysql_dsn())
    except SQLAlchemyError as exc:
        raise _fatal("mysql", exc) from exc

    try:
        client = open_redis(config.redis_addr, config.redis_db)
    except (redis.RedisError, ValueError) as exc:
        engine.dispose()
        raise _fatal("redis", exc) from exc

    try:
        loan_repo = SqlLoanRepository(engine)
        approval_repo = SqlApprovalRepository(engine)
        uow = SqlUnitOfWork(engine)
        app = create_app(
            LoanUsecase(loan_repo),
            ApprovalUsecase(loan_repo, approval_repo, uow),
            client,
            timedelta(seconds=config.idempotency_ttl_secs),
        )
        logger.info("listening on :%s", config.app_port)
        app.run(host="0.0.0.0", port=port)
    finally:
        client.close()
        engine.dispose()