"""Startup/shutdown sequence and periodic maintenance tasks."""

import asyncio
import logging

from app.core.config import settings
from app.core.database import async_session_maker, engine, init_db
from app.core.logging import get_logger, setup_logging

_logger = get_logger("lifespan")

# How often to purge expired revocations and old audit events (in seconds)
REVOCATION_CLEANUP_INTERVAL_SECONDS = 300
AUDIT_RETENTION_INTERVAL_SECONDS = 3600


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _logger.error(f"Background task {task.get_name()} failed: {exc}")


async def revoked_token_cleanup_loop(logger: logging.Logger) -> None:
    """Periodically remove expired entries from the revocation list."""
    from app.services.tokens import cleanup_expired_revocations

    while True:
        await asyncio.sleep(REVOCATION_CLEANUP_INTERVAL_SECONDS)
        try:
            async with async_session_maker() as db:
                removed = await cleanup_expired_revocations(db)
                await db.commit()
                if removed > 0:
                    logger.info(f"Cleaned up {removed} expired revoked tokens")
        except Exception:
            logger.exception("Error cleaning up revoked tokens")


async def audit_retention_loop(logger: logging.Logger) -> None:
    """Periodically delete audit events older than the retention period."""
    from app.services.audit import get_audit_service

    # Wait a bit before first cleanup to let the app start up
    await asyncio.sleep(60)
    while True:
        try:
            removed = await get_audit_service().cleanup_older_than(settings.audit_retention_days)
            if removed > 0:
                logger.info(
                    f"Deleted {removed} audit events older than {settings.audit_retention_days} days"
                )
        except Exception:
            logger.exception("Error applying audit retention")
        await asyncio.sleep(AUDIT_RETENTION_INTERVAL_SECONDS)


async def startup(logger: logging.Logger) -> list[asyncio.Task]:
    """Configure logging, create tables and start maintenance tasks.

    Returns the background tasks that must be cancelled via ``shutdown``.
    """
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )

    await init_db()

    # Check security configuration
    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    tasks: list[asyncio.Task] = []

    revocation_task = asyncio.create_task(revoked_token_cleanup_loop(logger))
    revocation_task.add_done_callback(task_done_callback)
    tasks.append(revocation_task)

    retention_task = asyncio.create_task(audit_retention_loop(logger))
    retention_task.add_done_callback(task_done_callback)
    tasks.append(retention_task)

    return tasks


async def shutdown(logger: logging.Logger, tasks: list[asyncio.Task]) -> None:
    """Cancel background tasks and close pooled database connections."""
    for task in tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    logger.info("Background tasks stopped")

    await engine.dispose()
    logger.info("Database connections closed")
