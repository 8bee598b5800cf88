"""
Core module for the Cron Web Archiver.

This package contains the scheduling, session-affinity, configuration and
output components that drive periodic page archiving.

Submodules:
    config: Application settings (``ArchiverSettings``, ``TaskConfig``) via Pydantic.
    schedule: ``ScheduleEntry`` cron bookkeeping (croniter).
    orchestrator: ``BatchScheduler`` batch-by-next-occurrence engine.
    sessions: ``SessionDirectory`` per-target FlareSolverr session pool.
    runner: ``TaskRunner`` single fetch execution and ``FetchResult``.
    writer: ``ContentWriter`` timestamped HTML output.
    logging_setup: Compressed rotating file + safe console logging.
    utils: JSON file helpers.
"""
