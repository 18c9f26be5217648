"""Entry point for a local worker that also runs the housekeeping schedule.

Production deployments run ``celery worker`` and ``celery beat`` separately;
this script embeds beat so a single process keeps the tables tidy.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(
        argv=["worker", "--beat", "--loglevel=INFO", "--queues=high,default,low", "--hostname=worker@%h"]
    )


if __name__ == "__main__":
    main()
