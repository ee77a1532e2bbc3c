"""Convenience entry point for running the Celery worker with beat.

Deployments usually invoke the Celery CLI; this script keeps local runs short.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(["worker", "--beat", "--loglevel=INFO", "--queues=payments", "--hostname=payments@%h"])


if __name__ == "__main__":
    main()
