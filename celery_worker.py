#!/usr/bin/env python3
"""
Celery worker script for the payment settlement service.
Run this script to start the worker that delivers push notifications.
"""

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    from core.celery import celery_app

    # Start Celery worker
    celery_app.start([
        "worker",
        "--loglevel=info",
        "--concurrency=2",
        "--queues=celery",
        "--without-gossip",
        "--without-mingle",
    ])
