"""
Escrow and compliance policy: typed wrappers over dailyhire.core.config.settings.
"""
from __future__ import annotations

from datetime import timedelta

from dailyhire.core.config import settings


def get_review_window() -> timedelta:
    return timedelta(hours=settings.review_window_hours)


def get_default_currency() -> str:
    return settings.default_currency


def get_block_days() -> int:
    return settings.compliance_block_days


def get_warning_days() -> int:
    return settings.compliance_warning_days


def get_alternative_workers_limit() -> int:
    return settings.alternative_workers_limit


def get_release_batch_size() -> int:
    return settings.release_batch_size


def get_release_item_timeout() -> float:
    return settings.release_item_timeout_seconds
