"""Tests for settings validation and policy accessors."""
from datetime import timedelta
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from dailyhire.core.config import Settings


def test_defaults():
    s = Settings()
    assert s.review_window_hours == 72
    assert s.compliance_block_days == 21
    assert s.compliance_warning_days == 15
    assert s.default_currency == "IDR"


def test_currency_normalized():
    assert Settings(default_currency=" idr ").default_currency == "IDR"


def test_warning_must_be_below_block():
    with pytest.raises(ValidationError):
        Settings(compliance_warning_days=21, compliance_block_days=21)


@pytest.mark.parametrize("field", ["review_window_hours", "release_batch_size", "compliance_block_days"])
def test_non_positive_rejected(field):
    with pytest.raises(ValidationError):
        Settings(**{field: 0})


def test_timeout_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(release_item_timeout_seconds=0)


def test_is_postgres():
    assert Settings(database_url="postgresql+psycopg2://u:p@h/db").is_postgres
    assert not Settings(database_url="sqlite:///x.db").is_postgres


def test_review_window_from_settings():
    with patch("dailyhire.services.policy.settings") as mock_settings:
        mock_settings.review_window_hours = 24
        from dailyhire.services.policy import get_review_window

        assert get_review_window() == timedelta(hours=24)
