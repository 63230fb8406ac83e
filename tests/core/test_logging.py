import json
import logging

from dailyhire.core.logging import JsonFormatter


def test_extra_fields_are_emitted():
    record = logging.LogRecord("dailyhire.test", logging.INFO, __file__, 1, "payment_released", None, None)
    record.booking_id = "b-1"
    record.amount = 100_000
    record.unrelated = "dropped"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "payment_released"
    assert payload["level"] == "INFO"
    assert payload["booking_id"] == "b-1"
    assert payload["amount"] == 100_000
    assert "unrelated" not in payload
