import json
import logging
import sys

from config import Settings
from logging_config import JSONFormatter, build_logging_config


def test_build_logging_config_picks_formatter():
    text = build_logging_config(Settings(LOG_FORMAT="text", LOG_LEVEL="debug"))
    assert text["handlers"]["console"]["formatter"] == "text"
    assert text["root"]["level"] == "DEBUG"

    as_json = build_logging_config(Settings(LOG_FORMAT="JSON"))
    assert as_json["handlers"]["console"]["formatter"] == "json"
    assert as_json["loggers"]["pymongo"]["level"] == "WARNING"


def test_json_formatter_includes_exception():
    try:
        raise ValueError("broken upload")
    except ValueError:
        record = logging.getLogger("videotube").makeRecord(
            "videotube", logging.ERROR, __file__, 10, "upload %s failed", ("avatar",), exc_info=sys.exc_info(),
        )

    payload = json.loads(JSONFormatter().format(record))

    assert payload["level"] == "ERROR"
    assert payload["logger"] == "videotube"
    assert payload["message"] == "upload avatar failed"
    assert payload["exception"]["type"] == "ValueError"
    assert payload["timestamp"].endswith("Z")
