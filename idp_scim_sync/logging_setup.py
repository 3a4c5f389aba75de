"""
Logging setup for the CLI and the Lambda handler.
"""

import json
import logging
from datetime import datetime, timezone


TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation in CloudWatch."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """
    Configure the root logger.

    Args:
        level: Logging level name
        fmt: "text" or "json"
    """
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    # force=True replaces handlers installed by the Lambda runtime
    logging.basicConfig(level=level, handlers=[handler], force=True)

    # botocore and urllib3 are noisy below WARNING
    for noisy in ("botocore", "boto3", "urllib3", "google.auth"):
        logging.getLogger(noisy).setLevel(max(logging.WARNING, logging.getLevelName(level)))
