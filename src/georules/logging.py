"""Logging configuration and per-request event logging."""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Configuration from environment
LOG_FILE = os.environ.get("GEORULES_LOG_FILE", "/tmp/georules.log")
REQUESTS_FILE = os.environ.get("GEORULES_REQUESTS_FILE", "")
MITMPROXY_LOG_FILE = os.environ.get("GEORULES_MITMPROXY_LOG_FILE", "/tmp/georules-mitmproxy.log")
VERBOSE = os.environ.get("VERBOSE", "0") == "1"

logger = logging.getLogger("georules")
_requests_file = None


def init_logging(log_file: str | None = LOG_FILE, stderr: bool = True) -> logging.Logger:
    """Initialize logging. Returns the main logger."""
    global _requests_file

    logger.setLevel(logging.DEBUG if VERBOSE else logging.INFO)
    logger.propagate = False
    logger.handlers.clear()
    formatter = logging.Formatter('%(asctime)s %(message)s')
    if log_file:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    if stderr:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(formatter)
        logger.addHandler(stream)

    # Request events file (JSONL format, line-buffered)
    if REQUESTS_FILE:
        _requests_file = open(REQUESTS_FILE, "a", buffering=1)

    # Configure mitmproxy's internal logging (only in verbose mode)
    if VERBOSE:
        mitmproxy_handler = logging.FileHandler(MITMPROXY_LOG_FILE)
        mitmproxy_handler.setFormatter(logging.Formatter('%(asctime)s %(name)s %(levelname)s %(message)s'))
        for mlog_name in ["mitmproxy", "mitmproxy.proxy", "mitmproxy.options"]:
            mlog = logging.getLogger(mlog_name)
            mlog.setLevel(logging.DEBUG)
            mlog.addHandler(mitmproxy_handler)

    return logger


def close_logging():
    """Close logging resources."""
    global _requests_file
    if _requests_file:
        _requests_file.close()
        _requests_file = None


def log_request(**kwargs) -> None:
    """Log a served subscription request as JSONL."""
    if not _requests_file:
        return
    event = {"ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds")}
    event.update(kwargs)
    _requests_file.write(json.dumps(event, separators=(",", ":")) + "\n")
