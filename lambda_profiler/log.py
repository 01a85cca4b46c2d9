#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import logging
import logging.handlers
import os
import re
import sys
import time
from logging import LogRecord
from typing import Any, MutableMapping, Optional, Tuple

REQUEST_ID_KEY = "request_id"
LOGGER_NAME_RE = re.compile(r"lambda_profiler(?:\..+)?")
LOG_PREFIX = "lambda_profiler::"
DEBUG_FORMAT = "[%(asctime)s] %(levelname)s: " + LOG_PREFIX + "%(name)s: %(message)s"


def get_logger_adapter(logger_name: str) -> logging.LoggerAdapter:
    # Validate the name starts with lambda_profiler (the root logger name), so parent logger propagation will work.
    assert LOGGER_NAME_RE.match(logger_name) is not None, "logger name must start with 'lambda_profiler'"
    return logging.LoggerAdapter(logging.getLogger(logger_name), {})


class PluginLoggerAdapter(logging.LoggerAdapter):
    """
    Adds the request id of the invocation currently being profiled to every record.
    The request id changes per invocation, so it is read from the plugin on each call.
    """

    def __init__(self, logger: logging.Logger, plugin: Any):
        super().__init__(logger, {})
        self._plugin = plugin

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        invocation = getattr(self._plugin, "invocation", None)
        extra = dict(kwargs.get("extra") or {})
        extra[REQUEST_ID_KEY] = invocation.request_id if invocation is not None else None
        kwargs["extra"] = extra
        return msg, kwargs


def get_plugin_logger_adapter(plugin: Any) -> PluginLoggerAdapter:
    return PluginLoggerAdapter(logging.getLogger("lambda_profiler.plugin"), plugin)


class _RequestIdFormatter(logging.Formatter):
    def format(self, record: LogRecord) -> str:
        formatted = super().format(record)
        request_id = record.__dict__.get(REQUEST_ID_KEY)
        if request_id:
            formatted = f"{formatted} (request_id={request_id})"
        return formatted


class _UTCFormatter(logging.Formatter):
    # Patch formatTime to be GMT (UTC) for all formatters,
    # see https://docs.python.org/3/library/logging.html?highlight=formattime#logging.Formatter.formatTime
    converter = time.gmtime


class ProfilerFormatter(_RequestIdFormatter, _UTCFormatter):
    pass


def _has_stream_handler(logger: logging.Logger) -> bool:
    return any(type(handler) is logging.StreamHandler for handler in logger.handlers)


def setup_debug_logging() -> None:
    """
    Print everything the plugin logs to stdout. Called when the plugin runs with debug=True;
    safe to call once per plugin instance, the handler is only added once per process.
    """
    logger = logging.getLogger("lambda_profiler")
    logger.setLevel(logging.DEBUG)
    if _has_stream_handler(logger):
        return
    stream_handler = logging.StreamHandler(stream=sys.stdout)
    stream_handler.setLevel(logging.DEBUG)
    stream_handler.setFormatter(ProfilerFormatter(DEBUG_FORMAT))
    logger.addHandler(stream_handler)


def initial_root_logger_setup(
    stream_level: int,
    log_file_path: Optional[str],
    rotate_max_bytes: int,
    rotate_backup_count: int,
) -> logging.LoggerAdapter:
    logger_adapter = get_logger_adapter("lambda_profiler")
    logger_adapter.setLevel(logging.DEBUG)

    stream_handler = logging.StreamHandler(stream=sys.stdout)
    stream_handler.setLevel(stream_level)
    if stream_level < logging.INFO:
        stream_handler.setFormatter(ProfilerFormatter(DEBUG_FORMAT))
    else:
        stream_handler.setFormatter(ProfilerFormatter("[%(asctime)s] %(message)s", "%H:%M:%S"))
    logger_adapter.logger.addHandler(stream_handler)

    if log_file_path is not None:
        os.makedirs(os.path.dirname(log_file_path) or ".", exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path,
            maxBytes=rotate_max_bytes,
            backupCount=rotate_backup_count,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(ProfilerFormatter(DEBUG_FORMAT))
        logger_adapter.logger.addHandler(file_handler)

    return logger_adapter
