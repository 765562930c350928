"""Logging for pipeline runs.

Three channels: the main `varflow` logger for progress and failures, a
commands logger recording every external command line, and a stdout logger
for tool output that should be echoed. Handlers are pushed application wide
so stage workers, join readers and aggregate sinks, which all run in their
own threads, write to the same files.
"""
import os
import sys

import logbook

from varflow import utils

LOG_NAME = "varflow"
DEFAULT_LOG_DIR = "log"

logger = logbook.Logger(LOG_NAME)
logger_cl = logbook.Logger(LOG_NAME + "-commands")
logger_stdout = logbook.Logger(LOG_NAME + "-stdout")

def get_log_dir(config):
    return config.get("log_dir", DEFAULT_LOG_DIR)

def _is_cl(record, _):
    return record.channel == logger_cl.name

def _is_stdout(record, _):
    return record.channel == logger_stdout.name

def _is_main(record, handler):
    return not _is_cl(record, handler) and not _is_stdout(record, handler)

class CloseableNestedSetup(logbook.NestedSetup):
    def close(self):
        for obj in self.objects:
            if hasattr(obj, "close"):
                obj.close()

def _create_log_handler(config):
    logbook.set_datetime_format("utc")
    time_prefix = "[{record.time:%Y-%m-%dT%H:%MZ}] " if config.get("include_time", True) else ""
    format_str = time_prefix + "{record.message}"
    handlers = [logbook.NullHandler()]
    log_dir = get_log_dir(config)
    if log_dir:
        utils.safe_makedir(log_dir)
        # (file suffix, level, filter, bubble)
        for suffix, level, rfilter, bubble in [("", "INFO", _is_main, False),
                                               ("-debug", "DEBUG", _is_main, True),
                                               ("-commands", "DEBUG", _is_cl, False)]:
            fname = os.path.join(log_dir, "%s%s.log" % (LOG_NAME, suffix))
            handlers.append(logbook.FileHandler(fname, format_string=format_str, level=level,
                                                filter=rfilter, bubble=bubble))
    handlers.append(logbook.StreamHandler(sys.stdout, format_string="{record.message}",
                                          level="DEBUG", filter=_is_stdout))
    handlers.append(logbook.StreamHandler(sys.stderr, format_string=format_str, bubble=True,
                                          level=config.get("log_level", "INFO"), filter=_is_main))
    return CloseableNestedSetup(handlers)

def setup_local_logging(config=None):
    """Direct run logging to files in the log directory and to stderr.

    Returns the installed handler, to be passed to `close_local_logging` when
    the run finishes.
    """
    handler = _create_log_handler(config or {})
    handler.push_application()
    return handler

def close_local_logging(handler):
    if handler is not None:
        handler.pop_application()
        handler.close()
