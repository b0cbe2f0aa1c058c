from __future__ import annotations

"""
Logging for the client: rotating files so the curses screen stays clean.

Loggers: `client` (parent), `client.backend`, `client.bus` propagate to the
parent handlers; `client.debug` carries raw frame traces to its own file and
only when CLIENT_DEBUG_LOG is on.
"""

import json
import logging
import logging.handlers
import sys
import time
from typing import Optional

from .config import ClientConfig

DEBUG_LOGGER_NAME = 'client.debug'


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'ts': time.strftime('%Y-%m-%dT%H:%M:%S', time.localtime(record.created)),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
        }
        if record.exc_info:
            payload['exc'] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def make_formatter(as_json: bool) -> logging.Formatter:
    if as_json:
        return JsonFormatter()
    return logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s', datefmt='%H:%M:%S')


def setup_logging(cfg: ClientConfig, *, force_stderr: bool = False) -> logging.Logger:
    level = getattr(logging, cfg.log_level, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    lg_client = logging.getLogger('client')
    # Clear handlers only for our named loggers to avoid duplicates on reruns
    lg_client.handlers = []
    lg_client.setLevel(level)
    lg_client.propagate = False
    for child in ('client.backend', 'client.bus'):
        lg = logging.getLogger(child)
        lg.handlers = []
        lg.setLevel(logging.NOTSET)
        lg.propagate = True

    formatter = make_formatter(cfg.log_json)
    cfg.log_dir.mkdir(parents=True, exist_ok=True)
    log_path = cfg.log_file or (cfg.log_dir / "client.log")
    fh = logging.handlers.RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3, encoding='utf-8')
    fh.setFormatter(formatter)
    lg_client.addHandler(fh)
    # Do not spam stderr while the TUI is active unless explicitly forced
    if cfg.stderr_tui or force_stderr:
        sh = logging.StreamHandler(sys.stderr)
        sh.setFormatter(formatter)
        lg_client.addHandler(sh)

    dbg = logging.getLogger(DEBUG_LOGGER_NAME)
    dbg.handlers = []
    dbg.propagate = False
    if cfg.debug_log:
        dbg_handler = logging.handlers.RotatingFileHandler(
            cfg.log_dir / "client-debug.log", maxBytes=1_000_000, backupCount=3, encoding='utf-8'
        )
        dbg_handler.setFormatter(make_formatter(False))
        dbg.addHandler(dbg_handler)
        dbg.setLevel(logging.DEBUG)
        dbg.debug("[debug] logger initialized")
    else:
        dbg.setLevel(logging.CRITICAL + 1)

    lg_client.info("Client starting with LOG_LEVEL=%s", cfg.log_level)
    return lg_client


def close_logging(logger: Optional[logging.Logger] = None) -> None:
    for lg in (logger or logging.getLogger('client'), logging.getLogger(DEBUG_LOGGER_NAME)):
        for handler in list(lg.handlers):
            handler.close()
            lg.removeHandler(handler)


__all__ = ["JsonFormatter", "make_formatter", "setup_logging", "close_logging"]
