from __future__ import annotations

"""
Runtime configuration from the environment and an optional config.json.

Environment always wins over the file. Directories fall back through a list
of candidates and the first writable one is used.
"""

import json
import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .backend import DEFAULT_MAX_FRAME_BYTES

DEFAULT_BACKEND_CMD = "../core/client"
TRUTHY = ('1', 'true', 'yes', 'on')


def env_flag(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    v = env.get(name)
    if v is None:
        return default
    return str(v).strip().lower() in TRUTHY


def _ensure_writable_dir(p: Path) -> bool:
    try:
        p.mkdir(parents=True, exist_ok=True)
        test = p / ".touch"
        test.write_text("ok", encoding="utf-8")
        test.unlink(missing_ok=True)
        return True
    except OSError:
        return False


def select_dir(base: Path, *, override: Optional[str], fallbacks: List[Path]) -> Path:
    if override:
        cand = Path(override).expanduser()
        if _ensure_writable_dir(cand):
            return cand
    if _ensure_writable_dir(base):
        return base
    for cand in fallbacks:
        if _ensure_writable_dir(cand):
            return cand
    return base


def load_config_file(path: Path) -> Dict[str, object]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError):
        logging.getLogger('client').exception("Failed to load config %s", path)
        return {}
    if not isinstance(data, dict):
        logging.getLogger('client').warning("Ignoring non-object config %s", path)
        return {}
    return data


@dataclass
class ClientConfig:
    backend_cmd: List[str] = field(default_factory=lambda: [DEFAULT_BACKEND_CMD])
    config_dir: Path = Path(".")
    var_dir: Path = Path(".")
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    log_json: bool = False
    debug_log: bool = False
    stderr_tui: bool = False
    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES

    @property
    def log_dir(self) -> Path:
        return self.var_dir / "log"


def load_config(env: Optional[Mapping[str, str]] = None, root: Optional[Path] = None) -> ClientConfig:
    env = os.environ if env is None else env
    root = root or Path(__file__).resolve().parent.parent
    home = Path.home()
    config_dir = select_dir(
        root / "config",
        override=env.get("CLIENT_CONFIG_DIR"),
        fallbacks=[home / ".config" / "pqc-tui", home / ".pqc-tui" / "config"],
    )
    var_dir = select_dir(
        root / "var",
        override=env.get("CLIENT_VAR_DIR"),
        fallbacks=[home / ".local" / "share" / "pqc-tui", home / ".pqc-tui" / "var"],
    )
    data = load_config_file(config_dir / "config.json")

    cmd = env.get("PQC_BACKEND_CMD") or data.get("backend_cmd") or DEFAULT_BACKEND_CMD
    backend_cmd = shlex.split(cmd) if isinstance(cmd, str) else [str(c) for c in cmd]

    max_frame = env.get("MSG_MAX_BYTES", data.get("max_frame_bytes", DEFAULT_MAX_FRAME_BYTES))
    try:
        max_frame_bytes = int(max_frame)
    except (TypeError, ValueError):
        logging.getLogger('client').warning("Invalid MSG_MAX_BYTES %r; using default", max_frame)
        max_frame_bytes = DEFAULT_MAX_FRAME_BYTES

    log_file = env.get("CLIENT_LOG_FILE")
    return ClientConfig(
        backend_cmd=backend_cmd,
        config_dir=config_dir,
        var_dir=var_dir,
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        log_file=Path(log_file).expanduser() if log_file else None,
        log_json=env_flag(env, "LOG_JSON"),
        debug_log=env_flag(env, "CLIENT_DEBUG_LOG"),
        stderr_tui=env_flag(env, "CLIENT_STDERR_TUI"),
        max_frame_bytes=max_frame_bytes,
    )


__all__ = ["ClientConfig", "load_config", "load_config_file", "env_flag", "select_dir", "DEFAULT_BACKEND_CMD"]
