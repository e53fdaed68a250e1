"""
irdict/config.py
════════════════

Immutable run configuration.

An :class:`AnalysisConfig` is built once (usually from the environment the
compiler driver exports) and passed explicitly to every component; nothing in
the package reads flags from module-level state.

Environment
───────────
    AFL_LLVM_DICT2FILE   absolute path of the dictionary file (required)
    AFL_DEBUG            any non-empty value enables per-resolution tracing
    AFL_QUIET            any non-empty value suppresses banner and summary
    IRDICT_MIN_LEN       smallest entry written (default 3)
    IRDICT_MAX_LEN       largest entry written (default 32)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Tuple

from irdict.errors import ConfigError

ENV_DICT_PATH = "AFL_LLVM_DICT2FILE"
ENV_DEBUG = "AFL_DEBUG"
ENV_QUIET = "AFL_QUIET"
ENV_MIN_LEN = "IRDICT_MIN_LEN"
ENV_MAX_LEN = "IRDICT_MAX_LEN"

# Same bounds the fuzzer applies to automatically collected extras.
MIN_AUTO_EXTRA = 3
MAX_AUTO_EXTRA = 32

# Instrumentation, sanitizer and libc/runtime helpers; comparing inside them
# says nothing about the target's input format.
DEFAULT_IGNORE_PREFIXES: Tuple[str, ...] = (
    "asan.",
    "llvm.",
    "sancov.",
    "__ubsan",
    "ign.",
    "__afl",
    "_fini",
    "__libc_",
    "__asan",
    "__msan",
    "__cmplog",
    "__sancov",
    "__san",
    "__cxx_",
    "__decide_deferred",
    "_GLOBAL__",
    "_ZN6__asan",
    "_ZN6__lsan",
    "msan.",
    "LLVMFuzzerM",
    "LLVMFuzzerC",
    "LLVMFuzzerI",
    "maybe_duplicate_stderr",
    "discard_output",
    "close_stdout",
    "dup_and_close_stderr",
    "maybe_close_fd_mask",
    "ExecuteFilesOnyByOne",
)


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw, 0)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Settings for one analysis run.

    Attributes
    ----------
    dict_path       : absolute path of the dictionary file (append/create)
    min_len         : entries shorter than this are dropped
    max_len         : entries longer than this are truncated to it
    debug           : trace every resolution attempt at DEBUG level
    quiet           : no banner, no per-entry lines, no closing summary
    ignore_prefixes : functions whose names start with one of these are skipped
    """
    dict_path: Optional[str] = None
    min_len: int = MIN_AUTO_EXTRA
    max_len: int = MAX_AUTO_EXTRA
    debug: bool = False
    quiet: bool = False
    ignore_prefixes: Tuple[str, ...] = DEFAULT_IGNORE_PREFIXES

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        stderr_isatty: Optional[bool] = None,
        **overrides: Any,
    ) -> "AnalysisConfig":
        """Build a config from *environ* (default ``os.environ``).

        Keyword *overrides* win over the environment; ``None`` values are
        ignored so callers can pass optional CLI arguments straight through.
        When neither debug nor quiet is forced, output is quiet unless
        stderr is a terminal.
        """
        env = os.environ if environ is None else environ
        given = {k: v for k, v in overrides.items() if v is not None}

        debug = given.pop("debug", bool(env.get(ENV_DEBUG)))
        if "quiet" in given:
            quiet = given.pop("quiet")
        else:
            if stderr_isatty is None:
                stderr_isatty = sys.stderr.isatty()
            quiet = not ((stderr_isatty and not env.get(ENV_QUIET)) or debug)

        config = cls(
            dict_path=env.get(ENV_DICT_PATH),
            min_len=_env_int(env, ENV_MIN_LEN, MIN_AUTO_EXTRA),
            max_len=_env_int(env, ENV_MAX_LEN, MAX_AUTO_EXTRA),
            debug=debug,
            quiet=quiet,
        )
        return replace(config, **given) if given else config

    def validate(self) -> "AnalysisConfig":
        """Raise :class:`ConfigError` unless the config can drive a run."""
        if not self.dict_path or not os.path.isabs(self.dict_path):
            raise ConfigError(
                f"{ENV_DICT_PATH} is not set to an absolute path: {self.dict_path}"
            )
        if self.min_len < 1:
            raise ConfigError(f"minimum entry length must be positive, got {self.min_len}")
        if self.min_len > self.max_len:
            raise ConfigError(
                f"minimum entry length {self.min_len} exceeds maximum {self.max_len}"
            )
        return self

    def is_ignored(self, function_name: str) -> bool:
        return function_name.startswith(self.ignore_prefixes)
