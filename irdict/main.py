#!/usr/bin/env python3
"""irdict/main.py — CLI entry-point for the dictionary extraction pass.

Usage examples
--------------
    # Append the comparison operands of one module to a dictionary
    AFL_LLVM_DICT2FILE=/tmp/target.dict python -m irdict target.ll

    # Same, output path on the command line, every resolution traced
    irdict -o /tmp/target.dict --debug a.ll b.ll

    # Keep only entries of 4..16 bytes
    irdict -o /tmp/target.dict --min-len 4 --max-len 16 target.ll

Exit codes
----------
    0   Success, whether or not any entry was written.
    1   Configuration error (no absolute dictionary path, bad bounds).
    2   Infrastructure failure (unreadable or malformed IR, dictionary I/O).

The module doubles as ``python -m irdict`` via the companion
``irdict/__main__.py`` which simply calls :func:`main`.
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from typing import Optional, Sequence

from irdict import __version__
from irdict.analysis import run_analysis
from irdict.config import ENV_DICT_PATH, AnalysisConfig
from irdict.errors import ConfigError, DictionaryIOError, IRSyntaxError
from irdict.loader import load_module_file

_log = logging.getLogger("irdict")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(config: AnalysisConfig, verbosity: int) -> None:
    """Set up the root ``irdict`` logger.

    Debug → DEBUG, quiet → WARNING, otherwise INFO.  Each ``-v`` raises
    the level one step.
    """
    if config.debug:
        level = logging.DEBUG
    elif config.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    level = max(logging.DEBUG, level - 10 * verbosity)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("irdict")
    for old in list(root.handlers):
        root.removeHandler(old)
    root.setLevel(level)
    root.addHandler(handler)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="irdict",
        description=(
            "Collect the constant operands of string and memory comparisons\n"
            "in textual LLVM IR and append them to a fuzzing dictionary."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(f"""\
            environment:
              {ENV_DICT_PATH}   dictionary path used when -o is not given
              AFL_DEBUG            trace every resolution (same as -d)
              AFL_QUIET            no banner or summary (same as -q)
              IRDICT_MIN_LEN       default for --min-len
              IRDICT_MAX_LEN       default for --max-len
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "modules",
        nargs="+",
        metavar="MODULE.ll",
        help="Textual LLVM IR file(s) to scan.",
    )
    parser.add_argument(
        "-o", "--output",
        default=None,
        metavar="PATH",
        help=f"Absolute dictionary path (default: ${ENV_DICT_PATH}).",
    )
    parser.add_argument(
        "--min-len",
        type=int,
        default=None,
        metavar="N",
        help="Shortest entry written (default: 3).",
    )
    parser.add_argument(
        "--max-len",
        type=int,
        default=None,
        metavar="N",
        help="Longest entry written; longer ones are truncated (default: 32).",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "-d", "--debug",
        action="store_const",
        const=True,
        default=None,
        help="Trace every resolution attempt.",
    )
    mode.add_argument(
        "-q", "--quiet",
        action="store_const",
        const=True,
        default=None,
        help="No banner, per-entry lines or summary.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity.",
    )
    return parser


# ===========================================================================
# Main entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the irdict CLI and return its exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = AnalysisConfig.from_env(
            dict_path=args.output,
            min_len=args.min_len,
            max_len=args.max_len,
            debug=args.debug,
            quiet=args.quiet,
        )
    except ConfigError as exc:
        _configure_logging(AnalysisConfig(), args.verbose)
        _log.error("%s", exc)
        return EXIT_ERROR

    _configure_logging(config, args.verbose)

    try:
        config.validate()
    except ConfigError as exc:
        _log.error("%s", exc)
        return EXIT_ERROR

    total = 0
    try:
        for path in args.modules:
            module = load_module_file(path)
            result = run_analysis(module, config)
            total += result.entries_written
    except OSError as exc:
        _log.error("Cannot read %s: %s", exc.filename or "IR file", exc.strerror or exc)
        return EXIT_INFRA
    except IRSyntaxError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA
    except DictionaryIOError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA
    except ConfigError as exc:
        _log.error("%s", exc)
        return EXIT_ERROR
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130

    _log.debug("%d entries written from %d module(s)", total, len(args.modules))
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
