"""
irdict/__main__.py
==================

Entry point for ``python -m irdict``.

Usage
-----
    python -m irdict [-o PATH] [-d | -q] MODULE.ll [MODULE.ll ...]

See :mod:`irdict.main` for the options and exit codes.
"""

from irdict.main import main

if __name__ == "__main__":
    raise SystemExit(main())
