"""
irdict — fuzzing dictionary extraction from compiled IR.

Walks the IR of a compiled program once, finds calls that compare a runtime
buffer against a statically known byte sequence (``strcmp``, ``memcmp`` and
friends), and appends those byte sequences to an AFL-style dictionary file.

Quick start::

    from irdict import AnalysisConfig, load_module_file, run_analysis

    module = load_module_file("target.ll")
    config = AnalysisConfig(dict_path="/tmp/target.dict")
    result = run_analysis(module, config)
    print(result.summary())
"""

__version__ = "0.1.0"

from irdict.analysis import AnalysisResult, Dict2FileAnalysis, run_analysis
from irdict.config import AnalysisConfig
from irdict.errors import (
    ConfigError,
    Dict2FileError,
    DictionaryIOError,
    IRSyntaxError,
    SkipReason,
)
from irdict.loader import load_module, load_module_file

__all__ = [
    "__version__",
    "AnalysisConfig",
    "AnalysisResult",
    "ConfigError",
    "Dict2FileAnalysis",
    "Dict2FileError",
    "DictionaryIOError",
    "IRSyntaxError",
    "SkipReason",
    "load_module",
    "load_module_file",
    "run_analysis",
]
