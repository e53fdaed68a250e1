"""
irdict/analysis.py
══════════════════

The dictionary pass: one walk over a module, comparison operands out.

Architecture
────────────

  ┌──────────────────────────────────────────────────────────┐
  │                    Dict2FileAnalysis                     │
  │                                                          │
  │   for function in module  (declarations, ignored skip)   │
  │     for call in function  (program order)                │
  │                                                          │
  │   ┌──────────────────┐   copy   ┌──────────────────────┐ │
  │   │CallSiteClassifier├─────────►│ LocalBindingTable    │ │
  │   └────────┬─────────┘          └──────────▲───────────┘ │
  │            │ compare                       │ fallback    │
  │   ┌────────▼─────────┐          ┌──────────┴───────────┐ │
  │   │ exactly one side ◄──────────┤ ByteSequenceResolver │ │
  │   │ resolved?        │          └──────────────────────┘ │
  │   └────────┬─────────┘                                   │
  │   ┌────────▼─────────┐          ┌──────────────────────┐ │
  │   │ reconcile()      ├─────────►│ DictionaryEmitter    │ │
  │   └──────────────────┘          └──────────────────────┘ │
  └──────────────────────────────────────────────────────────┘

The dictionary file is opened once before the first function and closed
once after the last one, or when a fatal error unwinds the walk.  The
binding table is shared by all functions of the module.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from irdict import __version__
from irdict.bindings import LocalBindingTable
from irdict.classifier import CallSiteClassifier, ComparisonCandidate, CopyCandidate
from irdict.config import AnalysisConfig
from irdict.emitter import DictionaryEmitter, render_entry
from irdict.errors import SkipReason
from irdict.ir import CallInst, Function, Module
from irdict.reconciler import TERMINATOR, reconcile
from irdict.resolver import ByteSequenceResolver, ResolvedBytes

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """What a completed run reports back to its caller."""
    completed: bool = False
    entries_written: int = 0
    functions_scanned: int = 0
    functions_ignored: int = 0
    comparison_sites: int = 0
    copy_sites: int = 0
    bindings: int = 0
    skipped: Counter = field(default_factory=Counter)

    def summary(self) -> str:
        if not self.entries_written:
            return "No entries for a dictionary found."
        return f"Wrote {self.entries_written} entries to the dictionary file."


def _describe(resolved: Optional[ResolvedBytes]) -> str:
    if resolved is None:
        return '""(false)'
    return f"{resolved.data!r}(true, {resolved.source.value})"


class Dict2FileAnalysis:
    """One run of the pass.  Create a fresh instance per module."""

    def __init__(self, config: AnalysisConfig) -> None:
        self.config = config
        self.bindings = LocalBindingTable()
        self.resolver = ByteSequenceResolver(self.bindings, config)
        self.classifier = CallSiteClassifier()

    def run(self, module: Module) -> AnalysisResult:
        self.config.validate()
        result = AnalysisResult()
        if not self.config.quiet:
            logger.info("irdict %s: collecting comparison operands from %s",
                        __version__, module.name or "<module>")

        with DictionaryEmitter(self.config) as emitter:
            for function in module.functions:
                if function.is_declaration:
                    continue
                if self.config.is_ignored(function.name):
                    result.functions_ignored += 1
                    continue
                result.functions_scanned += 1
                self.visit_function(function, emitter, result)
            result.entries_written = emitter.written

        result.bindings = len(self.bindings)
        result.completed = True
        if not self.config.quiet:
            logger.info("%s", result.summary())
        return result

    def visit_function(
        self,
        function: Function,
        emitter: DictionaryEmitter,
        result: AnalysisResult,
    ) -> None:
        for call in function.calls():
            self.visit_call(call, emitter, result)

    def visit_call(
        self,
        call: CallInst,
        emitter: DictionaryEmitter,
        result: AnalysisResult,
    ) -> None:
        candidate = self.classifier.classify(call)
        if candidate is None:
            return
        if isinstance(candidate, CopyCandidate):
            result.copy_sites += 1
            self.record_copy(candidate)
            return
        result.comparison_sites += 1
        reason = self.process_comparison(candidate, emitter)
        if reason is not None:
            result.skipped[reason] += 1

    def record_copy(self, candidate: CopyCandidate) -> None:
        """Remember what a fixed-size copy writes into its destination."""
        resolved = self.resolver.resolve_static(candidate.source)
        if resolved is None:
            return
        data = resolved.data
        if candidate.explicit_length == len(data) + 1:
            data += TERMINATOR
        self.bindings.bind(candidate.destination, data)
        if self.config.debug:
            logger.debug("Saved: %r for %s", data, candidate.destination.reference())

    def process_comparison(
        self,
        candidate: ComparisonCandidate,
        emitter: DictionaryEmitter,
    ) -> Optional[SkipReason]:
        """Emit the entry for one comparison, or say why there is none."""
        lhs = self.resolver.resolve(candidate.lhs)
        rhs = self.resolver.resolve(candidate.rhs)
        if self.config.debug:
            logger.debug("F:%s %s->%s %s->%s", candidate.function,
                         candidate.lhs.reference(), _describe(lhs),
                         candidate.rhs.reference(), _describe(rhs))

        if (lhs is None) == (rhs is None):
            return SkipReason.RESOLUTION_AMBIGUITY
        resolved = lhs if lhs is not None else rhs

        explicit = candidate.explicit_length if candidate.kind.is_bounded else None
        entry = reconcile(resolved.data, candidate.kind, explicit, self.config,
                          candidate.function)
        if entry is None or not emitter.emit(entry):
            if self.config.debug:
                logger.debug("%s: %r outside [%d, %d], skipped", candidate.function,
                             resolved.data, self.config.min_len, self.config.max_len)
            return SkipReason.OUT_OF_BOUNDS

        if not self.config.quiet:
            logger.info("%s: length %d/%d %s", entry.function, entry.compared_length,
                        entry.length, render_entry(entry.content))
        return None


def run_analysis(module: Module, config: AnalysisConfig) -> AnalysisResult:
    """Scan *module* once and append its dictionary entries."""
    return Dict2FileAnalysis(config).run(module)
