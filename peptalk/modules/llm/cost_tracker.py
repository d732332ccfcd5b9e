"""LLM cost tracker: token counting and USD estimates per provider/model.

Costs are an observability side channel. Nothing in the pipeline branches on
them; they are copied into run reports and batch summaries.

Usage:
    tracker = CostTracker()
    tracker.record("anthropic", "claude-sonnet-4-5-20250929",
                   input_tokens=12000, output_tokens=3500, call_name="synthesis")
    print(tracker.summary_text())
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Pricing per 1M tokens (USD)
# ---------------------------------------------------------------------------

# Format: (input_per_1M, output_per_1M, cache_write_per_1M, cache_read_per_1M)
_PRICING: dict[str, tuple[float, float, float, float]] = {
    # Anthropic
    "claude-sonnet-4-5-20250929": (3.00, 15.00, 3.75, 0.30),
    "claude-sonnet-4-20250514": (3.00, 15.00, 3.75, 0.30),
    "claude-opus-4-1-20250805": (15.00, 75.00, 18.75, 1.50),
    "claude-haiku-4-5-20251001": (1.00, 5.00, 1.25, 0.10),
    # OpenAI
    "gpt-4o": (2.50, 10.00, 0.0, 1.25),
    "gpt-4o-mini": (0.15, 0.60, 0.0, 0.075),
    "gpt-4.1": (2.00, 8.00, 0.0, 0.50),
    "gpt-4.1-mini": (0.40, 1.60, 0.0, 0.10),
    # Google
    "gemini-2.5-flash": (0.30, 2.50, 0.075, 0.075),
    "gemini-2.5-pro": (1.25, 10.00, 0.3125, 0.3125),
}

# Fallback pricing for unknown models (conservative estimate)
_FALLBACK_PRICING = (3.00, 15.00, 3.75, 0.30)


def _get_pricing(model: str) -> tuple[float, float, float, float]:
    """Look up pricing for a model, with fuzzy matching."""
    if model in _PRICING:
        return _PRICING[model]
    # e.g. "gpt-4o-2024-08-06" -> "gpt-4o"; longest key first so "gpt-4o-mini" beats "gpt-4o"
    for key in sorted(_PRICING, key=len, reverse=True):
        if model.startswith(key):
            return _PRICING[key]
    logger.warning("unknown_model_pricing", model=model)
    return _FALLBACK_PRICING


@dataclass
class TokenRecord:
    """Token usage for a single LLM call."""

    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0
    call_name: str = ""
    peptide: str = ""
    duration_ms: int = 0
    timestamp: float = field(default_factory=time.time)

    def compute_cost(self) -> None:
        input_price, output_price, cache_write_price, cache_read_price = _get_pricing(self.model)

        self.total_tokens = (
            self.input_tokens + self.output_tokens
            + self.cache_creation_tokens + self.cache_read_tokens
        )
        self.cost_usd = (
            (self.input_tokens / 1_000_000) * input_price
            + (self.output_tokens / 1_000_000) * output_price
            + (self.cache_creation_tokens / 1_000_000) * cache_write_price
            + (self.cache_read_tokens / 1_000_000) * cache_read_price
        )


class CostTracker:
    """Tracks token usage and costs across one run or a whole batch."""

    def __init__(self) -> None:
        self.records: list[TokenRecord] = []
        self._start_time = time.time()

    def record(
        self,
        provider: str,
        model: str,
        *,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cache_creation_tokens: int = 0,
        cache_read_tokens: int = 0,
        call_name: str = "",
        peptide: str = "",
        duration_ms: int = 0,
    ) -> TokenRecord:
        rec = TokenRecord(
            provider=provider,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_creation_tokens=cache_creation_tokens,
            cache_read_tokens=cache_read_tokens,
            call_name=call_name,
            peptide=peptide,
            duration_ms=duration_ms,
        )
        rec.compute_cost()
        self.records.append(rec)

        logger.info(
            "cost_tracked",
            provider=provider,
            model=model,
            call=call_name,
            peptide=peptide,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=f"${rec.cost_usd:.4f}",
        )
        return rec

    def totals(self, peptide: str | None = None) -> dict[str, Any]:
        """Cost/token totals, optionally restricted to one peptide."""
        records = [r for r in self.records if peptide is None or r.peptide == peptide]
        return {
            "calls": len(records),
            "input_tokens": sum(r.input_tokens for r in records),
            "output_tokens": sum(r.output_tokens for r in records),
            "total_tokens": sum(r.total_tokens for r in records),
            "cost_usd": round(sum(r.cost_usd for r in records), 4),
        }

    def summary(self) -> dict[str, Any]:
        elapsed = time.time() - self._start_time
        providers: dict[str, dict[str, Any]] = {}

        for rec in self.records:
            key = f"{rec.provider}/{rec.model}"
            stats = providers.setdefault(
                key,
                {"calls": 0, "input_tokens": 0, "output_tokens": 0, "cost_usd": 0.0, "duration_ms": 0},
            )
            stats["calls"] += 1
            stats["input_tokens"] += rec.input_tokens
            stats["output_tokens"] += rec.output_tokens
            stats["cost_usd"] += rec.cost_usd
            stats["duration_ms"] += rec.duration_ms

        for stats in providers.values():
            stats["avg_duration_ms"] = round(stats.pop("duration_ms") / max(stats["calls"], 1))
            stats["cost_usd"] = round(stats["cost_usd"], 4)

        totals = self.totals()
        return {
            "total_calls": totals["calls"],
            "total_tokens": totals["total_tokens"],
            "total_cost_usd": totals["cost_usd"],
            "peptides": len({r.peptide for r in self.records if r.peptide}),
            "elapsed_seconds": round(elapsed, 1),
            "providers": providers,
        }

    def summary_text(self) -> str:
        s = self.summary()
        lines = [
            "=" * 60,
            "  PEPTALK RESEARCH - LLM COST REPORT",
            "=" * 60,
            f"  Peptides:         {s['peptides']}",
            f"  LLM Calls:        {s['total_calls']}",
            f"  Total Tokens:     {s['total_tokens']:,}",
            f"  Total Cost:       ${s['total_cost_usd']:.4f}",
            f"  Elapsed:          {s['elapsed_seconds']}s",
            "-" * 60,
        ]
        for key, ps in s["providers"].items():
            lines.extend([
                f"  Provider: {key}",
                f"    Calls:          {ps['calls']}",
                f"    Input Tokens:   {ps['input_tokens']:,}",
                f"    Output Tokens:  {ps['output_tokens']:,}",
                f"    Cost:           ${ps['cost_usd']:.4f}",
                f"    Avg Duration:   {ps['avg_duration_ms']}ms",
                "-" * 60,
            ])
        lines.append("=" * 60)
        return "\n".join(lines)
