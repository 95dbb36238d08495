"""
Veto layer on top of the trade classifier.

The veto filters out poorly timed entries rather than picking winners: the
caller supplies a soft signal with its feature vector and receives a
PROCEED / CAUTION / VETO verdict with human-readable reasons.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import Field, model_validator

from trade_decision_engine.core.data_types import FrozenConfig
from trade_decision_engine.models.features import FeatureVector, sanitize_features
from trade_decision_engine.models.logistic import (
    DEFAULT_PARAMETERS,
    ModelParameters,
    feature_contributions,
    score,
)

logger = logging.getLogger(__name__)

# Minimum |logit contribution| for a feature to be cited as a reason
_MIN_REASON_CONTRIBUTION = 0.01
_MAX_FEATURE_REASONS = 3


class VetoVerdict(str, Enum):
    """Decision on a signal."""

    PROCEED = "PROCEED"
    CAUTION = "CAUTION"
    VETO = "VETO"


class VetoConfidence(str, Enum):
    """Confidence attached to a verdict."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class VetoConfig(FrozenConfig):
    """Loss-probability thresholds (fractions in [0, 1])."""

    veto_threshold: float = Field(default=0.60, ge=0, le=1)
    caution_threshold: float = Field(default=0.50, ge=0, le=1)
    high_confidence_threshold: float = Field(default=0.65, ge=0, le=1)

    @model_validator(mode="after")
    def validate_order(self) -> "VetoConfig":
        if not self.caution_threshold <= self.veto_threshold <= self.high_confidence_threshold:
            raise ValueError("Thresholds must satisfy caution <= veto <= high_confidence")
        return self


@dataclass(frozen=True)
class VetoResult:
    """Verdict for one signal."""

    ticker: str
    signal_date: dt.date
    vetoed: bool
    p_loss: float
    p_win: float
    confidence: VetoConfidence
    verdict: VetoVerdict
    reasons: list[str] = field(default_factory=list)
    model_version: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "ticker": self.ticker,
            "signal_date": self.signal_date.isoformat(),
            "vetoed": self.vetoed,
            "p_loss": self.p_loss,
            "p_win": self.p_win,
            "confidence": self.confidence.value,
            "verdict": self.verdict.value,
            "reasons": list(self.reasons),
            "model_version": self.model_version,
        }


def _feature_reasons(vector: FeatureVector, params: ModelParameters) -> list[str]:
    """Top features by absolute effect on loss probability."""
    values = sanitize_features(vector, params.feature_names)
    # Positive logit contributions lower P(loss)
    loss_effects = {name: -c for name, c in feature_contributions(vector, params).items()}
    ranked = sorted(loss_effects.items(), key=lambda item: abs(item[1]), reverse=True)

    reasons = []
    for name, effect in ranked[:_MAX_FEATURE_REASONS]:
        if abs(effect) > _MIN_REASON_CONTRIBUTION:
            direction = "increases" if effect > 0 else "decreases"
            reasons.append(f"{name}={values[name]:.2f} {direction} loss probability")
    return reasons


def _context_warnings(vector: FeatureVector) -> list[str]:
    warnings = []
    rsi = vector.get("rsi_value")
    if rsi is not None:
        if rsi > 70:
            warnings.append("RSI overbought (>70), potential reversal")
        elif rsi < 30:
            warnings.append("RSI oversold (<30), could be catching a falling knife")
    spy_return = vector.get("spy_10d_return")
    if spy_return is not None and spy_return < -2:
        warnings.append("Market momentum negative (SPY weak)")
    atr_percent = vector.get("atr_percent")
    if atr_percent is not None and atr_percent > 5:
        warnings.append("High volatility (ATR% > 5), larger stop needed")
    return warnings


def evaluate_veto(
    features: FeatureVector,
    ticker: str,
    signal_date: dt.date | str,
    params: ModelParameters | None = None,
    config: VetoConfig | None = None,
) -> VetoResult:
    """
    Decide whether to veto a signal.

    Args:
        features: Feature vector for the signal
        ticker: Ticker symbol
        signal_date: Date the signal was observed
        params: Active model parameters (baseline when omitted)
        config: Veto thresholds

    Returns:
        VetoResult with verdict, confidence and reasons
    """
    config = config or VetoConfig()
    if isinstance(signal_date, str):
        signal_date = dt.date.fromisoformat(signal_date)
    p_win = score(features, params) / 100
    p_loss = 1 - p_win

    if p_loss > config.high_confidence_threshold:
        confidence = VetoConfidence.VERY_HIGH
    elif p_loss > config.veto_threshold:
        confidence = VetoConfidence.HIGH
    elif p_loss > config.caution_threshold:
        confidence = VetoConfidence.MEDIUM
    else:
        confidence = VetoConfidence.LOW

    if p_loss > config.veto_threshold:
        verdict = VetoVerdict.VETO
        headline = f"Model predicts {p_loss * 100:.1f}% loss probability (above veto threshold)"
    elif p_loss > config.caution_threshold:
        verdict = VetoVerdict.CAUTION
        headline = f"Model predicts {p_loss * 100:.1f}% loss probability (caution advised)"
    else:
        verdict = VetoVerdict.PROCEED
        headline = f"Model predicts {p_win * 100:.1f}% win probability (favorable)"

    active = params if params is not None else DEFAULT_PARAMETERS
    reasons = [headline, *_feature_reasons(features, active), *_context_warnings(features)]

    result = VetoResult(
        ticker=ticker.upper(),
        signal_date=signal_date,
        vetoed=verdict == VetoVerdict.VETO,
        p_loss=p_loss,
        p_win=p_win,
        confidence=confidence,
        verdict=verdict,
        reasons=reasons,
        model_version=active.version,
    )
    logger.debug(f"Veto {result.ticker} {signal_date}: {verdict.value} (p_loss={p_loss:.3f})")
    return result


@dataclass(frozen=True)
class BatchVetoResult:
    """Verdicts for a batch of signals with summary counts."""

    results: list[VetoResult]
    total: int
    vetoed: int
    veto_rate: float
    proceed_count: int
    caution_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": {
                "total": self.total,
                "vetoed": self.vetoed,
                "veto_rate": self.veto_rate,
                "proceed_count": self.proceed_count,
                "caution_count": self.caution_count,
            },
        }


def evaluate_veto_batch(
    signals: Iterable[Mapping[str, Any]],
    params: ModelParameters | None = None,
    config: VetoConfig | None = None,
) -> BatchVetoResult:
    """
    Evaluate many signals independently.

    Args:
        signals: Mappings with ``ticker``, ``signal_date`` and ``features``
        params: Active model parameters
        config: Veto thresholds

    Returns:
        BatchVetoResult; an empty batch has a veto rate of 0
    """
    results = [
        evaluate_veto(s["features"], s["ticker"], s["signal_date"], params, config)
        for s in signals
    ]
    vetoed = sum(1 for r in results if r.vetoed)
    return BatchVetoResult(
        results=results,
        total=len(results),
        vetoed=vetoed,
        veto_rate=vetoed / len(results) if results else 0.0,
        proceed_count=sum(1 for r in results if r.verdict == VetoVerdict.PROCEED),
        caution_count=sum(1 for r in results if r.verdict == VetoVerdict.CAUTION),
    )


def format_veto_result(result: VetoResult, max_reasons: int = 5) -> str:
    """Render a verdict as plain text."""
    lines = [
        f"[{result.verdict.value}] {result.ticker} ({result.signal_date.isoformat()})",
        f"  P(loss): {result.p_loss * 100:.1f}% | P(win): {result.p_win * 100:.1f}%",
        f"  Confidence: {result.confidence.value}",
    ]
    if result.reasons:
        lines.append("  Reasons:")
        lines.extend(f"    - {reason}" for reason in result.reasons[:max_reasons])
    return "\n".join(lines)
