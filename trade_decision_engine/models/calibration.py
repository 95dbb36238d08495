"""
Probability calibration for the trade classifier.

Maps raw logistic probabilities (percent) to calibrated probabilities with one
of three fitted transforms:
- Platt scaling: a one-feature logistic regression on the raw probability
- Isotonic regression: a monotone piecewise-linear map
- Temperature scaling: the raw logit divided by a fitted temperature

Calibration parameters are plain data so they serialize with the model
snapshot. ``auto_select_calibration`` fits every method on one labelled set
and keeps the best-calibrated on another.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from enum import Enum

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sklearn.isotonic import IsotonicRegression
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import mean_squared_error

from trade_decision_engine.core.exceptions import ValidationError
from trade_decision_engine.monitoring.logger import log_model

logger = logging.getLogger(__name__)

# Probability clip (as a fraction) keeping logits finite
_EPSILON = 1e-10

# Temperature grid: 0.1 to 5.0 in steps of 0.1
_TEMPERATURE_GRID = np.arange(1, 51) / 10.0

# ECE differences below this many points are broken by Brier score
_ECE_TOLERANCE = 0.5


class CalibrationMethod(str, Enum):
    """Calibration transform."""

    NONE = "none"
    PLATT = "platt"
    ISOTONIC = "isotonic"
    TEMPERATURE = "temperature"


class CalibrationReport(BaseModel):
    """Calibration quality on a labelled set.

    Calibration errors are in probability points (0-100); the Brier score is
    the mean squared error of the fractional probability.
    """

    expected_calibration_error: float = 0.0
    max_calibration_error: float = 0.0
    brier_score: float = 0.0
    sample_count: int = 0

    model_config = ConfigDict(frozen=True)


class CalibrationParameters(BaseModel):
    """Serializable calibration transform.

    Attributes:
        method: Transform applied on top of the raw probability.
        platt_a: Platt slope on the fractional raw probability.
        platt_b: Platt intercept.
        isotonic_x: Isotonic knots, raw probability in percent (ascending).
        isotonic_y: Calibrated probability in percent at each knot.
        temperature: Logit divisor for temperature scaling.
        fitted_at: Fit timestamp (UTC).
        report: Quality on the set the method was selected on.
    """

    method: CalibrationMethod = CalibrationMethod.NONE
    platt_a: float = 1.0
    platt_b: float = 0.0
    isotonic_x: list[float] = Field(default_factory=list)
    isotonic_y: list[float] = Field(default_factory=list)
    temperature: float = Field(default=1.0, gt=0)
    fitted_at: datetime | None = None
    report: CalibrationReport | None = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_knots(self) -> "CalibrationParameters":
        if len(self.isotonic_x) != len(self.isotonic_y):
            raise ValueError("isotonic_x and isotonic_y must have the same length")
        if any(b < a for a, b in zip(self.isotonic_x, self.isotonic_x[1:])):
            raise ValueError("isotonic_x must be ascending")
        if self.method == CalibrationMethod.ISOTONIC and not self.isotonic_x:
            raise ValueError("Isotonic calibration requires at least one knot")
        return self


IDENTITY_CALIBRATION = CalibrationParameters()


def _sigmoid(z: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(z, -500.0, 500.0)))


def _logit(probabilities: np.ndarray) -> np.ndarray:
    q = np.clip(np.asarray(probabilities, dtype=float) / 100.0, _EPSILON, 1 - _EPSILON)
    return np.log(q / (1 - q))


def _as_arrays(probabilities: Sequence[float], labels: Sequence[int]) -> tuple[np.ndarray, np.ndarray]:
    p = np.asarray(probabilities, dtype=float)
    y = np.asarray(labels, dtype=float)
    if p.shape != y.shape:
        raise ValidationError(f"{len(p)} probabilities but {len(y)} labels", field_name="labels", invalid_value=len(y))
    return p, y


# =============================================================================
# Applying
# =============================================================================


def calibrate_probabilities(
    probabilities: Sequence[float] | np.ndarray,
    params: CalibrationParameters,
) -> np.ndarray:
    """Calibrate raw probabilities (percent); results are clamped to [0, 100]."""
    p = np.asarray(probabilities, dtype=float)
    if params.method == CalibrationMethod.PLATT:
        calibrated = 100.0 * _sigmoid(params.platt_a * p / 100.0 + params.platt_b)
    elif params.method == CalibrationMethod.ISOTONIC:
        # np.interp holds the end values outside the knots
        calibrated = np.interp(p, params.isotonic_x, params.isotonic_y)
    elif params.method == CalibrationMethod.TEMPERATURE:
        calibrated = 100.0 * _sigmoid(_logit(p) / params.temperature)
    else:
        calibrated = p
    return np.clip(calibrated, 0.0, 100.0)


def apply_calibration(probability: float, params: CalibrationParameters | None) -> float:
    """Calibrate one raw probability in percent."""
    if params is None or params.method == CalibrationMethod.NONE:
        return probability
    return float(calibrate_probabilities([probability], params)[0])


# =============================================================================
# Quality
# =============================================================================


def calibration_report(probabilities: Sequence[float], labels: Sequence[int]) -> CalibrationReport:
    """Expected and maximum calibration error over probability deciles, plus Brier score.

    ECE weights each decile's |mean predicted - observed rate| by its share of
    samples; MCE is the largest such gap. Empty input yields a zero report.
    """
    p, y = _as_arrays(probabilities, labels)
    n = len(p)
    if n == 0:
        return CalibrationReport()

    buckets = np.minimum(9, np.floor(p / 10)).astype(int)
    ece = 0.0
    mce = 0.0
    for bucket in np.unique(buckets):
        mask = buckets == bucket
        gap = abs(p[mask].mean() - y[mask].mean() * 100)
        ece += gap * mask.sum() / n
        mce = max(mce, gap)

    return CalibrationReport(
        expected_calibration_error=float(ece),
        max_calibration_error=float(mce),
        brier_score=float(mean_squared_error(y, p / 100.0)),
        sample_count=n,
    )


# =============================================================================
# Fitting
# =============================================================================


def fit_platt(probabilities: Sequence[float], labels: Sequence[int]) -> CalibrationParameters:
    """Fit Platt scaling; a single-class set yields the identity transform."""
    p, y = _as_arrays(probabilities, labels)
    if len(np.unique(y)) < 2:
        logger.warning("Platt scaling needs both classes, keeping raw probabilities")
        return IDENTITY_CALIBRATION

    model = LogisticRegression(C=1e4)
    model.fit((p / 100.0).reshape(-1, 1), y.astype(int))
    return CalibrationParameters(
        method=CalibrationMethod.PLATT,
        platt_a=float(model.coef_[0][0]),
        platt_b=float(model.intercept_[0]),
    )


def fit_isotonic(probabilities: Sequence[float], labels: Sequence[int]) -> CalibrationParameters:
    """Fit isotonic regression; fewer than two samples yield the identity transform."""
    p, y = _as_arrays(probabilities, labels)
    if len(p) < 2:
        logger.warning("Isotonic regression needs at least two samples, keeping raw probabilities")
        return IDENTITY_CALIBRATION

    model = IsotonicRegression(y_min=0.0, y_max=1.0, out_of_bounds="clip")
    model.fit(p, y)
    return CalibrationParameters(
        method=CalibrationMethod.ISOTONIC,
        isotonic_x=[float(x) for x in model.X_thresholds_],
        isotonic_y=[float(v) * 100.0 for v in model.y_thresholds_],
    )


def fit_temperature(probabilities: Sequence[float], labels: Sequence[int]) -> CalibrationParameters:
    """Pick the grid temperature with the lowest negative log-likelihood."""
    p, y = _as_arrays(probabilities, labels)
    if len(p) == 0:
        return IDENTITY_CALIBRATION

    logits = _logit(p)
    best_temperature, best_nll = 1.0, np.inf
    for temperature in _TEMPERATURE_GRID:
        q = np.clip(_sigmoid(logits / temperature), _EPSILON, 1 - _EPSILON)
        nll = -np.sum(y * np.log(q) + (1 - y) * np.log(1 - q))
        if nll < best_nll:
            best_temperature, best_nll = float(temperature), nll

    return CalibrationParameters(method=CalibrationMethod.TEMPERATURE, temperature=best_temperature)


_FITTERS = {
    CalibrationMethod.PLATT: fit_platt,
    CalibrationMethod.ISOTONIC: fit_isotonic,
    CalibrationMethod.TEMPERATURE: fit_temperature,
}


def fit_calibration(
    probabilities: Sequence[float],
    labels: Sequence[int],
    method: CalibrationMethod | str,
) -> CalibrationParameters:
    """Fit one calibration method and stamp it with its in-sample report."""
    method = CalibrationMethod(method)
    if method == CalibrationMethod.NONE:
        params = IDENTITY_CALIBRATION
    else:
        params = _FITTERS[method](probabilities, labels)
    report = calibration_report(calibrate_probabilities(probabilities, params), labels)
    return params.model_copy(update={"fitted_at": datetime.now(timezone.utc), "report": report})


def auto_select_calibration(
    fit_probabilities: Sequence[float],
    fit_labels: Sequence[int],
    eval_probabilities: Sequence[float],
    eval_labels: Sequence[int],
) -> CalibrationParameters:
    """Fit every method on one set and keep the best on another.

    The winner has the lowest expected calibration error on the evaluation
    set; methods within half a point of it are ranked by Brier score. Raw
    probabilities compete as ``NONE``.

    Args:
        fit_probabilities: Raw probabilities (percent) to fit on.
        fit_labels: Labels for the fit set.
        eval_probabilities: Raw probabilities (percent) to select on.
        eval_labels: Labels for the selection set.

    Returns:
        The selected parameters, with their report on the selection set.
    """
    candidates: list[tuple[CalibrationParameters, CalibrationReport]] = []
    for method in CalibrationMethod:
        params = IDENTITY_CALIBRATION if method == CalibrationMethod.NONE else _FITTERS[method](fit_probabilities, fit_labels)
        report = calibration_report(calibrate_probabilities(eval_probabilities, params), eval_labels)
        logger.debug(
            f"Calibration {method.value}: ECE={report.expected_calibration_error:.2f} "
            f"MCE={report.max_calibration_error:.2f} Brier={report.brier_score:.4f}"
        )
        candidates.append((params, report))

    best_ece = min(report.expected_calibration_error for _, report in candidates)
    contenders = [c for c in candidates if c[1].expected_calibration_error - best_ece <= _ECE_TOLERANCE]
    params, report = min(contenders, key=lambda c: c[1].brier_score)

    log_model(
        f"Selected {params.method.value} calibration (ECE {report.expected_calibration_error:.2f})",
        method=params.method.value,
        brier_score=report.brier_score,
    )
    return params.model_copy(update={"fitted_at": datetime.now(timezone.utc), "report": report})
