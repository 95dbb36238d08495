"""
Regularized logistic-regression trade classifier.

Estimates the probability (0-100) that a soft-signal entry reaches at least
+1R. Features are standardized with per-feature mean and population standard
deviation captured at training time and stored alongside the weights, so
inference applies the identical normalization.

Training is full-batch gradient descent over a dense numpy design matrix with:
- L1, L2 or elastic-net penalties on the weights (never the intercept)
- Baseline, zero, random, Xavier or small-random initialization
- Momentum and constant, step, exponential or cosine learning-rate schedules
- Optional class weighting for imbalanced labels

A seeded train/validation/test split supports holdout accuracy, and an
optional calibration transform fitted after training is stored in the
snapshot and applied by ``score``.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from sklearn.metrics import accuracy_score, f1_score, precision_score, recall_score, roc_auc_score
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import StandardScaler

from trade_decision_engine.core.data_types import FrozenConfig
from trade_decision_engine.core.exceptions import ModelLoadError, TrainingError
from trade_decision_engine.models.calibration import (
    CalibrationMethod,
    CalibrationParameters,
    apply_calibration,
    auto_select_calibration,
    calibration_report,
    fit_calibration,
)
from trade_decision_engine.models.features import (
    BASELINE_INTERCEPT,
    BASELINE_MEAN,
    BASELINE_STD,
    BASELINE_WEIGHTS,
    FEATURE_NAMES,
    FeatureVector,
    sanitize_features,
)
from trade_decision_engine.monitoring.logger import log_model

logger = logging.getLogger(__name__)

BASELINE_VERSION = "v1.0-baseline"
TRAINED_VERSION = "v1.0-trained"

# Logit clip keeping exp() finite
_LOGIT_CLIP = 500.0


# =============================================================================
# Parameters and examples
# =============================================================================


class ModelParameters(BaseModel):
    """Immutable snapshot of classifier weights and normalization statistics."""

    intercept: float = Field(..., description="Logit intercept")
    weights: dict[str, float] = Field(..., description="Weight per feature")
    feature_means: dict[str, float] = Field(default_factory=dict, description="Standardization means")
    feature_stds: dict[str, float] = Field(default_factory=dict, description="Standardization stds")
    version: str = Field(default=TRAINED_VERSION, description="Version tag")
    trained_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Training timestamp (UTC)",
    )
    training_samples: int = Field(default=0, ge=0, description="Number of training examples")
    validation_accuracy: float = Field(default=0.0, ge=0, le=100, description="Accuracy in percent")
    calibration: CalibrationParameters | None = Field(default=None, description="Probability calibration")

    model_config = ConfigDict(frozen=True)

    @field_validator("intercept")
    @classmethod
    def validate_intercept(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("Intercept must be finite")
        return v

    @field_validator("weights", "feature_means", "feature_stds")
    @classmethod
    def validate_finite(cls, v: dict[str, float]) -> dict[str, float]:
        """Reject NaN/inf coefficients."""
        bad = [k for k, x in v.items() if not math.isfinite(x)]
        if bad:
            raise ValueError(f"Non-finite values for: {', '.join(bad)}")
        return v

    @property
    def is_trained(self) -> bool:
        """True for snapshots produced by training (non-zero sample count)."""
        return self.training_samples > 0

    @property
    def feature_names(self) -> tuple[str, ...]:
        return tuple(self.weights)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary with JSON-serializable types."""
        return self.model_dump(mode="json")

    def to_json(self, indent: int | None = 2) -> str:
        """Serialize to a JSON document; floats keep full precision."""
        return self.model_dump_json(indent=indent)

    @classmethod
    def from_json(cls, document: str | bytes) -> "ModelParameters":
        """Decode a JSON document.

        Raises:
            ModelLoadError: If the document is malformed or fails validation.
        """
        try:
            return cls.model_validate_json(document)
        except PydanticValidationError as e:
            raise ModelLoadError(
                f"Invalid model parameter document: {e.error_count()} error(s)",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e


DEFAULT_PARAMETERS = ModelParameters(
    intercept=BASELINE_INTERCEPT,
    weights=dict(BASELINE_WEIGHTS),
    feature_means={name: BASELINE_MEAN for name in BASELINE_WEIGHTS},
    feature_stds={name: BASELINE_STD for name in BASELINE_WEIGHTS},
    version=BASELINE_VERSION,
    trained_at=datetime(1970, 1, 1, tzinfo=timezone.utc),
    training_samples=0,
    validation_accuracy=0.0,
)


class TrainingExample(BaseModel):
    """Feature vector with a binary outcome label (1 = reached +1R)."""

    features: dict[str, float]
    label: int

    model_config = ConfigDict(frozen=True)

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: int) -> int:
        if v not in (0, 1):
            raise ValueError(f"Label must be 0 or 1, got {v}")
        return v


# =============================================================================
# Training configuration
# =============================================================================


class RegularizationType(str, Enum):
    """Weight penalty family."""

    L1 = "L1"
    L2 = "L2"
    ELASTIC = "elastic"


class InitStrategy(str, Enum):
    """Weight initialization strategy."""

    DEFAULT = "default"
    ZERO = "zero"
    RANDOM = "random"
    XAVIER = "xavier"
    SMALL_RANDOM = "small_random"


class LRSchedule(str, Enum):
    """Learning-rate schedule."""

    CONSTANT = "constant"
    STEP = "step"
    EXPONENTIAL = "exponential"
    COSINE = "cosine"


class ClassWeights(FrozenConfig):
    """Per-class sample weights."""

    positive: float = Field(default=1.0, gt=0)
    negative: float = Field(default=1.0, gt=0)


class TrainingConfig(FrozenConfig):
    """Gradient-descent training configuration.

    Attributes:
        learning_rate: Base step size.
        iterations: Number of full-batch updates.
        regularization: Penalty strength (lambda).
        regularization_type: L1, L2 or elastic-net.
        elastic_ratio: Elastic-net mix; 1.0 is pure L1, 0.0 pure L2.
        init_strategy: Weight initialization.
        seed: Seed for random initialization.
        momentum: Velocity decay; 0 is vanilla gradient descent.
        lr_schedule: Learning-rate schedule.
        lr_decay: Decay factor for step and exponential schedules.
        lr_step_size: Iterations between step decays.
        class_weight: "none", "balanced" or explicit ``ClassWeights``.
    """

    learning_rate: float = Field(default=0.01, gt=0)
    iterations: int = Field(default=1000, ge=0)
    regularization: float = Field(default=0.01, ge=0)
    regularization_type: RegularizationType = RegularizationType.L2
    elastic_ratio: float = Field(default=0.5, ge=0, le=1)
    init_strategy: InitStrategy = InitStrategy.DEFAULT
    seed: int = 42
    momentum: float = Field(default=0.0, ge=0, lt=1)
    lr_schedule: LRSchedule = LRSchedule.CONSTANT
    lr_decay: float = Field(default=0.95, gt=0, le=1)
    lr_step_size: int = Field(default=100, ge=1)
    class_weight: Literal["none", "balanced"] | ClassWeights = "none"


def compute_class_weights(
    labels: Sequence[int] | np.ndarray,
    option: Literal["none", "balanced"] | ClassWeights = "none",
) -> ClassWeights:
    """Resolve a class-weight policy against a label set.

    "balanced" gives each class ``n / (2 * n_class)``; a class with no
    examples keeps weight 1.0.
    """
    if isinstance(option, ClassWeights):
        return option
    if option == "none":
        return ClassWeights()

    y = np.asarray(labels, dtype=float)
    total = len(y)
    positives = int(y.sum())
    negatives = total - positives
    return ClassWeights(
        positive=total / (2 * positives) if positives else 1.0,
        negative=total / (2 * negatives) if negatives else 1.0,
    )


def learning_rate_at(iteration: int, config: TrainingConfig) -> float:
    """Scheduled learning rate for a zero-based iteration."""
    base = config.learning_rate
    if config.lr_schedule == LRSchedule.STEP:
        return base * config.lr_decay ** (iteration // config.lr_step_size)
    if config.lr_schedule == LRSchedule.EXPONENTIAL:
        return base * config.lr_decay ** (iteration / 100)
    if config.lr_schedule == LRSchedule.COSINE:
        total = max(config.iterations, 1)
        return base * 0.5 * (1 + math.cos(math.pi * iteration / total))
    return base


# =============================================================================
# Scoring
# =============================================================================


def _sigmoid(z: np.ndarray | float) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(z, -_LOGIT_CLIP, _LOGIT_CLIP)))


def _standardized(vector: FeatureVector, params: ModelParameters) -> dict[str, float]:
    """Standardize a vector over the parameters' features (std <= 0 treated as 1)."""
    clean = sanitize_features(vector, params.feature_names)
    normalized = {}
    for name, value in clean.items():
        mean = params.feature_means.get(name, 0.0)
        std = params.feature_stds.get(name, 1.0)
        if std <= 0:
            std = 1.0
        normalized[name] = (value - mean) / std
    return normalized


def feature_contributions(
    vector: FeatureVector,
    params: ModelParameters | None = None,
) -> dict[str, float]:
    """Per-feature logit contribution ``weight * standardized value``."""
    params = params or DEFAULT_PARAMETERS
    normalized = _standardized(vector, params)
    return {name: params.weights[name] * z for name, z in normalized.items()}


def score(vector: FeatureVector, params: ModelParameters | None = None) -> float:
    """Probability of success in percent, clamped to [0, 100].

    Missing features count as 0 and unknown features are ignored. A
    snapshot carrying calibration parameters returns the calibrated
    probability.

    Args:
        vector: Feature mapping.
        params: Model snapshot; the baseline when omitted.

    Returns:
        Probability in [0, 100].
    """
    params = params or DEFAULT_PARAMETERS
    logit = params.intercept + sum(feature_contributions(vector, params).values())
    probability = apply_calibration(100.0 * float(_sigmoid(logit)), params.calibration)
    return max(0.0, min(100.0, probability))


def feature_importance(params: ModelParameters | None = None) -> list[tuple[str, float]]:
    """Features ranked by absolute weight, largest first."""
    params = params or DEFAULT_PARAMETERS
    return sorted(
        ((name, abs(weight)) for name, weight in params.weights.items()),
        key=lambda item: item[1],
        reverse=True,
    )


# =============================================================================
# Training
# =============================================================================


def _coerce_examples(examples: Iterable[TrainingExample | tuple[Mapping[str, float], int]]) -> list[TrainingExample]:
    result = []
    for i, example in enumerate(examples):
        if isinstance(example, TrainingExample):
            result.append(example)
            continue
        try:
            features, label = example
            result.append(TrainingExample(features=dict(features), label=label))
        except (TypeError, ValueError) as e:
            raise TrainingError(f"Invalid training example at index {i}: {e}") from e
    return result


def _design_matrix(examples: Sequence[TrainingExample], names: Sequence[str]) -> np.ndarray:
    rows = [list(sanitize_features(ex.features, names).values()) for ex in examples]
    return np.asarray(rows, dtype=float).reshape(len(examples), len(names))


def _initial_coefficients(
    names: Sequence[str],
    strategy: InitStrategy,
    rng: np.random.Generator,
) -> tuple[np.ndarray, float]:
    """Initial weights and intercept for a strategy."""
    k = len(names)
    if strategy == InitStrategy.ZERO:
        return np.zeros(k), 0.0
    if strategy == InitStrategy.DEFAULT:
        weights = np.array([BASELINE_WEIGHTS.get(name, 0.0) for name in names], dtype=float)
        return weights, BASELINE_INTERCEPT

    scale = {
        InitStrategy.RANDOM: 1.0,
        InitStrategy.XAVIER: math.sqrt(1.0 / k),
        InitStrategy.SMALL_RANDOM: 0.1,
    }[strategy]
    weights = rng.uniform(-1.0, 1.0, size=k) * scale
    intercept = float(rng.uniform(-1.0, 1.0)) * 0.5
    return weights, intercept


def _regularization_gradient(weights: np.ndarray, config: TrainingConfig) -> np.ndarray:
    lam = config.regularization
    if config.regularization_type == RegularizationType.L1:
        return lam * np.sign(weights)
    if config.regularization_type == RegularizationType.ELASTIC:
        ratio = config.elastic_ratio
        return ratio * lam * np.sign(weights) + (1 - ratio) * lam * weights
    return lam * weights


def _cross_entropy(probs: np.ndarray, labels: np.ndarray) -> float:
    p = np.clip(probs, 1e-10, 1 - 1e-10)
    return float(-np.mean(labels * np.log(p) + (1 - labels) * np.log(1 - p)))


def train(
    examples: Iterable[TrainingExample | tuple[Mapping[str, float], int]],
    config: TrainingConfig | None = None,
    feature_names: Sequence[str] | None = None,
    validation: Iterable[TrainingExample | tuple[Mapping[str, float], int]] | None = None,
) -> ModelParameters:
    """Fit a logistic-regression model by full-batch gradient descent.

    Args:
        examples: Training examples (or ``(features, label)`` pairs).
        config: Training configuration; defaults when omitted.
        feature_names: Feature schema; ``FEATURE_NAMES`` when omitted.
        validation: Held-out examples for ``validation_accuracy``; the
            training examples are scored instead when omitted or empty.

    Returns:
        Trained parameters. An empty training set returns the baseline
        parameters unchanged.

    Raises:
        TrainingError: If an example is malformed or the schema is empty.
    """
    config = config or TrainingConfig()
    data = _coerce_examples(examples)
    if not data:
        logger.warning("Empty training set, returning baseline parameters")
        return DEFAULT_PARAMETERS

    names = tuple(feature_names) if feature_names is not None else FEATURE_NAMES
    if not names:
        raise TrainingError("Feature schema must contain at least one feature")

    x = _design_matrix(data, names)
    y = np.array([ex.label for ex in data], dtype=float)
    n = len(y)

    # Population std; zero-variance features keep scale 1
    scaler = StandardScaler()
    z = scaler.fit_transform(x)

    class_weights = compute_class_weights(y, config.class_weight)
    sample_weights = np.where(y == 1, class_weights.positive, class_weights.negative)

    rng = np.random.default_rng(config.seed)
    weights, intercept = _initial_coefficients(names, config.init_strategy, rng)
    weight_velocity = np.zeros_like(weights)
    intercept_velocity = 0.0

    logger.info(
        f"Training on {n} examples, {len(names)} features "
        f"(init={config.init_strategy.value}, reg={config.regularization_type.value}, "
        f"momentum={config.momentum}, seed={config.seed})"
    )

    for iteration in range(config.iterations):
        lr = learning_rate_at(iteration, config)

        errors = (_sigmoid(intercept + z @ weights) - y) * sample_weights
        intercept_gradient = errors.sum() / n
        weight_gradient = z.T @ errors / n + _regularization_gradient(weights, config)

        intercept_velocity = config.momentum * intercept_velocity + lr * intercept_gradient
        intercept -= intercept_velocity
        weight_velocity = config.momentum * weight_velocity + lr * weight_gradient
        weights = weights - weight_velocity

        if iteration % 100 == 0:
            loss = _cross_entropy(_sigmoid(intercept + z @ weights), y)
            logger.debug(f"Iteration {iteration}: loss={loss:.4f}")

    if not (np.all(np.isfinite(weights)) and math.isfinite(intercept)):
        raise TrainingError(
            "Training diverged to non-finite coefficients",
            details={"learning_rate": config.learning_rate, "momentum": config.momentum},
        )

    params = ModelParameters(
        intercept=float(intercept),
        weights={name: float(w) for name, w in zip(names, weights)},
        feature_means={name: float(m) for name, m in zip(names, scaler.mean_)},
        feature_stds={name: float(s) for name, s in zip(names, scaler.scale_)},
        version=TRAINED_VERSION,
        trained_at=datetime.now(timezone.utc),
        training_samples=n,
    )

    held_out = _coerce_examples(validation) if validation is not None else []
    scored_on = "validation" if held_out else "training"
    accuracy = evaluate(held_out or data, params).accuracy * 100
    params = params.model_copy(update={"validation_accuracy": accuracy})

    log_model(
        f"Training complete: {n} samples, {scored_on} accuracy {accuracy:.1f}%",
        model_version=params.version,
        samples=n,
        accuracy=accuracy,
    )
    return params


# =============================================================================
# Holdout split
# =============================================================================


@dataclass(frozen=True)
class DataSplit:
    """Train/validation/test partition of labelled examples."""

    train: list[TrainingExample] = field(default_factory=list)
    validation: list[TrainingExample] = field(default_factory=list)
    test: list[TrainingExample] = field(default_factory=list)

    def sizes(self) -> dict[str, int]:
        return {"train": len(self.train), "validation": len(self.validation), "test": len(self.test)}


def _stratify_labels(data: Sequence[TrainingExample], test_size: float) -> list[int] | None:
    """Labels to stratify on, or None when a stratified split is impossible."""
    labels = [ex.label for ex in data]
    counts = Counter(labels)
    n_test = math.ceil(test_size * len(labels))
    if len(counts) < 2 or min(counts.values()) < 2:
        return None
    if n_test < len(counts) or len(labels) - n_test < len(counts):
        return None
    return labels


def _holdout(
    data: list[TrainingExample],
    test_size: float,
    seed: int,
) -> tuple[list[TrainingExample], list[TrainingExample]]:
    if test_size <= 0 or len(data) < 2:
        return data, []
    if test_size >= 1:
        return [], data
    kept, held = train_test_split(
        data,
        test_size=test_size,
        random_state=seed,
        stratify=_stratify_labels(data, test_size),
    )
    return list(kept), list(held)


def split_examples(
    examples: Iterable[TrainingExample | tuple[Mapping[str, float], int]],
    validation_fraction: float = 0.15,
    test_fraction: float = 0.15,
    seed: int = 42,
) -> DataSplit:
    """Shuffle and split examples into train, validation and test sets.

    Splits are stratified on the label whenever both classes have enough
    examples, and are reproducible for a given seed. The default is 70/15/15.

    Raises:
        TrainingError: If an example is malformed or the fractions leave no
            training data.
    """
    if validation_fraction < 0 or test_fraction < 0 or validation_fraction + test_fraction >= 1:
        raise TrainingError(
            "Validation and test fractions must be non-negative and sum to less than 1",
            details={"validation_fraction": validation_fraction, "test_fraction": test_fraction},
        )

    data = _coerce_examples(examples)
    holdout = validation_fraction + test_fraction
    train_set, rest = _holdout(data, holdout, seed)
    validation_set, test_set = _holdout(rest, test_fraction / holdout if holdout else 0.0, seed)

    split = DataSplit(train=train_set, validation=validation_set, test=test_set)
    logger.info(f"Split {len(data)} examples: {split.sizes()}")
    return split


# =============================================================================
# Calibration
# =============================================================================


def calibrate(
    params: ModelParameters,
    examples: Iterable[TrainingExample | tuple[Mapping[str, float], int]],
    selection: Iterable[TrainingExample | tuple[Mapping[str, float], int]] | None = None,
    method: CalibrationMethod | str = "auto",
) -> ModelParameters:
    """Fit a calibration transform on raw scores and attach it to the snapshot.

    Args:
        params: Snapshot to calibrate; any existing calibration is ignored
            when computing raw scores.
        examples: Labelled examples to fit on.
        selection: Labelled examples to choose the method on when ``method``
            is "auto"; ``examples`` when omitted or empty.
        method: "auto" or a ``CalibrationMethod`` value.

    Returns:
        A copy of ``params`` carrying the fitted calibration.
    """
    raw = params.model_copy(update={"calibration": None})
    data = _coerce_examples(examples)
    probs = [score(ex.features, raw) for ex in data]
    labels = [ex.label for ex in data]

    if method == "auto":
        chosen = _coerce_examples(selection) if selection is not None else []
        chosen = chosen or data
        calibration = auto_select_calibration(
            probs,
            labels,
            [score(ex.features, raw) for ex in chosen],
            [ex.label for ex in chosen],
        )
    else:
        calibration = fit_calibration(probs, labels, method)

    return params.model_copy(update={"calibration": calibration})


# =============================================================================
# Evaluation
# =============================================================================


@dataclass(frozen=True)
class ClassificationMetrics:
    """Classifier quality on a labelled set.

    Accuracy, precision, recall, F1, AUC and Brier score are fractions in
    [0, 1]; calibration error is in probability points (0-100).
    """

    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    auc: float = 0.5
    calibration_error: float = 0.0
    brier_score: float = 0.0
    sample_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def evaluate(
    examples: Iterable[TrainingExample | tuple[Mapping[str, float], int]],
    params: ModelParameters | None = None,
) -> ClassificationMetrics:
    """Evaluate parameters on labelled examples at a 50% decision threshold.

    Empty input yields zero metrics, and a set with a single class has an
    AUC of 0.5.
    """
    params = params or DEFAULT_PARAMETERS
    data = _coerce_examples(examples)
    if not data:
        return ClassificationMetrics()

    probs = np.array([score(ex.features, params) for ex in data], dtype=float)
    labels = np.array([ex.label for ex in data], dtype=int)
    predicted = (probs >= 50).astype(int)

    auc = float(roc_auc_score(labels, probs)) if len(np.unique(labels)) == 2 else 0.5
    report = calibration_report(probs, labels)

    return ClassificationMetrics(
        accuracy=float(accuracy_score(labels, predicted)),
        precision=float(precision_score(labels, predicted, zero_division=0)),
        recall=float(recall_score(labels, predicted, zero_division=0)),
        f1_score=float(f1_score(labels, predicted, zero_division=0)),
        auc=auc,
        calibration_error=report.expected_calibration_error,
        brier_score=report.brier_score,
        sample_count=len(data),
    )
