"""
Models module.

Contains the trade classifier (feature schema, logistic regression training,
holdout splits, scoring and evaluation), probability calibration, parameter
persistence and the veto layer.
"""

from .features import (
    BASELINE_WEIGHTS,
    FEATURE_NAMES,
    FeatureVector,
    encode_regime,
    encode_vix_regime,
    sanitize_features,
    seasonal_features,
)
from .calibration import (
    CalibrationMethod,
    CalibrationParameters,
    CalibrationReport,
    apply_calibration,
    auto_select_calibration,
    calibration_report,
    fit_calibration,
)
from .logistic import (
    DEFAULT_PARAMETERS,
    ClassificationMetrics,
    ClassWeights,
    DataSplit,
    InitStrategy,
    LRSchedule,
    ModelParameters,
    RegularizationType,
    TrainingConfig,
    TrainingExample,
    calibrate,
    compute_class_weights,
    evaluate,
    feature_contributions,
    feature_importance,
    learning_rate_at,
    score,
    split_examples,
    train,
)
from .persistence import load_parameters, resolve_active_parameters, save_parameters
from .veto import (
    BatchVetoResult,
    VetoConfidence,
    VetoConfig,
    VetoResult,
    VetoVerdict,
    evaluate_veto,
    evaluate_veto_batch,
    format_veto_result,
)

__all__ = [
    # Features
    "BASELINE_WEIGHTS",
    "FEATURE_NAMES",
    "FeatureVector",
    "encode_regime",
    "encode_vix_regime",
    "sanitize_features",
    "seasonal_features",
    # Calibration
    "CalibrationMethod",
    "CalibrationParameters",
    "CalibrationReport",
    "apply_calibration",
    "auto_select_calibration",
    "calibration_report",
    "fit_calibration",
    # Classifier
    "DEFAULT_PARAMETERS",
    "ClassificationMetrics",
    "ClassWeights",
    "DataSplit",
    "InitStrategy",
    "LRSchedule",
    "ModelParameters",
    "RegularizationType",
    "TrainingConfig",
    "TrainingExample",
    "calibrate",
    "compute_class_weights",
    "evaluate",
    "feature_contributions",
    "feature_importance",
    "learning_rate_at",
    "score",
    "split_examples",
    "train",
    # Persistence
    "load_parameters",
    "resolve_active_parameters",
    "save_parameters",
    # Veto
    "BatchVetoResult",
    "VetoConfidence",
    "VetoConfig",
    "VetoResult",
    "VetoVerdict",
    "evaluate_veto",
    "evaluate_veto_batch",
    "format_veto_result",
]
