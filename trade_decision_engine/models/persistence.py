"""
Model parameter persistence and selection.

Parameter snapshots are stored as JSON documents. Loading never raises for a
missing or invalid snapshot: the caller receives ``None`` and resolves it to
the hardcoded baseline with :func:`resolve_active_parameters`.
"""

from __future__ import annotations

import logging
from pathlib import Path

from trade_decision_engine.core.exceptions import ModelLoadError
from trade_decision_engine.models.logistic import DEFAULT_PARAMETERS, ModelParameters

logger = logging.getLogger(__name__)


def save_parameters(params: ModelParameters, path: str | Path) -> Path:
    """
    Write a parameter snapshot to disk.

    Args:
        params: Snapshot to save
        path: Destination JSON file (parent directories are created)

    Returns:
        The written path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(params.to_json())
    logger.info(f"Saved model parameters {params.version} ({params.training_samples} samples) to {path}")
    return path


def load_parameters(path: str | Path | None) -> ModelParameters | None:
    """
    Load a trained parameter snapshot.

    A missing file, an unreadable or malformed document, and a snapshot with
    zero training samples are all treated as "no trained model".

    Args:
        path: Snapshot file, or None

    Returns:
        The trained parameters, or None
    """
    if path is None:
        return None

    path = Path(path)
    if not path.exists():
        logger.info(f"No model parameters at {path}")
        return None

    try:
        with open(path, "r") as f:
            params = ModelParameters.from_json(f.read())
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read model parameters from {path}: {e}")
        return None
    except ModelLoadError as e:
        logger.warning(f"Ignoring invalid model parameters at {path}: {e}")
        return None

    if not params.is_trained:
        logger.info(f"Model parameters at {path} have zero training samples, ignoring")
        return None

    logger.info(f"Loaded model parameters {params.version} ({params.training_samples} samples) from {path}")
    return params


def resolve_active_parameters(loaded: ModelParameters | None) -> ModelParameters:
    """Return ``loaded`` if it is a trained snapshot, otherwise the baseline."""
    if loaded is not None and loaded.is_trained:
        return loaded
    logger.info(f"No trained model available, using baseline parameters {DEFAULT_PARAMETERS.version}")
    return DEFAULT_PARAMETERS
