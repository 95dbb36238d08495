#!/usr/bin/env python3
"""
Main entry point for the Trade Decision Engine.

Provides a command line interface to train and evaluate the classifier, veto a
signal, simulate a trade outcome from a price history, and size a new
position. Every command prints a JSON document to stdout.
"""

from __future__ import annotations

import argparse
import datetime as dt
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from trade_decision_engine.backtest.simulator import SimulatorConfig
from trade_decision_engine.config.settings import Settings, get_settings
from trade_decision_engine.core.data_types import MarketRegime, price_series_from_frame
from trade_decision_engine.core.exceptions import (
    DataNotFoundError,
    DataValidationError,
    DecisionEngineError,
    MissingConfigError,
)
from trade_decision_engine.engine import EngineContext
from trade_decision_engine.models.calibration import CalibrationMethod
from trade_decision_engine.models.logistic import (
    ClassWeights,
    InitStrategy,
    RegularizationType,
    TrainingConfig,
    TrainingExample,
    calibrate,
    evaluate,
    split_examples,
    train,
)
from trade_decision_engine.models.persistence import load_parameters, save_parameters
from trade_decision_engine.monitoring.logger import LogCategory, LogFormat, get_logger, log_system, setup_logging
from trade_decision_engine.risk.allocator import OpenPosition
from trade_decision_engine.risk.budget import get_risk_budget

logger = get_logger("main", LogCategory.SYSTEM)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Trade Decision Engine",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Train command
    train_parser = subparsers.add_parser("train", help="Train the classifier")
    train_parser.add_argument("--examples", type=Path, required=True, help="Labelled examples (JSONL)")
    train_parser.add_argument("--output", type=Path, required=True, help="Parameter snapshot to write (JSON)")
    train_parser.add_argument("--iterations", type=int, default=1000, help="Gradient descent iterations")
    train_parser.add_argument("--learning-rate", type=float, default=0.01, help="Learning rate")
    train_parser.add_argument("--regularization", type=float, default=0.01, help="Regularization strength")
    train_parser.add_argument(
        "--regularization-type",
        choices=[r.value for r in RegularizationType],
        default=RegularizationType.L2.value,
        help="Regularization type",
    )
    train_parser.add_argument(
        "--init-strategy",
        choices=[s.value for s in InitStrategy],
        default=InitStrategy.DEFAULT.value,
        help="Weight initialization",
    )
    train_parser.add_argument("--seed", type=int, default=42, help="Random seed")
    train_parser.add_argument(
        "--class-weight",
        type=str,
        default="none",
        help="none, balanced, or POSITIVE,NEGATIVE weights",
    )
    train_parser.add_argument("--validation-fraction", type=float, default=0.15, help="Share held out for validation")
    train_parser.add_argument("--test-fraction", type=float, default=0.15, help="Share held out for testing")
    train_parser.add_argument(
        "--calibration",
        choices=["none", "auto"] + [m.value for m in CalibrationMethod if m != CalibrationMethod.NONE],
        default="none",
        help="Probability calibration fitted after training",
    )

    # Evaluate command
    eval_parser = subparsers.add_parser("evaluate", help="Evaluate parameters on labelled examples")
    eval_parser.add_argument("--examples", type=Path, required=True, help="Labelled examples (JSONL)")
    eval_parser.add_argument("--parameters", type=Path, help="Parameter snapshot (baseline when omitted)")

    # Veto command
    veto_parser = subparsers.add_parser("veto", help="Veto decision for one signal")
    veto_parser.add_argument("--features", type=Path, required=True, help="Feature vector (JSON object)")
    veto_parser.add_argument("--ticker", type=str, required=True, help="Ticker symbol")
    veto_parser.add_argument("--signal-date", type=str, required=True, help="Signal date (YYYY-MM-DD)")
    veto_parser.add_argument("--parameters", type=Path, help="Parameter snapshot")

    # Simulate command
    sim_parser = subparsers.add_parser("simulate", help="Simulate one signal against a price history")
    sim_parser.add_argument("--prices", type=Path, required=True, help="Daily OHLCV bars (CSV)")
    sim_parser.add_argument("--ticker", type=str, required=True, help="Ticker symbol")
    sim_parser.add_argument("--signal-date", type=str, required=True, help="Signal date (YYYY-MM-DD)")
    sim_parser.add_argument("--stop-multiple", type=float, help="Stop distance in ATRs")
    sim_parser.add_argument("--max-holding-days", type=int, help="Time exit horizon in sessions")

    # Size command
    size_parser = subparsers.add_parser("size", help="Size a new position")
    size_parser.add_argument("--entry", type=float, required=True, help="Entry price")
    size_parser.add_argument("--stop", type=float, required=True, help="Stop price")
    size_parser.add_argument("--equity", type=float, required=True, help="Account equity")
    size_parser.add_argument("--sector", type=str, help="Sector of the new position")
    size_parser.add_argument("--regime", choices=[r.value for r in MarketRegime], help="Current market regime")
    size_parser.add_argument("--preset", choices=["conservative", "default", "aggressive"], help="Risk preset")
    size_parser.add_argument("--positions", type=Path, help="Open positions (JSON array)")

    # Common arguments
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides configuration)",
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "text"],
        help="Log format (overrides configuration)",
    )

    return parser.parse_args(argv)


# =============================================================================
# Input helpers
# =============================================================================


def _require_file(path: Path, data_type: str) -> Path:
    if not path.exists():
        raise DataNotFoundError(f"File not found: {path}", data_type=data_type)
    return path


def _read_json(path: Path, data_type: str) -> Any:
    with open(_require_file(path, data_type), "r") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise DataValidationError(f"Invalid JSON in {path}: {e}", field=data_type) from e


def read_examples(path: Path) -> list[TrainingExample]:
    """Read labelled examples, one ``{"features": {...}, "label": 0|1}`` object per line."""
    examples = []
    with open(_require_file(path, "examples"), "r") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                examples.append(TrainingExample.model_validate_json(line))
            except PydanticValidationError as e:
                raise DataValidationError(
                    f"Invalid example on line {line_no} of {path}: {e.error_count()} error(s)",
                    field="examples",
                    value=line_no,
                ) from e
    return examples


def read_positions(path: Path) -> list[OpenPosition]:
    data = _read_json(path, "positions")
    if not isinstance(data, list):
        raise DataValidationError("Positions file must hold a JSON array", field="positions")
    try:
        return [OpenPosition.model_validate(item) for item in data]
    except PydanticValidationError as e:
        raise DataValidationError(f"Invalid position in {path}: {e.error_count()} error(s)", field="positions") from e


def parse_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError as e:
        raise DataValidationError(
            f"Invalid date: {value}", field="signal_date", value=value, expected="YYYY-MM-DD"
        ) from e


def parse_class_weight(value: str) -> str | ClassWeights:
    if value in ("none", "balanced"):
        return value
    try:
        positive, negative = (float(part) for part in value.split(","))
    except ValueError as e:
        raise DataValidationError(
            f"Invalid class weight: {value}",
            field="class_weight",
            value=value,
            expected="none, balanced or POSITIVE,NEGATIVE",
        ) from e
    return ClassWeights(positive=positive, negative=negative)


# =============================================================================
# Commands
# =============================================================================


def run_train(args: argparse.Namespace, context: EngineContext) -> dict[str, Any]:
    """Train on a seeded holdout split, optionally calibrate, and write the snapshot."""
    examples = read_examples(args.examples)
    split = split_examples(examples, args.validation_fraction, args.test_fraction, seed=args.seed)
    config = TrainingConfig(
        learning_rate=args.learning_rate,
        iterations=args.iterations,
        regularization=args.regularization,
        regularization_type=args.regularization_type,
        init_strategy=args.init_strategy,
        seed=args.seed,
        class_weight=parse_class_weight(args.class_weight),
    )
    params = train(split.train, config, validation=split.validation)
    if args.calibration != "none":
        params = calibrate(params, split.train, split.validation, method=args.calibration)
    output = save_parameters(params, args.output)
    return {
        "output": str(output),
        "splits": split.sizes(),
        "parameters": {
            "version": params.version,
            "training_samples": params.training_samples,
            "validation_accuracy": params.validation_accuracy,
            "calibration": params.calibration.method.value if params.calibration else "none",
        },
        "metrics": {
            "train": evaluate(split.train, params).to_dict(),
            "validation": evaluate(split.validation, params).to_dict(),
            "test": evaluate(split.test, params).to_dict(),
        },
    }


def run_evaluate(args: argparse.Namespace, context: EngineContext) -> dict[str, Any]:
    if args.parameters:
        context = context.with_parameters(load_parameters(args.parameters))
    params = context.active_parameters
    metrics = evaluate(read_examples(args.examples), params)
    return {"model_version": params.version, "using_baseline": context.using_baseline, "metrics": metrics.to_dict()}


def run_veto(args: argparse.Namespace, context: EngineContext) -> dict[str, Any]:
    if args.parameters:
        context = context.with_parameters(load_parameters(args.parameters))
    features = _read_json(args.features, "features")
    if not isinstance(features, dict):
        raise DataValidationError("Features file must hold a JSON object", field="features")
    return context.veto(features, args.ticker, parse_date(args.signal_date)).to_dict()


def run_simulate(args: argparse.Namespace, context: EngineContext) -> dict[str, Any]:
    """Simulate one signal; an insufficient history yields a null outcome."""
    overrides = {}
    if args.stop_multiple is not None:
        overrides["stop_multiple"] = args.stop_multiple
    if args.max_holding_days is not None:
        overrides["max_holding_days"] = args.max_holding_days
    if overrides:
        config = SimulatorConfig(**{**context.simulator_config.model_dump(), **overrides})
        context = replace(context, simulator_config=config)

    frame = pd.read_csv(_require_file(args.prices, "prices"))
    bars = price_series_from_frame(frame)
    signal_date = parse_date(args.signal_date)

    outcome = context.simulate(args.ticker.upper(), signal_date, bars)
    return {
        "ticker": args.ticker.upper(),
        "signal_date": signal_date.isoformat(),
        "outcome": outcome.to_dict() if outcome else None,
    }


def run_size(args: argparse.Namespace, context: EngineContext, settings: Settings) -> dict[str, Any]:
    if args.preset:
        context = replace(context, risk_budget=get_risk_budget(args.preset))
    positions = read_positions(args.positions) if args.positions else []
    regime = args.regime or settings.risk.default_regime
    decision = context.size(args.entry, args.stop, args.equity, positions, regime, args.sector)
    return decision.to_dict()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        if args.config and not args.config.exists():
            raise MissingConfigError(f"Configuration file not found: {args.config}", config_key="config")
        settings = Settings.from_yaml(args.config) if args.config else get_settings()
    except DecisionEngineError as e:
        print(json.dumps({"error": e.to_dict()}, default=str))
        return 1

    # Setup logging
    log_format = LogFormat(args.log_format or settings.logging.format)
    setup_logging(
        level=args.log_level or settings.logging.level,
        log_format=log_format,
        log_file=settings.logging.file_path,
        max_bytes=settings.logging.max_bytes,
        backup_count=settings.logging.backup_count,
    )

    log_system(
        f"Trade Decision Engine v{settings.app_version}",
        command=args.command,
        environment=settings.environment,
    )

    try:
        context = EngineContext.from_settings(settings)
        if args.command == "train":
            result = run_train(args, context)
        elif args.command == "evaluate":
            result = run_evaluate(args, context)
        elif args.command == "veto":
            result = run_veto(args, context)
        elif args.command == "simulate":
            result = run_simulate(args, context)
        else:
            result = run_size(args, context, settings)
    except DecisionEngineError as e:
        logger.error(f"{args.command} failed: {e}")
        print(json.dumps({"error": e.to_dict()}, default=str))
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
