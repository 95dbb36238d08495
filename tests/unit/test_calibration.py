"""
Unit tests for probability calibration: models/calibration.py
"""

import numpy as np
import pytest
from pydantic import ValidationError as PydanticValidationError

from trade_decision_engine.core.exceptions import ValidationError
from trade_decision_engine.models.calibration import (
    IDENTITY_CALIBRATION,
    CalibrationMethod,
    CalibrationParameters,
    CalibrationReport,
    apply_calibration,
    auto_select_calibration,
    calibrate_probabilities,
    calibration_report,
    fit_calibration,
    fit_isotonic,
    fit_platt,
    fit_temperature,
)


class TestCalibrationParameters:
    """Tests for CalibrationParameters validation."""

    def test_identity(self):
        assert IDENTITY_CALIBRATION.method == CalibrationMethod.NONE
        assert apply_calibration(63.0, IDENTITY_CALIBRATION) == 63.0
        assert apply_calibration(63.0, None) == 63.0

    def test_mismatched_knots(self):
        with pytest.raises(PydanticValidationError):
            CalibrationParameters(method=CalibrationMethod.ISOTONIC, isotonic_x=[10.0, 20.0], isotonic_y=[0.0])

    def test_descending_knots(self):
        with pytest.raises(PydanticValidationError):
            CalibrationParameters(method=CalibrationMethod.ISOTONIC, isotonic_x=[20.0, 10.0], isotonic_y=[0.0, 1.0])

    def test_isotonic_requires_knots(self):
        with pytest.raises(PydanticValidationError):
            CalibrationParameters(method=CalibrationMethod.ISOTONIC)

    def test_non_positive_temperature(self):
        with pytest.raises(PydanticValidationError):
            CalibrationParameters(method=CalibrationMethod.TEMPERATURE, temperature=0.0)

    def test_json_round_trip(self):
        params = CalibrationParameters(
            method=CalibrationMethod.ISOTONIC,
            isotonic_x=[10.0, 90.0],
            isotonic_y=[5.0, 80.0],
            report=CalibrationReport(expected_calibration_error=1.5, sample_count=4),
        )
        assert CalibrationParameters.model_validate_json(params.model_dump_json()) == params


class TestApplyCalibration:
    """Tests for applying fitted transforms."""

    def test_unit_temperature_is_identity(self):
        params = CalibrationParameters(method=CalibrationMethod.TEMPERATURE, temperature=1.0)
        assert apply_calibration(70.0, params) == pytest.approx(70.0)

    def test_high_temperature_pulls_towards_half(self):
        params = CalibrationParameters(method=CalibrationMethod.TEMPERATURE, temperature=4.0)
        assert 50.0 < apply_calibration(90.0, params) < 90.0
        assert 10.0 < apply_calibration(10.0, params) < 50.0

    def test_temperature_handles_extremes(self):
        params = CalibrationParameters(method=CalibrationMethod.TEMPERATURE, temperature=2.0)
        assert 0.0 <= apply_calibration(0.0, params) < 1.0
        assert 99.0 < apply_calibration(100.0, params) <= 100.0

    def test_platt(self):
        params = CalibrationParameters(method=CalibrationMethod.PLATT, platt_a=0.0, platt_b=0.0)
        assert apply_calibration(95.0, params) == pytest.approx(50.0)

    def test_isotonic_interpolates_and_clips(self):
        params = CalibrationParameters(
            method=CalibrationMethod.ISOTONIC, isotonic_x=[20.0, 60.0], isotonic_y=[10.0, 50.0]
        )
        assert apply_calibration(40.0, params) == pytest.approx(30.0)
        assert apply_calibration(0.0, params) == pytest.approx(10.0)
        assert apply_calibration(100.0, params) == pytest.approx(50.0)

    def test_batch_matches_single(self):
        params = CalibrationParameters(method=CalibrationMethod.TEMPERATURE, temperature=1.7)
        probs = [5.0, 35.0, 80.0]
        batch = calibrate_probabilities(probs, params)
        assert batch == pytest.approx([apply_calibration(p, params) for p in probs])


class TestCalibrationReport:
    """Tests for calibration_report."""

    def test_empty(self):
        assert calibration_report([], []) == CalibrationReport()

    def test_perfect(self):
        report = calibration_report([0.0, 0.0, 100.0], [0, 0, 1])
        assert report.expected_calibration_error == pytest.approx(0.0)
        assert report.brier_score == pytest.approx(0.0)
        assert report.sample_count == 3

    def test_overconfident(self):
        report = calibration_report([50.0, 50.0], [0, 0])
        assert report.expected_calibration_error == pytest.approx(50.0)
        assert report.max_calibration_error == pytest.approx(50.0)
        assert report.brier_score == pytest.approx(0.25)

    def test_max_error_is_worst_bucket(self):
        # Decile 1 is exact; decile 9 is off by 90 points
        report = calibration_report([10.0, 10.0, 10.0, 10.0, 10.0, 10.0, 10.0, 10.0, 10.0, 10.0, 90.0],
                                    [1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0])
        assert report.max_calibration_error == pytest.approx(90.0)
        assert report.expected_calibration_error == pytest.approx(90.0 / 11)

    def test_length_mismatch(self):
        with pytest.raises(ValidationError):
            calibration_report([10.0, 20.0], [1])


class TestFitting:
    """Tests for the individual fitters."""

    @pytest.fixture
    def monotone(self):
        probs = [10.0, 20.0, 30.0, 40.0, 60.0, 70.0, 80.0, 90.0]
        labels = [0, 0, 0, 1, 0, 1, 1, 1]
        return probs, labels

    def test_platt_increasing(self, monotone):
        params = fit_platt(*monotone)
        assert params.method == CalibrationMethod.PLATT
        assert params.platt_a > 0
        calibrated = calibrate_probabilities([10.0, 50.0, 90.0], params)
        assert np.all(np.diff(calibrated) > 0)

    def test_platt_single_class(self):
        assert fit_platt([30.0, 70.0], [1, 1]) is IDENTITY_CALIBRATION

    def test_isotonic(self):
        params = fit_isotonic([10.0, 20.0, 30.0, 40.0], [0, 0, 1, 1])
        assert params.method == CalibrationMethod.ISOTONIC
        assert apply_calibration(10.0, params) == pytest.approx(0.0)
        assert apply_calibration(40.0, params) == pytest.approx(100.0)
        assert apply_calibration(0.0, params) == pytest.approx(0.0)
        assert apply_calibration(100.0, params) == pytest.approx(100.0)

    def test_isotonic_is_monotone(self, monotone):
        params = fit_isotonic(*monotone)
        calibrated = calibrate_probabilities(np.linspace(0, 100, 21), params)
        assert np.all(np.diff(calibrated) >= 0)

    def test_isotonic_too_few_samples(self):
        assert fit_isotonic([40.0], [1]) is IDENTITY_CALIBRATION

    def test_temperature_softens_overconfidence(self):
        """Test coin-flip outcomes at extreme scores push the temperature to the grid maximum."""
        params = fit_temperature([99.0, 99.0, 1.0, 1.0], [1, 0, 0, 1])
        assert params.temperature == pytest.approx(5.0)

    def test_temperature_empty(self):
        assert fit_temperature([], []) is IDENTITY_CALIBRATION

    @pytest.mark.parametrize("method", list(CalibrationMethod))
    def test_fit_calibration_reports(self, monotone, method):
        params = fit_calibration(*monotone, method=method.value)
        assert params.method == method
        assert params.fitted_at is not None
        assert params.report.sample_count == len(monotone[0])

    def test_fit_calibration_unknown_method(self, monotone):
        with pytest.raises(ValueError):
            fit_calibration(*monotone, method="bayesian")


class TestAutoSelect:
    """Tests for auto_select_calibration."""

    def test_keeps_raw_when_already_calibrated(self):
        probs = [0.0, 0.0, 100.0, 100.0]
        labels = [0, 0, 1, 1]
        params = auto_select_calibration(probs, labels, probs, labels)
        assert params.method == CalibrationMethod.NONE
        assert params.report.expected_calibration_error == pytest.approx(0.0)

    def test_corrects_overconfidence(self):
        probs = [95.0] * 10
        labels = [1, 0] * 5
        params = auto_select_calibration(probs, labels, probs, labels)
        assert params.method != CalibrationMethod.NONE
        assert params.report.expected_calibration_error < 45.0
        assert params.report.sample_count == 10
        assert params.fitted_at is not None
