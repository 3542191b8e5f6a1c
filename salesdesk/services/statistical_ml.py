"""Lightweight statistical models for CRM analytics.

Closed-form estimators over small in-memory series: least squares trend,
exponential smoothing, k-means, z-score anomalies, Pearson correlation and a
fixed-weight logistic churn model.
"""

import math
from typing import Any

import numpy as np
from pydantic import BaseModel

RELATIONSHIP_CHURN_WEIGHTS = {
    "WEAK": 0.8,
    "MODERATE": 0.4,
    "STRONG": 0.1,
    "EXCELLENT": 0.05,
}


class RegressionResult(BaseModel):
    """Least squares fit ``y = slope * x + intercept``."""

    slope: float
    intercept: float
    r2: float


class ForecastResult(BaseModel):
    """One forecast period with its confidence band."""

    predicted: float
    upperBound: float
    lowerBound: float
    confidence: float
    trend: str


class SimpleMLEngine:
    """Statistical helpers shared by the analytics endpoints."""

    @staticmethod
    def linear_regression(points: list[tuple[float, float]]) -> RegressionResult:
        """Fit a least squares line through (x, y) points.

        Args:
            points: Observations as (x, y) pairs

        Returns:
            Slope, intercept and R-squared clamped to [0, 1]. Degenerate input
            (fewer than two distinct x values) yields a flat line through the mean.
        """
        if not points:
            return RegressionResult(slope=0.0, intercept=0.0, r2=0.0)

        x = np.array([p[0] for p in points], dtype=float)
        y = np.array([p[1] for p in points], dtype=float)
        n = len(points)

        denominator = n * np.sum(x * x) - np.sum(x) ** 2
        if denominator == 0:
            return RegressionResult(slope=0.0, intercept=float(np.mean(y)), r2=0.0)

        slope = (n * np.sum(x * y) - np.sum(x) * np.sum(y)) / denominator
        intercept = (np.sum(y) - slope * np.sum(x)) / n

        ss_res = np.sum((y - (slope * x + intercept)) ** 2)
        ss_tot = np.sum((y - np.mean(y)) ** 2)
        r2 = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0

        return RegressionResult(
            slope=float(slope), intercept=float(intercept), r2=float(max(0.0, min(1.0, r2)))
        )

    @staticmethod
    def exponential_moving_average(data: list[float], alpha: float = 0.3) -> list[float]:
        """Smooth a series; the first value seeds the average."""
        if not data:
            return []

        result = [float(data[0])]
        for value in data[1:]:
            result.append(alpha * value + (1 - alpha) * result[-1])
        return result

    @staticmethod
    def k_means_clustering(
        data: list[list[float]], k: int = 3, max_iterations: int = 50
    ) -> dict[str, Any]:
        """Cluster points with Lloyd's algorithm.

        The first ``k`` points seed the centroids. A centroid whose cluster
        empties keeps its previous position. Iteration stops once every
        centroid moves less than 0.001.

        Returns:
            Dict with ``centroids``, per-point ``clusters`` and ``iterations``
        """
        if not data or k <= 0:
            return {"centroids": [], "clusters": [], "iterations": 0}

        points = np.array(data, dtype=float)
        centroids = points[: min(k, len(points))].copy()
        clusters = np.zeros(len(points), dtype=int)
        iterations = 0

        for iteration in range(max_iterations):
            iterations = iteration + 1

            distances = np.linalg.norm(points[:, None, :] - centroids[None, :, :], axis=2)
            clusters = np.argmin(distances, axis=1)

            new_centroids = centroids.copy()
            for index in range(len(centroids)):
                members = points[clusters == index]
                if len(members):
                    new_centroids[index] = members.mean(axis=0)

            shifts = np.linalg.norm(centroids - new_centroids, axis=1)
            centroids = new_centroids
            if np.all(shifts < 0.001):
                break

        return {
            "centroids": centroids.tolist(),
            "clusters": clusters.tolist(),
            "iterations": iterations,
        }

    @staticmethod
    def forecast_time_series(
        historical: list[float], periods_ahead: int = 3, confidence_level: float = 0.95
    ) -> list[ForecastResult]:
        """Extrapolate a linear trend with widening confidence bands.

        With fewer than three observations the last value is repeated with a
        +/-20% band and 0.5 confidence.

        Args:
            historical: Observed values, oldest first
            periods_ahead: Number of future periods
            confidence_level: Scales the band and the starting confidence

        Returns:
            Forecast per future period
        """
        if len(historical) < 3:
            last = float(historical[-1]) if historical else 0.0
            return [
                ForecastResult(
                    predicted=last,
                    upperBound=last * 1.2,
                    lowerBound=last * 0.8,
                    confidence=0.5,
                    trend="stable",
                )
                for _ in range(periods_ahead)
            ]

        series = np.array(historical, dtype=float)
        fit = SimpleMLEngine.linear_regression(list(enumerate(historical)))

        fitted = fit.slope * np.arange(len(series)) + fit.intercept
        std_error = math.sqrt(float(np.mean((series - fitted) ** 2)))

        if fit.slope > 0.01:
            trend = "increasing"
        elif fit.slope < -0.01:
            trend = "decreasing"
        else:
            trend = "stable"

        forecasts = []
        last_index = len(series) - 1
        for step in range(1, periods_ahead + 1):
            predicted = fit.slope * (last_index + step) + fit.intercept
            margin = confidence_level * std_error * math.sqrt(step)
            forecasts.append(
                ForecastResult(
                    predicted=max(0.0, predicted),
                    upperBound=max(0.0, predicted + margin),
                    lowerBound=max(0.0, predicted - margin),
                    confidence=max(0.1, confidence_level - step * 0.1),
                    trend=trend,
                )
            )
        return forecasts

    @staticmethod
    def predict_churn_probability(
        days_since_last_activity: float,
        total_revenue: float,
        deal_count: float,
        avg_deal_size: float,
        relationship_strength: str = "MODERATE",
    ) -> float:
        """Churn likelihood from a fixed-weight logistic model, bounded to [0.01, 0.95]."""
        linear_sum = (
            days_since_last_activity * -0.01
            + total_revenue * -0.000001
            + deal_count * -0.05
            + avg_deal_size * -0.00001
            + RELATIONSHIP_CHURN_WEIGHTS.get(relationship_strength, RELATIONSHIP_CHURN_WEIGHTS["MODERATE"])
        )
        # Clip the exponent so very large revenues cannot overflow
        probability = 1 / (1 + math.exp(-max(-500.0, min(500.0, linear_sum))))
        return max(0.01, min(0.95, probability))

    @staticmethod
    def detect_anomalies(data: list[float], threshold: float = 2) -> dict[str, list]:
        """Flag values more than ``threshold`` population standard deviations from the mean."""
        if len(data) < 3:
            return {"anomalies": [], "scores": []}

        values = np.array(data, dtype=float)
        std_dev = float(values.std())
        if std_dev == 0:
            return {"anomalies": [], "scores": [0.0] * len(data)}

        scores = np.abs(values - values.mean()) / std_dev
        anomalies = [int(index) for index in np.flatnonzero(scores > threshold)]
        return {"anomalies": anomalies, "scores": scores.tolist()}

    @staticmethod
    def correlation_coefficient(x: list[float], y: list[float]) -> float:
        """Pearson correlation; 0 for mismatched, short or constant series."""
        if len(x) != len(y) or len(x) < 2:
            return 0.0

        xs = np.array(x, dtype=float)
        ys = np.array(y, dtype=float)
        n = len(xs)

        numerator = n * np.sum(xs * ys) - np.sum(xs) * np.sum(ys)
        denominator = math.sqrt(
            max(0.0, float((n * np.sum(xs * xs) - np.sum(xs) ** 2) * (n * np.sum(ys * ys) - np.sum(ys) ** 2)))
        )
        return 0.0 if denominator == 0 else float(numerator / denominator)

    @staticmethod
    def generate_insights(data: dict) -> list[str]:
        """Plain-language observations about revenue, pipeline and conversion."""
        insights = []

        by_month = (data.get("revenue") or {}).get("byMonth") or []
        if len(by_month) > 1:
            revenues = [item.get("revenue") or 0 for item in by_month]
            recent = revenues[-3:]
            previous = revenues[-6:-3]
            if previous:
                recent_avg = sum(recent) / len(recent)
                previous_avg = sum(previous) / len(previous)
                growth = (recent_avg - previous_avg) / max(previous_avg, 1) * 100
                if abs(growth) > 10:
                    direction = "increased" if growth > 0 else "decreased"
                    insights.append(f"Revenue {direction} by {abs(growth):.1f}% in recent months")

        pipeline = data.get("pipeline") or []
        concentrated = sum(1 for stage in pipeline if stage.get("count", 0) > 5)
        if concentrated > 0:
            insights.append(f"{concentrated} pipeline stages have significant deal concentration")

        conversion_rate = data.get("conversionRate") or 0
        if conversion_rate > 25:
            insights.append("Conversion rate is above industry average - excellent performance!")
        elif 0 < conversion_rate < 10:
            insights.append("Conversion rate needs improvement - focus on qualification process")

        return insights or ["Analyzing your data patterns..."]
