"""Revenue, conversion and pipeline velocity forecasting."""

import calendar
import math
from datetime import date, datetime

from salesdesk.models.schemas import CamelModel
from salesdesk.services.statistical_ml import SimpleMLEngine
from salesdesk.services.weighted_pipeline import DealStage

FORECAST_PERIODS = 12
SMOOTHING_ALPHA = 0.3
BASELINE_VELOCITY = 6.5

CONVERSION_STAGE_PROBABILITIES = {
    DealStage.PROSPECTING: 0.05,
    DealStage.QUALIFICATION: 0.25,
    DealStage.PROPOSAL: 0.60,
    DealStage.NEGOTIATION: 0.85,
    DealStage.CLOSED_WON: 1.00,
    DealStage.CLOSED_LOST: 0.00,
}

CLOSURE_RATES = {
    DealStage.PROSPECTING: 0.1,
    DealStage.QUALIFICATION: 0.3,
    DealStage.PROPOSAL: 0.6,
    DealStage.NEGOTIATION: 0.8,
    DealStage.CLOSED_WON: 1.0,
    DealStage.CLOSED_LOST: 0.0,
}

RELATIONSHIP_MULTIPLIERS = {"EXCELLENT": 1.2, "STRONG": 1.1, "WEAK": 0.8}


class ForecastData(CamelModel):
    """Forecast for a single future period (ISO date of the period)."""

    period: str
    predicted: float
    upper_bound: float
    lower_bound: float
    confidence: float
    actual: float | None = None


def _shift_months(moment: date, months: int) -> date:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _parse_period(period: str) -> date:
    return datetime.fromisoformat(period[:10]).date()


def _sample_variance(values: list[float]) -> float:
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    return sum((value - mean) ** 2 for value in values) / (len(values) - 1)


class PredictiveAnalyticsService:
    """Forecasts built from historical revenue and deal closures."""

    @staticmethod
    def forecast_revenue(
        historical_data: list[dict],
        periods: int = FORECAST_PERIODS,
        today: date | None = None,
    ) -> list[ForecastData]:
        """Forecast monthly revenue with exponential smoothing, trend and seasonality.

        Args:
            historical_data: Items with ``period`` (ISO date) and ``revenue``, oldest first
            periods: Number of months to forecast
            today: Anchor for the baseline forecast

        Returns:
            One forecast per month. Fewer than three observations produce the
            baseline growth forecast.
        """
        if len(historical_data) < 3:
            return PredictiveAnalyticsService.generate_baseline_forecast(periods, today)

        revenues = [float(item.get("revenue") or 0) for item in historical_data]
        smoothed = SimpleMLEngine.exponential_moving_average(revenues, SMOOTHING_ALPHA)
        trend = PredictiveAnalyticsService.calculate_trend(revenues)
        seasonality = PredictiveAnalyticsService.calculate_seasonality(revenues)

        last_value = smoothed[-1]
        last_period = _parse_period(historical_data[-1]["period"])
        std_dev = math.sqrt(_sample_variance(revenues))

        forecasts = []
        for step in range(1, periods + 1):
            seasonal_adjustment = seasonality[step % len(seasonality)] or 1
            predicted = (last_value + trend * step) * seasonal_adjustment
            margin = 1.96 * std_dev * math.sqrt(step)
            confidence = max(0.1, 1 - margin / predicted) if predicted > 0 else 0.1

            forecasts.append(
                ForecastData(
                    period=_shift_months(last_period, step).isoformat(),
                    predicted=max(0.0, predicted),
                    upper_bound=max(0.0, predicted + margin),
                    lower_bound=max(0.0, predicted - margin),
                    confidence=confidence,
                )
            )
        return forecasts

    @staticmethod
    def predict_conversion_probability(
        deal_value: float,
        days_in_stage: float,
        stage: DealStage | str,
        competitor_count: int,
        relationship_strength: str,
    ) -> float:
        """Probability that a deal converts, bounded to [0.01, 0.95]."""
        try:
            stage = DealStage(stage)
        except ValueError:
            pass
        probability = CONVERSION_STAGE_PROBABILITIES.get(stage)
        if not probability:
            probability = 0.1

        if deal_value > 1_000_000:
            probability *= 0.9
        elif deal_value > 500_000:
            probability *= 0.95
        elif deal_value < 50_000:
            probability *= 1.1

        probability *= max(0.7, 1 - days_in_stage / 180)

        if competitor_count > 3:
            probability *= 0.7
        elif competitor_count > 1:
            probability *= 0.85

        probability *= RELATIONSHIP_MULTIPLIERS.get(relationship_strength, 1)

        return min(0.95, max(0.01, probability))

    @staticmethod
    def forecast_pipeline_velocity(
        current_deals: list[dict],
        historical_velocity: list[dict],
        today: date | None = None,
    ) -> list[ForecastData]:
        """Forecast monthly deal closures from the open pipeline and past velocity.

        Args:
            current_deals: Items with ``stage``, ``value`` and ``daysInStage``
            historical_velocity: Items with ``period`` and ``dealsClosed``
            today: Anchor for forecast periods
        """
        today = today or date.today()
        if len(historical_velocity) < 3:
            return PredictiveAnalyticsService.generate_baseline_velocity_forecast(today)

        avg_velocity = sum(item.get("dealsClosed") or 0 for item in historical_velocity) / len(
            historical_velocity
        )

        by_stage: dict[str, int] = {}
        for deal in current_deals:
            by_stage[deal["stage"]] = by_stage.get(deal["stage"], 0) + 1

        forecasts = []
        for month in range(1, FORECAST_PERIODS + 1):
            predicted = sum(
                count * CLOSURE_RATES.get(stage, 0.1) / month for stage, count in by_stage.items()
            )
            predicted += avg_velocity * 0.3

            forecasts.append(
                ForecastData(
                    period=_shift_months(today, month).isoformat(),
                    predicted=predicted,
                    upper_bound=predicted * 1.3,
                    lower_bound=predicted * 0.7,
                    confidence=0.75 - month * 0.05,
                )
            )
        return forecasts

    @staticmethod
    def calculate_trend(values: list[float]) -> float:
        """Least squares slope of the series against its index."""
        if len(values) < 2:
            return 0.0
        return SimpleMLEngine.linear_regression(list(enumerate(values))).slope

    @staticmethod
    def calculate_seasonality(values: list[float]) -> list[float]:
        """Seasonal factors from the last twelve months, or ``[1]`` with less history."""
        if len(values) < 12:
            return [1.0]

        monthly = values[-12:]
        average = sum(monthly) / len(monthly)
        if average == 0:
            return [1.0]
        return [value / average for value in monthly]

    @staticmethod
    def generate_baseline_forecast(periods: int, today: date | None = None) -> list[ForecastData]:
        today = today or date.today()
        return [
            ForecastData(
                period=_shift_months(today, step).isoformat(),
                predicted=100000 + step * 5000,
                upper_bound=150000 + step * 10000,
                lower_bound=50000 + step * 2500,
                confidence=max(0.2, 0.8 - step * 0.05),
            )
            for step in range(1, periods + 1)
        ]

    @staticmethod
    def generate_baseline_velocity_forecast(today: date | None = None) -> list[ForecastData]:
        today = today or date.today()
        return [
            ForecastData(
                period=_shift_months(today, step).isoformat(),
                predicted=BASELINE_VELOCITY,
                upper_bound=12,
                lower_bound=2,
                confidence=max(0.3, 0.9 - step * 0.06),
            )
            for step in range(1, FORECAST_PERIODS + 1)
        ]
