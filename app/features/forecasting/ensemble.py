"""Confidence-weighted ensemble of the decomposition and Holt-Winters models.

Combination steps:
1. Sanity bounds: implausible or non-finite monthly predictions are replaced
   with the seasonal year-to-date run-rate and reported to the observer.
2. Linear baseline: mean of the two adjusted predictions.
3. Weights: proportional to each model's validation score within
   ``1 - min_linear_weight``, capped per model; linear takes the remainder.
4. Agreement: clip(1 - coefficient of variation, 0, 1) of the predictions.
5. Coherence: the implied average order value (GMV / services) of the
   monthly forecast must stay within 15% of the context AOV, and GMV within
   20% of services × AOV.
6. Confidence: 0.6 · weighted accuracy + 0.4 · agreement, reduced by 15% per
   replaced prediction and by 15% for an incoherent forecast.

CRITICAL: Weights always sum to 1 and respect their caps and floor.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from app.features.forecasting.schemas import (
    BusinessContext,
    ConfidenceLabel,
    EnsembleResult,
    ForecastCoherence,
    ModelForecastResult,
    ModelPrediction,
    ModelWeights,
    SanityBounds,
)
from app.features.forecasting.telemetry import ForecastObserver, default_observer

BLEND_WEIGHT = 0.6
AGREEMENT_WEIGHT = 0.4
REPLACEMENT_PENALTY = 0.85
COHERENCE_PENALTY = 0.85
AOV_TOLERANCE = 15.0
GMV_TOLERANCE = 20.0
HIGH_CONFIDENCE_SCORE = 0.8
MEDIUM_CONFIDENCE_SCORE = 0.6
LOW_AGREEMENT = 0.7
HIGH_SMAPE = 25.0

MODEL_NAMES = ("decomposition", "holt_winters")


@dataclass
class _AdjustedModel:
    """Monthly prediction and yearly path of one model after sanity checks."""

    services: float
    gmv: float
    services_path: list[float]
    gmv_path: list[float]


def classify_ensemble_confidence(score: float) -> ConfidenceLabel:
    """Map an ensemble confidence score to a label (>= 0.8 High, >= 0.6 Medium)."""
    if score >= HIGH_CONFIDENCE_SCORE:
        return "High"
    if score >= MEDIUM_CONFIDENCE_SCORE:
        return "Medium"
    return "Low"


def model_agreement(predictions: list[float]) -> float:
    """Agreement of predictions as clip(1 - std/mean, 0, 1).

    Args:
        predictions: Predictions of the ensemble members.

    Returns:
        Agreement in [0, 1]; identical positive predictions agree fully,
        a non-positive mean carries no information and scores 0.
    """
    values = np.array(predictions, dtype=np.float64)
    mean = float(np.mean(values))
    std = float(np.std(values))
    if mean <= 0:
        return 0.0
    return float(np.clip(1.0 - std / mean, 0.0, 1.0))


def check_coherence(services: float, gmv: float, expected_aov: float) -> ForecastCoherence:
    """Check that a GMV forecast agrees with services × average order value.

    Args:
        services: Services forecast.
        gmv: GMV forecast.
        expected_aov: Reference average order value.

    Returns:
        ForecastCoherence; coherent by default when there is no reference
        AOV or both forecasts are zero.
    """
    if expected_aov <= 0 or (services <= 0 and gmv <= 0):
        return ForecastCoherence(expected_aov=max(expected_aov, 0.0))

    implied = gmv / services if services > 0 else 0.0
    aov_deviation = (implied - expected_aov) / expected_aov * 100.0
    from_services = services * expected_aov
    gmv_deviation = (
        abs(gmv - from_services) / from_services * 100.0 if from_services > 0 else 100.0
    )
    return ForecastCoherence(
        is_coherent=abs(aov_deviation) <= AOV_TOLERANCE and gmv_deviation <= GMV_TOLERANCE,
        implied_aov=implied,
        expected_aov=expected_aov,
        aov_deviation=aov_deviation,
        gmv_deviation=gmv_deviation,
    )


def _variance_pct(forecast: float, baseline: float) -> float:
    if baseline == 0:
        return 0.0
    return (forecast - baseline) / baseline * 100.0


class EnsembleCombiner:
    """Combine model results into a single ensemble forecast.

    Attributes:
        max_decomposition_weight: Ceiling on the decomposition weight.
        max_holt_winters_weight: Ceiling on the Holt-Winters weight.
        min_linear_weight: Floor on the linear-baseline weight.
        bounds_lower_factor: Lower derived bound as a multiple of the
            seasonal historical average (used when the context has no bounds).
        bounds_upper_factor: Upper derived bound, same basis.
    """

    def __init__(
        self,
        max_decomposition_weight: float = 0.7,
        max_holt_winters_weight: float = 0.6,
        min_linear_weight: float = 0.1,
        bounds_lower_factor: float = 0.5,
        bounds_upper_factor: float = 2.0,
        observer: ForecastObserver | None = None,
    ) -> None:
        """Initialize the combiner.

        Raises:
            ValueError: If a weight is outside [0, 1] or the bound factors
                are inverted.
        """
        for name, value in (
            ("max_decomposition_weight", max_decomposition_weight),
            ("max_holt_winters_weight", max_holt_winters_weight),
            ("min_linear_weight", min_linear_weight),
        ):
            if not 0 <= value <= 1:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if bounds_lower_factor >= bounds_upper_factor:
            raise ValueError("bounds_lower_factor must be lower than bounds_upper_factor")

        self.max_decomposition_weight = max_decomposition_weight
        self.max_holt_winters_weight = max_holt_winters_weight
        self.min_linear_weight = min_linear_weight
        self.bounds_lower_factor = bounds_lower_factor
        self.bounds_upper_factor = bounds_upper_factor
        self._observe = observer or default_observer()

    # =========================================================================
    # Sanity bounds
    # =========================================================================

    def _bounds(self, context: BusinessContext) -> SanityBounds | None:
        """Context bounds, or bounds around the seasonal historical average."""
        if context.bounds is not None:
            return context.bounds
        services = context.historical_average_services * context.seasonal_factor
        gmv = context.historical_average_gmv * context.seasonal_factor
        if services <= 0 or gmv <= 0:
            return None
        return SanityBounds(
            min_services=self.bounds_lower_factor * services,
            max_services=self.bounds_upper_factor * services,
            min_gmv=self.bounds_lower_factor * gmv,
            max_gmv=self.bounds_upper_factor * gmv,
        )

    @staticmethod
    def _run_rate(context: BusinessContext) -> tuple[float, float]:
        """Seasonal YTD run-rate used to replace implausible predictions.

        Formula: ytd / closed_months · seasonal_factor; GMV falls back to
        services · average order value when no GMV has been recorded. Without
        closed months the open month's projection or the seasonal historical
        average is used.
        """
        factor = context.seasonal_factor
        if context.closed_months > 0 and context.ytd_services > 0:
            services = context.ytd_services / context.closed_months * factor
        elif context.current_month_projection:
            services = context.current_month_projection
        else:
            services = context.historical_average_services * factor

        if context.closed_months > 0 and context.ytd_gmv > 0:
            gmv = context.ytd_gmv / context.closed_months * factor
        elif context.average_order_value > 0:
            gmv = services * context.average_order_value
        else:
            gmv = context.historical_average_gmv * factor
        return services, gmv

    @staticmethod
    def _plausible(value: float, lower: float | None, upper: float | None) -> bool:
        if not math.isfinite(value) or value < 0:
            return False
        if lower is not None and value < lower:
            return False
        return upper is None or value <= upper

    def _adjust(
        self,
        name: str,
        result: ModelForecastResult,
        context: BusinessContext,
        bounds: SanityBounds | None,
        replaced: list[str],
    ) -> _AdjustedModel:
        """Apply sanity bounds to one model's month-1 prediction and path."""
        fallback_services, fallback_gmv = self._run_rate(context)
        remaining = context.remaining_months

        checks = (
            (
                "services",
                result.monthly_services,
                result.services.forecast,
                fallback_services,
                bounds.min_services if bounds else None,
                bounds.max_services if bounds else None,
            ),
            (
                "gmv",
                result.monthly_gmv,
                result.gmv.forecast,
                fallback_gmv,
                bounds.min_gmv if bounds else None,
                bounds.max_gmv if bounds else None,
            ),
        )

        adjusted: dict[str, tuple[float, list[float]]] = {}
        for metric, monthly, forecast, fallback, lower, upper in checks:
            value = monthly
            if not self._plausible(monthly, lower, upper):
                replaced.append(f"{name}.{metric}")
                self._observe(
                    "ensemble.prediction_replaced",
                    model=name,
                    metric=metric,
                    original=monthly,
                    replacement=fallback,
                    lower_bound=lower,
                    upper_bound=upper,
                )
                value = fallback

            base = fallback / context.seasonal_factor
            path = [value]
            for step in range(1, remaining):
                step_value = forecast[step] if step < len(forecast) else forecast[-1]
                path.append(step_value if self._plausible(step_value, lower, upper) else base)
            adjusted[metric] = (value, path)

        return _AdjustedModel(
            services=adjusted["services"][0],
            gmv=adjusted["gmv"][0],
            services_path=adjusted["services"][1],
            gmv_path=adjusted["gmv"][1],
        )

    # =========================================================================
    # Weights and confidence
    # =========================================================================

    def compute_weights(
        self, decomposition_score: float, holt_winters_score: float
    ) -> ModelWeights:
        """Split weight between the models by validation score.

        Args:
            decomposition_score: 1 / (1 + sMAPE/100 + MASE) of the decomposition model.
            holt_winters_score: Same score for Holt-Winters.

        Returns:
            ModelWeights summing to 1 with linear >= min_linear_weight.
        """
        available = 1.0 - self.min_linear_weight
        total = decomposition_score + holt_winters_score
        if not math.isfinite(total) or total <= 0:
            share_d = share_hw = 0.5
        else:
            share_d = decomposition_score / total
            share_hw = holt_winters_score / total

        w_d = min(available * share_d, self.max_decomposition_weight)
        w_hw = min(available * share_hw, self.max_holt_winters_weight)
        return ModelWeights(decomposition=w_d, holt_winters=w_hw, linear=1.0 - w_d - w_hw)

    # =========================================================================
    # Combination
    # =========================================================================

    def combine(
        self,
        decomposition: ModelForecastResult | None,
        holt_winters: ModelForecastResult | None,
        context: BusinessContext,
    ) -> EnsembleResult:
        """Combine the two model results.

        Args:
            decomposition: Decomposition model result (None when unavailable).
            holt_winters: Holt-Winters model result (None when unavailable).
            context: Business context for bounds, run-rate and actuals.

        Returns:
            EnsembleResult; ``EnsembleResult.insufficient()`` when either model
            result is missing or insufficient.
        """
        if (
            decomposition is None
            or holt_winters is None
            or decomposition.insufficient_data
            or holt_winters.insufficient_data
        ):
            self._observe(
                "ensemble.insufficient_data",
                decomposition_available=decomposition is not None
                and not decomposition.insufficient_data,
                holt_winters_available=holt_winters is not None
                and not holt_winters.insufficient_data,
            )
            return EnsembleResult.insufficient()

        bounds = self._bounds(context)
        replaced: list[str] = []
        adj_d = self._adjust("decomposition", decomposition, context, bounds, replaced)
        adj_hw = self._adjust("holt_winters", holt_winters, context, bounds, replaced)

        linear_services = (adj_d.services + adj_hw.services) / 2.0
        linear_gmv = (adj_d.gmv + adj_hw.gmv) / 2.0

        val_d = decomposition.services.validation
        val_hw = holt_winters.services.validation
        weights = self.compute_weights(val_d.score, val_hw.score)

        def weighted(d: float, hw: float) -> float:
            linear = (d + hw) / 2.0
            return weights.decomposition * d + weights.holt_winters * hw + weights.linear * linear

        monthly_services = weighted(adj_d.services, adj_hw.services)
        monthly_gmv = weighted(adj_d.gmv, adj_hw.gmv)
        annual_services = context.ytd_services + sum(
            weighted(d, hw) for d, hw in zip(adj_d.services_path, adj_hw.services_path, strict=True)
        )
        annual_gmv = context.ytd_gmv + sum(
            weighted(d, hw) for d, hw in zip(adj_d.gmv_path, adj_hw.gmv_path, strict=True)
        )

        agreement = model_agreement([adj_d.services, adj_hw.services, linear_services])
        accuracy_linear = (val_d.accuracy_score + val_hw.accuracy_score) / 2.0
        blend = (
            weights.decomposition * val_d.accuracy_score
            + weights.holt_winters * val_hw.accuracy_score
            + weights.linear * accuracy_linear
        )
        coherence = check_coherence(monthly_services, monthly_gmv, context.average_order_value)
        score = (BLEND_WEIGHT * blend + AGREEMENT_WEIGHT * agreement) * (
            REPLACEMENT_PENALTY ** len(replaced)
        )
        if not coherence.is_coherent:
            score *= COHERENCE_PENALTY
        score = float(np.clip(score, 0.0, 1.0))
        confidence = classify_ensemble_confidence(score)

        annual_services_actual = context.ytd_services + context.current_month_services
        annual_gmv_actual = context.ytd_gmv + context.current_month_gmv

        actions = self._recommend(
            max(val_d.smape, val_hw.smape),
            max(val_d.mase, val_hw.mase),
            agreement,
            score,
            replaced,
            coherence,
        )

        self._observe(
            "ensemble.combined",
            confidence=confidence,
            confidence_score=score,
            model_agreement=agreement,
            weight_decomposition=weights.decomposition,
            weight_holt_winters=weights.holt_winters,
            weight_linear=weights.linear,
            replaced=len(replaced),
            coherent=coherence.is_coherent,
        )

        return EnsembleResult(
            monthly_services_forecast=monthly_services,
            monthly_gmv_forecast=monthly_gmv,
            annual_services_forecast=annual_services,
            annual_gmv_forecast=annual_gmv,
            monthly_services_actual=context.current_month_services,
            monthly_gmv_actual=context.current_month_gmv,
            annual_services_actual=annual_services_actual,
            annual_gmv_actual=annual_gmv_actual,
            monthly_services_variance=_variance_pct(
                monthly_services, context.historical_average_services
            ),
            monthly_gmv_variance=_variance_pct(monthly_gmv, context.historical_average_gmv),
            annual_services_variance=_variance_pct(
                annual_services, 12 * context.historical_average_services
            ),
            annual_gmv_variance=_variance_pct(annual_gmv, 12 * context.historical_average_gmv),
            confidence=confidence,
            confidence_score=score,
            model_agreement=agreement,
            model_weights=weights,
            individual_models={
                "decomposition": ModelPrediction(services=adj_d.services, gmv=adj_d.gmv),
                "holt_winters": ModelPrediction(services=adj_hw.services, gmv=adj_hw.gmv),
                "linear": ModelPrediction(services=linear_services, gmv=linear_gmv),
            },
            replaced_predictions=replaced,
            coherence=coherence,
            recommended_actions=actions,
        )

    @staticmethod
    def _recommend(
        smape: float,
        mase: float,
        agreement: float,
        score: float,
        replaced: list[str],
        coherence: ForecastCoherence | None = None,
    ) -> list[str]:
        """Deterministic recommendation rules."""
        actions: list[str] = []
        if smape > HIGH_SMAPE:
            actions.append(
                f"Retrain the models: validation error is high (sMAPE {smape:.1f}%)"
            )
        if agreement < LOW_AGREEMENT:
            actions.append("Models disagree; review the input data for anomalies")
        if replaced:
            actions.append(
                "Implausible predictions were replaced with the year-to-date run-rate: "
                + ", ".join(replaced)
            )
        if coherence is not None and not coherence.is_coherent:
            actions.append(
                "Services and GMV forecasts imply an average order value of "
                f"{coherence.implied_aov:.0f} against {coherence.expected_aov:.0f} expected; "
                "align services and GMV forecasts"
            )
        if mase > 1.0:
            actions.append(
                f"At least one model does not beat the naive forecast (MASE {mase:.2f})"
            )
        if score < MEDIUM_CONFIDENCE_SCORE:
            actions.append("Gather more history to improve forecast confidence")
        if not actions:
            actions.append("Ensemble forecast is robust; no action required")
        return actions
