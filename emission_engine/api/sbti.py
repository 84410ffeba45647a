"""
SBTi target trajectories and target storage
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from emission_engine.api.errors import InvalidInput, RecordNotFound
from emission_engine.api.notifications import SBTI_UPSERT, NotificationSink
from emission_engine.api.store import DocumentStore
from emission_engine.models.emission_data import (
    CoverageInput,
    FlagInput,
    SbtiTargetRequest,
    TargetMethod,
    TargetType,
    TrajectoryPreviewRequest,
)

logger = logging.getLogger(__name__)

NEAR_TERM_S3_THRESHOLD = 67
NET_ZERO_S3_THRESHOLD = 90
FLAG_SHARE_THRESHOLD = 20
FLAG_S1_COVERAGE = 95
FLAG_S3_COVERAGE = 67


def _clamp_pct(value: float) -> float:
    return max(0.0, min(100.0, value))


def _points(base_emission: float, base_year: int, target_year: int, annual_rate: float) -> List[Dict[str, Any]]:
    points = []
    for year in range(base_year, target_year + 1):
        reduction = _clamp_pct(annual_rate * (year - base_year))
        emission = max(0.0, base_emission * (1 - reduction / 100))
        points.append({
            'year': year,
            'target_emission_tco2e': round(emission, 6),
            'cumulative_reduction_percent': round(reduction, 4),
        })
    return points


def build_absolute_trajectory(
    base_emission: float,
    base_year: int,
    target_year: int,
    minimum_reduction_percent: float,
) -> Dict[str, Any]:
    """
    Linear absolute-contraction trajectory

    Args:
        base_emission: Base year emissions in tCO2e
        base_year: First trajectory year (0% reduction)
        target_year: Last trajectory year
        minimum_reduction_percent: Reduction reached at the target year

    Returns:
        ``{annual_rate_percent, points}``
    """
    span = max(1, target_year - base_year)
    annual_rate = minimum_reduction_percent / span
    return {
        'annual_rate_percent': annual_rate,
        'points': _points(base_emission, base_year, target_year, annual_rate),
    }


def build_sda_trajectory(
    base_emission: float,
    base_activity: float,
    target_intensity: float,
    activity_target: float,
    base_year: int,
    target_year: int,
) -> Dict[str, Any]:
    """Sectoral Decarbonization Approach trajectory and its derived figures"""
    base_intensity = base_emission / base_activity if base_activity > 0 else 0.0
    intensity_reduction = (1 - target_intensity / base_intensity) * 100 if base_intensity > 0 else 0.0

    absolute_target = (target_intensity or 0.0) * (activity_target or 0.0)
    absolute_reduction = (1 - absolute_target / base_emission) * 100 if base_emission > 0 else 0.0

    span = max(1, target_year - base_year)
    annual_reduction = absolute_reduction / span

    return {
        'base_intensity': base_intensity,
        'intensity_reduction_percent': round(intensity_reduction, 4),
        'absolute_target_emission_tco2e': round(absolute_target, 6),
        'absolute_reduction_percent': round(absolute_reduction, 4),
        'annual_reduction_percent': round(annual_reduction, 6),
        'points': _points(base_emission, base_year, target_year, annual_reduction),
    }


def infer_default_minimum_reduction(alignment: str, target_type: str, target_year: int) -> Optional[float]:
    if alignment != 'SBTi':
        return None
    if target_type == TargetType.NEAR_TERM.value and target_year <= 2030:
        return 42
    if target_type == TargetType.NET_ZERO.value and target_year >= 2050:
        return 90
    return None


def evaluate_coverage(coverage: CoverageInput) -> Dict[str, Any]:
    result = coverage.model_dump()
    result['meets_near_term_s3'] = coverage.scope3_coverage_percent >= NEAR_TERM_S3_THRESHOLD
    result['meets_net_zero_s3'] = coverage.scope3_coverage_percent >= NET_ZERO_S3_THRESHOLD
    return result


def evaluate_flag(flag: FlagInput) -> Dict[str, Any]:
    """Whether a FLAG target is required and, if so, whether coverage is sufficient"""
    required = flag.flag_share_percent >= FLAG_SHARE_THRESHOLD
    coverage_ok = flag.scope1_coverage_percent >= FLAG_S1_COVERAGE and flag.scope3_coverage_percent >= FLAG_S3_COVERAGE
    result = flag.model_dump()
    result['is_flag_target_required'] = required
    result['coverage_ok'] = coverage_ok if required else True
    return result


def compute_re_percent(renewable_mwh: float, total_mwh: float) -> float:
    """Renewable electricity share in percent"""
    if not total_mwh or total_mwh <= 0:
        return 0.0
    return renewable_mwh / total_mwh * 100


def compute_supplier_engagement_percent(covered_tco2e: float, total_tco2e: float) -> float:
    if not total_tco2e or total_tco2e <= 0:
        return 0.0
    return covered_tco2e / total_tco2e * 100


def _validate_kind(target_type: str, method: str) -> None:
    if target_type not in [t.value for t in TargetType]:
        raise InvalidInput('Invalid target_type')
    if method not in [m.value for m in TargetMethod]:
        raise InvalidInput('Invalid method')


def _validate_sda(base_activity, target_intensity, activity_target) -> None:
    if not (base_activity or 0) > 0 or target_intensity is None or target_intensity < 0 \
            or activity_target is None or activity_target < 0:
        raise InvalidInput('SDA requires base_activity, target_intensity, activity_target')


def build_trajectory(request: TrajectoryPreviewRequest) -> Dict[str, Any]:
    """
    Trajectory for a preview request, nothing is stored

    Raises:
        InvalidInput: unknown method, missing SDA inputs or no inferable minimum reduction
    """
    _validate_kind(request.target_type, request.method)

    if request.method == TargetMethod.ABSOLUTE.value:
        minimum = request.minimum_reduction_percent
        if minimum is None:
            minimum = infer_default_minimum_reduction(request.alignment, request.target_type, request.target_year)
        if minimum is None:
            raise InvalidInput('minimum_reduction_percent is required for absolute method (no default inferred)')
        out = build_absolute_trajectory(request.base_emission, request.base_year, request.target_year, minimum)
        return {
            'method': request.method,
            'minimum_reduction_percent': minimum,
            'annual_rate_percent': round(out['annual_rate_percent'], 6),
            'trajectory': out['points'],
        }

    _validate_sda(request.base_activity, request.target_intensity, request.activity_target)
    out = build_sda_trajectory(
        request.base_emission,
        request.base_activity,
        request.target_intensity,
        request.activity_target,
        request.base_year,
        request.target_year,
    )
    trajectory = out.pop('points')
    return {'method': request.method, **out, 'trajectory': trajectory}


class SbtiService:
    """Stores one SBTi target per client and target type"""

    def __init__(self, store: DocumentStore, sink: Optional[NotificationSink] = None):
        self.store = store
        self.sink = sink

    def upsert_target(self, client_id: str, payload: SbtiTargetRequest, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Compute a target's trajectory and store it

        The base emission is Scope 1 + Scope 2 for scope set ``S1S2`` and
        Scope 3 for ``S3``.

        Raises:
            InvalidInput: invalid target type, method or method parameters
        """
        _validate_kind(payload.target_type, payload.method)

        s1, s2, s3 = payload.base_scope1_tco2e, payload.base_scope2_tco2e, payload.base_scope3_tco2e
        if payload.scope_set == 'S3':
            base_emission = s3
            per_scope = {'Scope 3': s3}
        else:
            base_emission = s1 + s2
            per_scope = {'Scope 1': s1, 'Scope 2': s2}

        target = {
            'client_id': client_id,
            'alignment': payload.alignment,
            'target_type': payload.target_type,
            'method': payload.method,
            'base_year': payload.base_year,
            'target_year': payload.target_year,
            'scope_set': payload.scope_set,
            'base_scope1_tco2e': s1,
            'base_scope2_tco2e': s2,
            'base_scope3_tco2e': s3,
            'base_emission_tco2e': base_emission,
            'per_scope_base_tco2e': per_scope,
            'updated_by': user_id,
            'updated_at': datetime.now(timezone.utc),
        }

        if payload.method == TargetMethod.ABSOLUTE.value:
            minimum = payload.minimum_reduction_percent
            if minimum is None:
                minimum = infer_default_minimum_reduction(payload.alignment, payload.target_type, payload.target_year)
            if minimum is None:
                raise InvalidInput('minimum_reduction_percent is required for absolute method (no default inferred)')

            out = build_absolute_trajectory(base_emission, payload.base_year, payload.target_year, minimum)
            target['absolute'] = {
                'minimum_reduction_percent': minimum,
                'annual_rate_percent': (
                    payload.annual_rate_hint_percent
                    if payload.annual_rate_hint_percent is not None
                    else round(out['annual_rate_percent'], 6)
                ),
            }
            target['trajectory'] = out['points']
        else:
            _validate_sda(payload.base_activity, payload.target_intensity, payload.activity_target)
            out = build_sda_trajectory(
                base_emission,
                payload.base_activity,
                payload.target_intensity,
                payload.activity_target,
                payload.base_year,
                payload.target_year,
            )
            target['trajectory'] = out.pop('points')
            target['sda'] = {
                'base_activity': payload.base_activity,
                'target_intensity': payload.target_intensity,
                'activity_target': payload.activity_target,
                'intensity_unit': payload.intensity_unit or 'tCO2e/unit',
                **out,
            }

        if payload.coverage:
            target['coverage'] = evaluate_coverage(payload.coverage)
        if payload.flag:
            target['flag'] = evaluate_flag(payload.flag)
        if payload.tool_version:
            target['tool_version'] = payload.tool_version

        saved = self.store.upsert_target(target)
        logger.info(f"Saved {payload.target_type} SBTi target for client {client_id} ({payload.method})")
        if self.sink:
            self.sink.publish(SBTI_UPSERT, client_id, {'target_type': payload.target_type, 'id': saved.get('id')})
        return saved

    def get_trajectory(self, client_id: str, target_type: str) -> Dict[str, Any]:
        target = self.store.get_target(client_id, target_type)
        if not target:
            raise RecordNotFound('Target not found')
        return {
            'client_id': client_id,
            'target_type': target_type,
            'base_year': target['base_year'],
            'target_year': target['target_year'],
            'method': target['method'],
            'trajectory': target['trajectory'],
        }
