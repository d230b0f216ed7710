#!/usr/bin/env python3
"""
Compliance Calculator Service
GVWR and GAWR checks for a vehicle configuration with optional upfit equipment
"""

import logging
from typing import Iterable, Optional

from commercialx.models.vehicle_models import ComplianceResult, serialize_weight
from commercialx.utils.errors import ConfigNotFoundError, InvalidInputError

logger = logging.getLogger(__name__)

DEFAULT_FRONT_AXLE_RATIO = 0.4
DEFAULT_LOW_PAYLOAD_THRESHOLD = 500
# Absorbs float noise from the ratio multiplication, far below any real overload
WEIGHT_TOLERANCE_LBS = 1e-6

GVWR_RECOMMENDATION = 'Consider reducing payload or selecting a vehicle with higher GVWR'
PAYLOAD_EXCEEDED_RECOMMENDATION = 'Payload capacity exceeded'
LOW_PAYLOAD_RECOMMENDATION = 'Low payload capacity remaining'


def _weight(value) -> float:
    """Missing weights count as zero so the arithmetic always yields a number"""
    if value is None or value == '':
        return 0
    return float(value)


def _fmt(value) -> str:
    return str(serialize_weight(value))


def _validate_option_ids(name: str, options: Optional[Iterable]) -> list:
    if options is None:
        return []
    if isinstance(options, (str, bytes)) or not hasattr(options, '__iter__'):
        raise InvalidInputError(f'{name} must be a list of ids')
    ids = list(options)
    for option_id in ids:
        if isinstance(option_id, bool) or not isinstance(option_id, int):
            raise InvalidInputError(f'{name} must be a list of ids')
    return ids


class ComplianceCalculator:
    """
    Weight compliance for a vehicle configuration

    Axle loads are estimated with a front/rear split. The split comes from
    the vehicle configuration's ``front_axle_ratio`` column when present,
    otherwise from ``front_axle_ratio`` given here.
    """

    def __init__(self, repository, front_axle_ratio: float = DEFAULT_FRONT_AXLE_RATIO,
                 low_payload_threshold: float = DEFAULT_LOW_PAYLOAD_THRESHOLD):
        if not 0 <= front_axle_ratio <= 1:
            raise ValueError('front_axle_ratio must be between 0 and 1')
        self.repository = repository
        self.front_axle_ratio = front_axle_ratio
        self.low_payload_threshold = low_payload_threshold

    def calculate_compliance(self, vehicle_config_id: int,
                             equipment_config_id: Optional[int] = None,
                             selected_vehicle_options: Optional[Iterable[int]] = None,
                             selected_equipment_options: Optional[Iterable[int]] = None) -> ComplianceResult:
        """
        Args:
            vehicle_config_id (int): required vehicle configuration
            equipment_config_id (int): optional equipment configuration
            selected_vehicle_options: option ids; validated, not yet weighted
            selected_equipment_options: option ids; validated, not yet weighted

        Raises:
            ConfigNotFoundError: vehicle configuration does not exist
        """
        _validate_option_ids('selectedVehicleOptions', selected_vehicle_options)
        _validate_option_ids('selectedEquipmentOptions', selected_equipment_options)

        vehicle_config = self.repository.get_vehicle_config(vehicle_config_id)
        if not vehicle_config:
            raise ConfigNotFoundError('Vehicle config not found')

        equipment_weight = 0
        if equipment_config_id is not None:
            equipment_config = self.repository.get_equipment_config(equipment_config_id)
            if equipment_config:
                equipment_weight = _weight(equipment_config.get('equipment_weight'))
            else:
                logger.warning(
                    f"Equipment config {equipment_config_id} not found, treating equipment weight as 0"
                )

        curb_weight = _weight(vehicle_config.get('curb_weight'))
        gvwr = _weight(vehicle_config.get('gvwr'))
        gawr_front = _weight(vehicle_config.get('gawr_front'))
        gawr_rear = _weight(vehicle_config.get('gawr_rear'))

        ratio = self._axle_ratio(vehicle_config)
        total_combined_weight = curb_weight + equipment_weight
        front_axle_weight = total_combined_weight * ratio
        rear_axle_weight = total_combined_weight * (1 - ratio)
        payload_remaining = gvwr - total_combined_weight

        gvwr_compliant = total_combined_weight <= gvwr
        gawr_front_compliant = front_axle_weight <= gawr_front + WEIGHT_TOLERANCE_LBS
        gawr_rear_compliant = rear_axle_weight <= gawr_rear + WEIGHT_TOLERANCE_LBS

        warnings = []
        recommendations = []

        if not gvwr_compliant:
            warnings.append(
                f"Total weight ({_fmt(total_combined_weight)} lbs) exceeds GVWR ({_fmt(gvwr)} lbs) "
                f"by {_fmt(total_combined_weight - gvwr)} lbs"
            )
            recommendations.append(GVWR_RECOMMENDATION)

        if not gawr_front_compliant:
            warnings.append(
                f"Front axle weight ({_fmt(front_axle_weight)} lbs) exceeds GAWR front "
                f"({_fmt(gawr_front)} lbs) by {_fmt(front_axle_weight - gawr_front)} lbs"
            )

        if not gawr_rear_compliant:
            warnings.append(
                f"Rear axle weight ({_fmt(rear_axle_weight)} lbs) exceeds GAWR rear "
                f"({_fmt(gawr_rear)} lbs) by {_fmt(rear_axle_weight - gawr_rear)} lbs"
            )

        if payload_remaining < 0:
            recommendations.append(PAYLOAD_EXCEEDED_RECOMMENDATION)
        elif payload_remaining < self.low_payload_threshold:
            recommendations.append(LOW_PAYLOAD_RECOMMENDATION)

        return ComplianceResult(
            gvwr_compliant=gvwr_compliant,
            gawr_front_compliant=gawr_front_compliant,
            gawr_rear_compliant=gawr_rear_compliant,
            total_combined_weight=total_combined_weight,
            front_axle_weight=front_axle_weight,
            rear_axle_weight=rear_axle_weight,
            payload_remaining=payload_remaining,
            warnings=warnings,
            recommendations=recommendations,
        )

    def _axle_ratio(self, vehicle_config) -> float:
        ratio = vehicle_config.get('front_axle_ratio')
        if ratio is None or ratio == '':
            return self.front_axle_ratio
        ratio = float(ratio)
        if not 0 <= ratio <= 1:
            logger.warning(f"Ignoring out-of-range front_axle_ratio {ratio} on vehicle config")
            return self.front_axle_ratio
        return ratio
