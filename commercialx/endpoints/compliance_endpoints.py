"""
Compliance Endpoints
GVWR/GAWR compliance checks for vehicle and equipment configurations
"""

import logging

from flask import Blueprint, jsonify, request

from commercialx.utils.errors import CommercialXError, InvalidInputError
from commercialx.utils.service_availability import get_services

logger = logging.getLogger(__name__)

compliance_bp = Blueprint('compliance', __name__)


def _optional_id(data, key):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f'{key} must be an integer')
    return value


@compliance_bp.route('/calculate', methods=['POST'])
def calculate_compliance():
    """Check a vehicle configuration plus optional equipment against its weight ratings"""
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise InvalidInputError('Request body must be a JSON object')

        vehicle_config_id = _optional_id(data, 'vehicleConfigId')
        if vehicle_config_id is None:
            raise InvalidInputError('vehicleConfigId is required')

        result = get_services().compliance.calculate_compliance(
            vehicle_config_id,
            equipment_config_id=_optional_id(data, 'equipmentConfigId'),
            selected_vehicle_options=data.get('selectedVehicleOptions'),
            selected_equipment_options=data.get('selectedEquipmentOptions'),
        )
        return jsonify(result.to_dict()), 200

    except CommercialXError as e:
        if e.status_code >= 500:
            logger.error(f"Compliance calculation error: {e.message}")
        return jsonify({'error': e.message}), e.status_code

    except Exception as e:
        logger.exception(f"Unexpected compliance calculation error: {e}")
        return jsonify({'error': 'An unexpected error occurred'}), 500
