"""
VIN Decoder Endpoints
VIN decoding with NHTSA and EPA enrichment
"""

import logging

from flask import Blueprint, request

from commercialx.utils.errors import CommercialXError, InvalidInputError
from commercialx.utils.response_helpers import exception_response, success_response
from commercialx.utils.service_availability import get_services

logger = logging.getLogger(__name__)

vin_bp = Blueprint('vin', __name__)


def _vin_from_request():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not isinstance(data.get('vin'), str):
        raise InvalidInputError('Invalid VIN')
    return data['vin']


@vin_bp.route('/decode', methods=['POST'])
def decode_vin():
    """Decode a VIN and enrich it with fuel economy data"""
    try:
        vin = _vin_from_request()
        result = get_services().enrichment.enrich(vin)
        return success_response(result.to_dict())

    except CommercialXError as e:
        if e.status_code >= 500:
            logger.error(f"VIN decode error: {e.message}")
        return exception_response(e)


@vin_bp.route('/validate', methods=['POST'])
def validate_vin():
    """Validate VIN format and check digit without calling the registry"""
    try:
        vin = _vin_from_request()
        return success_response(get_services().vin_decoder.validate_vin(vin))

    except CommercialXError as e:
        return exception_response(e)
