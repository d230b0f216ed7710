#!/usr/bin/env python3
"""
VIN Decoder Service
VIN validation and decoding against the NHTSA vPIC registry
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from commercialx.models.vehicle_models import VinDecodeResult
from commercialx.utils.errors import (
    InvalidInputError,
    NotFoundError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

VIN_LENGTH = 17
NHTSA_BASE_URL = 'https://vpic.nhtsa.dot.gov/api/vehicles'
PLACEHOLDER_VALUES = {'', 'Not Applicable', 'N/A', 'null'}

# VinDecodeResult attribute -> registry field names, first parseable value wins
TEXT_FIELDS = {
    'make': ('Make',),
    'model': ('Model',),
    'series': ('Series',),
    'trim': ('Trim',),
    'body_style': ('BodyClass',),
    'vehicle_type': ('VehicleType',),
    'engine': ('EngineModel',),
    'transmission': ('TransmissionStyle',),
    'drive_type': ('DriveType',),
    'fuel_type': ('FuelTypePrimary',),
    'manufacturer': ('Manufacturer', 'ManufacturerName'),
    'cab_type': ('CabType',),
    'electrification_level': ('ElectrificationLevel',),
    'charger_level': ('ChargerLevel',),
    'axle_configuration': ('AxleConfiguration',),
    'plant_city': ('PlantCity',),
    'plant_state': ('PlantState',),
    'plant_country': ('PlantCountry',),
    'error_text': ('ErrorText',),
}

INT_FIELDS = {
    'year': ('ModelYear',),
    'gvwr': ('GVWR',),
    'curb_weight': ('CurbWeightLB', 'CurbWeight'),
    'engine_cylinders': ('EngineCylinders',),
    'gawr_front': ('GAWR_Front', 'GAWRFront'),
    'gawr_rear': ('GAWR_Rear', 'GAWRRear'),
    'seating_capacity': ('Seats', 'SeatingCapacity'),
    'towing_capacity': ('TowingCapacity',),
    'engine_hp': ('EngineHP',),
    'axles': ('Axles',),
}

FLOAT_FIELDS = {
    'displacement_l': ('DisplacementL',),
    'wheelbase': ('WheelBaseShort', 'WheelBase', 'WheelBaseType'),
    'overall_length': ('OverallLength',),
    'overall_width': ('OverallWidth',),
    'overall_height': ('OverallHeight',),
    'fuel_tank_capacity_gal': ('FuelTankCapacity',),
    'engine_kw': ('EngineKW',),
    'battery_kwh': ('BatteryKWh', 'BatteryEnergy'),
    'battery_voltage': ('BatteryV', 'BatteryVoltage'),
}


def normalize_vin(vin) -> str:
    """Upper-case a VIN; raise InvalidInputError unless it is exactly 17 characters as given"""
    if not isinstance(vin, str) or len(vin) != VIN_LENGTH:
        raise InvalidInputError('Invalid VIN')
    return vin.upper()


def clean_value(value) -> Optional[str]:
    """Registry placeholders become None"""
    if value is None:
        return None
    value = re.sub(r'\s+', ' ', str(value)).strip()
    if value in PLACEHOLDER_VALUES:
        return None
    return value


def parse_int(value) -> Optional[int]:
    """Leading integer of a registry value ("8,500" -> 8500, "8500 lb" -> 8500); None otherwise"""
    value = clean_value(value)
    if value is None:
        return None
    match = re.match(r'^(\d+)', value.replace(',', ''))
    if not match:
        return None
    return int(match.group(1))


def parse_float(value) -> Optional[float]:
    """Leading decimal number of a registry value ("141.0 in" -> 141.0); None otherwise"""
    value = clean_value(value)
    if value is None:
        return None
    match = re.match(r'^(\d+(?:\.\d+)?)', value.replace(',', ''))
    if not match:
        return None
    return float(match.group(1))


def first_parsed(result, keys, parser):
    """First registry field among ``keys`` that parses to a value"""
    for key in keys:
        value = parser(result.get(key))
        if value is not None:
            return value
    return None


class VINDecoderService:
    """Client for the NHTSA vPIC VIN decode endpoint"""

    def __init__(self, base_url: str = NHTSA_BASE_URL, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.vin_pattern = re.compile(r'^[A-HJ-NPR-Z0-9]{17}$')

    def validate_vin(self, vin: str) -> Dict[str, Any]:
        """
        Validate VIN format and check digit

        Length and character set are hard requirements. A check digit
        mismatch is reported as a warning only, since many commercial and
        non-North-American VINs do not follow the check digit scheme.

        Args:
            vin (str): VIN to validate

        Returns:
            dict: Validation result

        Raises:
            InvalidInputError: VIN is not 17 characters or contains I, O or Q
        """
        vin = normalize_vin(vin)

        if not self.vin_pattern.match(vin):
            raise InvalidInputError('VIN contains invalid characters (I, O, Q not allowed)')

        warnings = []
        check_digit_valid = self._validate_check_digit(vin)
        if not check_digit_valid:
            warnings.append('VIN check digit does not match')

        return {
            'valid': True,
            'vin': vin,
            'check_digit_valid': check_digit_valid,
            'warnings': warnings,
            'wmi': vin[:3],
            'vds': vin[3:9],
            'vis': vin[9:],
        }

    def decode_vin(self, vin: str) -> VinDecodeResult:
        """
        Decode a VIN through the registry

        Raises:
            InvalidInputError: VIN is not 17 characters (no network call is made)
            NotFoundError: registry returned no usable record
            UpstreamUnavailableError: transport or protocol failure
        """
        vin = normalize_vin(vin)
        result = self._fetch_decode(vin)

        decoded = self._map_result(vin, result)
        if not decoded.is_complete:
            logger.info(f"Registry record for {vin} is missing year, make or model")
            raise NotFoundError('No data found for VIN')

        logger.info(
            f"Decoded VIN {vin}: {decoded.year} {decoded.make} {decoded.model} "
            f"(confidence {decoded.confidence.value})"
        )
        return decoded

    def _fetch_decode(self, vin: str) -> Dict[str, Any]:
        url = f"{self.base_url}/DecodeVinValues/{vin}"

        try:
            response = self.session.get(
                url,
                params={'format': 'json'},
                headers={'Accept': 'application/json'},
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            logger.warning(f"NHTSA API timeout for {vin}")
            raise UpstreamUnavailableError('VIN registry timed out', transient=True) from e
        except requests.exceptions.ConnectionError as e:
            logger.warning(f"Cannot connect to NHTSA API: {e}")
            raise UpstreamUnavailableError('VIN registry unreachable', transient=True) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"NHTSA API request error: {e}")
            raise UpstreamUnavailableError(f'VIN registry request failed: {e}') from e

        if response.status_code != 200:
            transient = response.status_code == 429 or response.status_code >= 500
            logger.warning(f"NHTSA API HTTP error: {response.status_code}")
            raise UpstreamUnavailableError(
                f'VIN registry returned HTTP {response.status_code}', transient=transient)

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Invalid JSON from NHTSA: {e}")
            raise UpstreamUnavailableError('VIN registry returned invalid JSON') from e

        results = (data or {}).get('Results') or []
        if not results:
            raise NotFoundError('No data found for VIN')

        return results[0]

    def _map_result(self, vin: str, result: Dict[str, Any]) -> VinDecodeResult:
        fields = {}
        for target, keys in TEXT_FIELDS.items():
            fields[target] = first_parsed(result, keys, clean_value)
        for target, keys in INT_FIELDS.items():
            fields[target] = first_parsed(result, keys, parse_int)
        for target, keys in FLOAT_FIELDS.items():
            fields[target] = first_parsed(result, keys, parse_float)

        raw_gvwr = clean_value(result.get('GVWR'))
        if raw_gvwr is not None and fields['gvwr'] is None:
            # Weight class label such as "Class 2E: 6,001 - 7,000 lb"
            fields['gvwr_class'] = raw_gvwr

        error_code = result.get('ErrorCode')
        fields['error_code'] = str(error_code).strip() if error_code is not None else None

        return VinDecodeResult(
            vin=vin,
            decoded_at=datetime.now(timezone.utc),
            **fields
        )

    def _validate_check_digit(self, vin: str) -> bool:
        """Validate the VIN check digit (9th position)"""
        weights = [8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2]
        transliteration = {
            'A': 1, 'B': 2, 'C': 3, 'D': 4, 'E': 5, 'F': 6, 'G': 7, 'H': 8,
            'J': 1, 'K': 2, 'L': 3, 'M': 4, 'N': 5, 'P': 7, 'R': 9,
            'S': 2, 'T': 3, 'U': 4, 'V': 5, 'W': 6, 'X': 7, 'Y': 8, 'Z': 9
        }

        sum_value = 0
        for i, char in enumerate(vin):
            if char.isdigit():
                value = int(char)
            else:
                value = transliteration.get(char, 0)
            sum_value += value * weights[i]

        remainder = sum_value % 11
        check_digit = 'X' if remainder == 10 else str(remainder)

        return vin[8] == check_digit
