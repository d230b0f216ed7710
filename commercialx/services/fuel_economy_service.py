#!/usr/bin/env python3
"""
Fuel Economy Service
EPA fueleconomy.gov integration for MPG, emissions and powertrain detail
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from commercialx.models.vehicle_models import EPAVehicleData
from commercialx.utils.errors import UpstreamUnavailableError
from commercialx.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

EPA_BASE_URL = 'https://www.fueleconomy.gov/ws/rest'

EPA_FUEL_TYPES = {
    'Regular Gasoline': 'gasoline',
    'Premium Gasoline': 'gasoline',
    'Midgrade Gasoline': 'gasoline',
    'Gasoline': 'gasoline',
    'Diesel': 'diesel',
    'Electricity': 'electric',
    'Compressed Natural Gas': 'cng',
    'Compressed Natural Gas (CNG)': 'cng',
    'E85': 'flex_fuel',
    'Hybrid': 'hybrid',
}

NHTSA_FUEL_TYPES = {
    'Gasoline': 'gasoline',
    'Diesel': 'diesel',
    'Electric': 'electric',
    'Compressed Natural Gas (CNG)': 'cng',
    'Liquefied Petroleum Gas (Propane or LPG)': 'propane',
    'Hydrogen': 'hydrogen',
    'E85': 'flex_fuel',
    'Flexible Fuel Vehicle (FFV)': 'flex_fuel',
    'Hybrid': 'hybrid',
}

DRIVE_TYPES = {
    'Rear-Wheel Drive': 'RWD',
    'Rear Wheel Drive': 'RWD',
    'RWD/Rear-Wheel Drive': 'RWD',
    'Front-Wheel Drive': 'FWD',
    'Front Wheel Drive': 'FWD',
    'FWD/Front-Wheel Drive': 'FWD',
    'All-Wheel Drive': 'AWD',
    'All Wheel Drive': 'AWD',
    'AWD/All-Wheel Drive': 'AWD',
    'Four-Wheel Drive': '4WD',
    '4-Wheel Drive': '4WD',
    '4WD/4-Wheel Drive/4x4': '4WD',
    'Part-time 4-Wheel Drive': '4WD',
    '4-Wheel or All-Wheel Drive': 'AWD',
    '4x2': 'RWD',
    'RWD': 'RWD',
    'FWD': 'FWD',
    'AWD': 'AWD',
    '4WD': '4WD',
}

ELECTRIC_ATV_TYPES = {'EV', 'Plug-in Hybrid', 'Hybrid'}


def normalize_epa_fuel_type(label: Optional[str]) -> Optional[str]:
    """
    Map an EPA fuel label to the canonical fuel enumeration

    >>> normalize_epa_fuel_type('Diesel')
    'diesel'
    >>> normalize_epa_fuel_type('Unknown Label')
    'unknown label'
    """
    if not label:
        return None
    return EPA_FUEL_TYPES.get(label, label.lower())


def normalize_nhtsa_fuel_type(label: Optional[str]) -> Optional[str]:
    """Same enumeration for the VIN registry's FuelTypePrimary labels"""
    if not label:
        return None
    return NHTSA_FUEL_TYPES.get(label, label.lower())


def normalize_drive_type(label: Optional[str]) -> Optional[str]:
    if not label:
        return None
    return DRIVE_TYPES.get(label, label)


def _number(data: Dict[str, Any], key: str) -> Optional[float]:
    """Numeric field; missing, blank, unparseable and negative sentinel values are None"""
    value = data.get(key)
    if value is None or value == '':
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number < 0:
        return None
    return int(number) if number.is_integer() else number


def _text(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _first_number(data: Dict[str, Any], *keys) -> Optional[float]:
    """First positive value among keys; EPA reports 0 for not-applicable range fields"""
    for key in keys:
        value = _number(data, key)
        if value:
            return value
    return None


class FuelEconomyService:
    """Client for the fueleconomy.gov REST web service"""

    def __init__(self, base_url: str = EPA_BASE_URL, timeout: float = 10.0,
                 session: Optional[requests.Session] = None, max_attempts: int = 1,
                 initial_delay: float = 1.0, max_delay: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None):
        """GET a JSON document; an empty body is None"""
        def request():
            response = self.session.get(
                f"{self.base_url}{path}",
                params=params,
                headers={'Accept': 'application/json'},
                timeout=self.timeout
            )
            if response.status_code != 200:
                transient = response.status_code == 429 or response.status_code >= 500
                raise UpstreamUnavailableError(
                    f'EPA returned HTTP {response.status_code}', transient=transient)
            if not response.content or not response.content.strip():
                return None
            return response.json()

        return retry_with_backoff(
            request,
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
        )

    def find_vehicle_id(self, year: int, make: str, model: str) -> Optional[int]:
        """
        First EPA vehicle id listed for a year/make/model

        A year/make/model can map to several trims; the first option in
        response order is used without trim disambiguation.
        """
        try:
            data = self._get_json(
                '/vehicle/menu/options',
                params={'year': year, 'make': make, 'model': model}
            )
        except (requests.exceptions.RequestException, UpstreamUnavailableError, ValueError) as e:
            logger.error(f"EPA vehicle id lookup error for {year} {make} {model}: {e}")
            return None

        options = self._menu_items(data)
        if not options:
            logger.info(f"No EPA data found for {year} {make} {model}")
            return None

        try:
            return int(options[0].get('value'))
        except (TypeError, ValueError):
            logger.warning(f"EPA returned a non-numeric vehicle id: {options[0]!r}")
            return None

    def get_vehicle_data(self, epa_id: int) -> Optional[EPAVehicleData]:
        """Full EPA record for a vehicle id, or None when unavailable"""
        try:
            data = self._get_json(f'/vehicle/{epa_id}')
        except (requests.exceptions.RequestException, UpstreamUnavailableError, ValueError) as e:
            logger.error(f"EPA vehicle data fetch error for id {epa_id}: {e}")
            return None

        if not isinstance(data, dict) or not data:
            logger.info(f"EPA returned no record for id {epa_id}")
            return None

        return self._map_vehicle(data, epa_id)

    def get_data_for_vehicle(self, year: int, make: str, model: str) -> Optional[EPAVehicleData]:
        epa_id = self.find_vehicle_id(year, make, model)
        if epa_id is None:
            return None
        return self.get_vehicle_data(epa_id)

    @staticmethod
    def _menu_items(data) -> List[Dict[str, Any]]:
        if not isinstance(data, dict):
            return []
        items = data.get('menuItem')
        if isinstance(items, dict):
            # Single option comes back as an object rather than a list
            return [items]
        if isinstance(items, list):
            return [item for item in items if isinstance(item, dict)]
        return []

    def _map_vehicle(self, data: Dict[str, Any], epa_id: int) -> EPAVehicleData:
        fuel_type1 = _text(data, 'fuelType1')
        fuel_type2 = _text(data, 'fuelType2')
        atv_type = _text(data, 'atvType')

        is_electrified = (
            atv_type in ELECTRIC_ATV_TYPES
            or fuel_type1 == 'Electricity'
            or fuel_type2 == 'Electricity'
        )

        mpge = None
        if fuel_type1 == 'Electricity':
            mpge = _number(data, 'comb08')
        elif fuel_type2 == 'Electricity':
            mpge = _number(data, 'combA08')

        # Plug-in hybrids report the alternate-fuel cost in fuelCostA08 (0 when not applicable)
        annual_fuel_cost = _number(data, 'fuelCostA08') or _number(data, 'fuelCost08')

        record_id = _number(data, 'id')

        return EPAVehicleData(
            mpg_city=_number(data, 'city08'),
            mpg_highway=_number(data, 'highway08'),
            mpg_combined=_number(data, 'comb08'),
            mpge=mpge,
            electric_range=_first_number(data, 'range', 'rangeA') if is_electrified else None,
            battery_capacity_kwh=_number(data, 'batteryA') if is_electrified else None,
            charge_time_240v=_first_number(data, 'charge240') if is_electrified else None,
            charge_time_240v_dc_fast=None,
            annual_fuel_cost_estimate=annual_fuel_cost,
            co2_emissions=_number(data, 'co2'),
            co2_emissions_city=_number(data, 'co2TailpipeGpm'),
            co2_emissions_highway=None,
            fuel_type=_text(data, 'fuelType') or fuel_type1,
            fuel_type1=fuel_type1,
            fuel_type2=fuel_type2,
            engine_description=_text(data, 'evMotor') or _text(data, 'eng_dscr'),
            transmission_description=_text(data, 'trany'),
            drive_type=_text(data, 'drive'),
            cylinders=_number(data, 'cylinders'),
            displacement_l=_number(data, 'displ'),
            epa_id=int(record_id) if record_id is not None else epa_id,
            atv_type=atv_type,
        )
