"""
Vehicle Data Models
Decoded registry records, fuel economy data, enrichment results and compliance results
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# Canonical provenance order for serialized data sources
DATA_SOURCE_ORDER = ('nhtsa', 'epa')


class Confidence(Enum):
    """Confidence label for a registry decode."""
    HIGH = "high"
    LOW = "low"

    @classmethod
    def from_error_code(cls, error_code: Optional[str]) -> 'Confidence':
        """
        Error code "0" (or nothing at all) means a clean decode.

        The registry sometimes reports several codes joined with commas
        ("0,1"); anything beyond a lone zero is LOW.
        """
        if error_code is None:
            return cls.HIGH
        code = str(error_code).strip()
        if code in ('', '0'):
            return cls.HIGH
        return cls.LOW


def format_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with a trailing Z"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat() + 'Z'


def serialize_weight(value):
    """Integral weights serialize as ints, everything else rounded to 2 decimals"""
    if value is None:
        return None
    rounded = round(float(value), 2)
    if rounded.is_integer():
        return int(rounded)
    return rounded


@dataclass
class VinDecodeResult:
    """Normalized registry record for one VIN."""
    vin: str
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    series: Optional[str] = None
    trim: Optional[str] = None
    body_style: Optional[str] = None
    vehicle_type: Optional[str] = None
    gvwr: Optional[int] = None
    gvwr_class: Optional[str] = None
    curb_weight: Optional[int] = None
    engine: Optional[str] = None
    engine_cylinders: Optional[int] = None
    displacement_l: Optional[float] = None
    transmission: Optional[str] = None
    drive_type: Optional[str] = None
    fuel_type: Optional[str] = None
    manufacturer: Optional[str] = None
    # Best-effort registry fields, often missing on incomplete vehicles
    gawr_front: Optional[int] = None
    gawr_rear: Optional[int] = None
    cab_type: Optional[str] = None
    wheelbase: Optional[float] = None
    overall_length: Optional[float] = None
    overall_width: Optional[float] = None
    overall_height: Optional[float] = None
    seating_capacity: Optional[int] = None
    towing_capacity: Optional[int] = None
    fuel_tank_capacity_gal: Optional[float] = None
    engine_hp: Optional[int] = None
    engine_kw: Optional[float] = None
    electrification_level: Optional[str] = None
    battery_kwh: Optional[float] = None
    battery_voltage: Optional[float] = None
    charger_level: Optional[str] = None
    axle_configuration: Optional[str] = None
    axles: Optional[int] = None
    plant_city: Optional[str] = None
    plant_state: Optional[str] = None
    plant_country: Optional[str] = None
    error_code: Optional[str] = None
    error_text: Optional[str] = None
    decoded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_complete(self) -> bool:
        return self.year is not None and bool(self.make) and bool(self.model)

    @property
    def confidence(self) -> Confidence:
        return Confidence.from_error_code(self.error_code)

    @property
    def payload_capacity(self) -> Optional[int]:
        if self.gvwr is None or self.curb_weight is None:
            return None
        return self.gvwr - self.curb_weight

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vin': self.vin,
            'year': self.year,
            'make': self.make,
            'model': self.model,
            'series': self.series,
            'trim': self.trim,
            'bodyStyle': self.body_style,
            'vehicleType': self.vehicle_type,
            'gvwr': self.gvwr,
            'gvwrClass': self.gvwr_class,
            'curbWeight': self.curb_weight,
            'payloadCapacity': self.payload_capacity,
            'engine': self.engine,
            'engineCylinders': self.engine_cylinders,
            'displacementL': self.displacement_l,
            'transmission': self.transmission,
            'driveType': self.drive_type,
            'fuelType': self.fuel_type,
            'manufacturer': self.manufacturer,
            'gawrFront': self.gawr_front,
            'gawrRear': self.gawr_rear,
            'cabType': self.cab_type,
            'wheelbase': self.wheelbase,
            'overallLength': self.overall_length,
            'overallWidth': self.overall_width,
            'overallHeight': self.overall_height,
            'seatingCapacity': self.seating_capacity,
            'towingCapacity': self.towing_capacity,
            'fuelTankCapacityGallons': self.fuel_tank_capacity_gal,
            'engineHP': self.engine_hp,
            'engineKW': self.engine_kw,
            'electrificationLevel': self.electrification_level,
            'batteryKWh': self.battery_kwh,
            'batteryVoltage': self.battery_voltage,
            'chargerLevel': self.charger_level,
            'axleConfiguration': self.axle_configuration,
            'axles': self.axles,
            'plantCity': self.plant_city,
            'plantState': self.plant_state,
            'plantCountry': self.plant_country,
        }


@dataclass
class EPAVehicleData:
    """Fuel economy record from fueleconomy.gov. None means the source had no value."""
    mpg_city: Optional[float] = None
    mpg_highway: Optional[float] = None
    mpg_combined: Optional[float] = None
    mpge: Optional[float] = None
    electric_range: Optional[float] = None
    battery_capacity_kwh: Optional[float] = None
    charge_time_240v: Optional[float] = None
    charge_time_240v_dc_fast: Optional[float] = None
    annual_fuel_cost_estimate: Optional[float] = None
    co2_emissions: Optional[float] = None
    co2_emissions_city: Optional[float] = None
    co2_emissions_highway: Optional[float] = None
    fuel_type: Optional[str] = None
    fuel_type1: Optional[str] = None
    fuel_type2: Optional[str] = None
    engine_description: Optional[str] = None
    transmission_description: Optional[str] = None
    drive_type: Optional[str] = None
    cylinders: Optional[int] = None
    displacement_l: Optional[float] = None
    epa_id: Optional[int] = None
    atv_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mpgCity': self.mpg_city,
            'mpgHighway': self.mpg_highway,
            'mpgCombined': self.mpg_combined,
            'mpge': self.mpge,
            'electricRange': self.electric_range,
            'batteryCapacityKwh': self.battery_capacity_kwh,
            'chargeTime240v': self.charge_time_240v,
            'chargeTime240vDcFast': self.charge_time_240v_dc_fast,
            'annualFuelCostEstimate': self.annual_fuel_cost_estimate,
            'co2Emissions': self.co2_emissions,
            'co2EmissionsCity': self.co2_emissions_city,
            'co2EmissionsHighway': self.co2_emissions_highway,
            'epaFuelType': self.fuel_type,
            'epaFuelType1': self.fuel_type1,
            'epaFuelType2': self.fuel_type2,
            'epaEngineDescription': self.engine_description,
            'epaTransmissionDescription': self.transmission_description,
            'epaDriveType': self.drive_type,
            'epaCylinders': self.cylinders,
            'epaDisplacementL': self.displacement_l,
            'epaId': self.epa_id,
            'atvType': self.atv_type,
        }


@dataclass(frozen=True)
class EnrichmentMetadata:
    """Provenance for an enrichment result. Immutable once built."""
    nhtsa_confidence: Confidence
    epa_available: bool
    decoded_at: datetime
    data_sources: Tuple[str, ...] = ('nhtsa',)

    def __post_init__(self):
        unique = set(self.data_sources)
        ordered = tuple(s for s in DATA_SOURCE_ORDER if s in unique)
        extras = tuple(sorted(unique.difference(DATA_SOURCE_ORDER)))
        object.__setattr__(self, 'data_sources', ordered + extras)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nhtsaConfidence': self.nhtsa_confidence.value,
            'epaAvailable': self.epa_available,
            'decodedAt': format_timestamp(self.decoded_at),
            'dataSources': list(self.data_sources),
        }


@dataclass
class EnrichmentResult:
    """Reconciled vehicle attributes from the registry and fuel economy sources."""
    vehicle: VinDecodeResult
    metadata: EnrichmentMetadata
    epa: Optional[EPAVehicleData] = None
    engine: Optional[str] = None
    transmission: Optional[str] = None
    drive_type: Optional[str] = None
    fuel_type_category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.vehicle.to_dict()
        data['engine'] = self.engine
        data['transmission'] = self.transmission
        data['driveType'] = self.drive_type
        data['fuelTypeCategory'] = self.fuel_type_category
        if self.epa is not None:
            data.update(self.epa.to_dict())
        data['enrichmentMetadata'] = self.metadata.to_dict()
        return data


@dataclass
class ComplianceResult:
    """Weight compliance outcome for a vehicle and equipment combination."""
    gvwr_compliant: bool
    gawr_front_compliant: bool
    gawr_rear_compliant: bool
    total_combined_weight: float
    front_axle_weight: float
    rear_axle_weight: float
    payload_remaining: float
    warnings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def is_compliant(self) -> bool:
        return self.gvwr_compliant and self.gawr_front_compliant and self.gawr_rear_compliant

    def to_dict(self) -> Dict[str, Any]:
        return {
            'gvwrCompliant': self.gvwr_compliant,
            'gawrFrontCompliant': self.gawr_front_compliant,
            'gawrRearCompliant': self.gawr_rear_compliant,
            'totalCombinedWeight': serialize_weight(self.total_combined_weight),
            'frontAxleWeight': serialize_weight(self.front_axle_weight),
            'rearAxleWeight': serialize_weight(self.rear_axle_weight),
            'payloadRemaining': serialize_weight(self.payload_remaining),
            'warnings': list(self.warnings),
            'recommendations': list(self.recommendations),
        }
