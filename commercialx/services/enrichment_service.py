#!/usr/bin/env python3
"""
Vehicle Data Enrichment Service
Merges NHTSA decode results with EPA fuel economy data
"""

import logging
from typing import Optional

from commercialx.models.vehicle_models import EnrichmentMetadata, EnrichmentResult, EPAVehicleData
from commercialx.services.fuel_economy_service import (
    FuelEconomyService,
    normalize_drive_type,
    normalize_epa_fuel_type,
    normalize_nhtsa_fuel_type,
)
from commercialx.services.vin_decoder_service import VINDecoderService

logger = logging.getLogger(__name__)


class EnrichmentService:
    """
    Produces one reconciled vehicle record per VIN

    The VIN registry is the primary source: its failures propagate and no
    fuel economy lookup is attempted. Fuel economy data is secondary and
    its absence or failure never aborts the result.
    """

    def __init__(self, vin_decoder: VINDecoderService, fuel_economy: FuelEconomyService,
                 decode=None):
        self.vin_decoder = vin_decoder
        self.fuel_economy = fuel_economy
        # Optional wrapper around vin_decoder.decode_vin, e.g. with retries
        self._decode = decode or vin_decoder.decode_vin

    def enrich(self, vin: str) -> EnrichmentResult:
        vehicle = self._decode(vin)
        epa = self._lookup_fuel_economy(vehicle.year, vehicle.make, vehicle.model)

        sources = ['nhtsa']
        if epa is not None:
            sources.append('epa')

        metadata = EnrichmentMetadata(
            nhtsa_confidence=vehicle.confidence,
            epa_available=epa is not None,
            decoded_at=vehicle.decoded_at,
            data_sources=tuple(sources),
        )

        result = EnrichmentResult(
            vehicle=vehicle,
            metadata=metadata,
            epa=epa,
            engine=vehicle.engine,
            transmission=vehicle.transmission,
            drive_type=normalize_drive_type(vehicle.drive_type),
            fuel_type_category=normalize_nhtsa_fuel_type(vehicle.fuel_type),
        )

        if epa is not None:
            self._fill_gaps(result, epa)

        logger.info(f"Enriched {vehicle.vin} from {', '.join(metadata.data_sources)}")
        return result

    def _lookup_fuel_economy(self, year, make, model) -> Optional[EPAVehicleData]:
        try:
            return self.fuel_economy.get_data_for_vehicle(year, make, model)
        except Exception as e:
            logger.warning(f"EPA data fetch failed (non-critical): {e}")
            return None

    @staticmethod
    def _fill_gaps(result: EnrichmentResult, epa: EPAVehicleData):
        """EPA descriptors only fill fields the registry left unknown"""
        if result.engine is None:
            result.engine = epa.engine_description
        if result.transmission is None:
            result.transmission = epa.transmission_description
        if result.drive_type is None:
            result.drive_type = normalize_drive_type(epa.drive_type)
        if result.fuel_type_category is None:
            result.fuel_type_category = normalize_epa_fuel_type(epa.fuel_type)
