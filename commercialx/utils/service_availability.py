"""
Service Registry
Builds the per-application service objects and reports which are configured
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from flask import current_app

from commercialx.services.compliance_service import ComplianceCalculator
from commercialx.services.enrichment_service import EnrichmentService
from commercialx.services.fuel_economy_service import FuelEconomyService
from commercialx.services.object_store import ObjectStore, build_object_store
from commercialx.services.vin_decoder_service import VINDecoderService
from commercialx.utils.auth_decorators import IdentityProvider, build_identity_provider
from commercialx.utils.database import DatabaseManager, VehicleConfigRepository
from commercialx.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'commercialx'


@dataclass
class ServiceRegistry:
    """Everything an endpoint needs, built once per Flask app"""
    config: Any
    vin_decoder: VINDecoderService
    fuel_economy: FuelEconomyService
    enrichment: EnrichmentService
    compliance: ComplianceCalculator
    retry_policy: RetryPolicy
    db_manager: Optional[DatabaseManager] = None
    object_store: Optional[ObjectStore] = None
    identity_provider: Optional[IdentityProvider] = None

    def availability(self) -> Dict[str, str]:
        """Configured components, without contacting any of them"""
        return {
            'vin_decoder': 'available',
            'fuel_economy': 'available',
            'database': 'configured' if self.db_manager and self.db_manager.available else 'not_configured',
            'object_store': self.object_store.name if self.object_store else 'not_configured',
            'identity_provider': 'configured' if self.identity_provider else 'not_configured',
        }


def build_services(config) -> ServiceRegistry:
    """Wire services from an AppConfig"""
    retry_policy = RetryPolicy.from_config(config)

    vin_decoder = VINDecoderService(
        base_url=config.NHTSA_API_URL,
        timeout=config.HTTP_TIMEOUT_SECONDS,
    )
    fuel_economy = FuelEconomyService(
        base_url=config.EPA_API_URL,
        timeout=config.HTTP_TIMEOUT_SECONDS,
        max_attempts=config.EPA_MAX_ATTEMPTS,
        initial_delay=config.RETRY_INITIAL_DELAY_SECONDS,
        max_delay=config.RETRY_MAX_DELAY_SECONDS,
    )
    enrichment = EnrichmentService(
        vin_decoder,
        fuel_economy,
        decode=lambda vin: retry_policy.call(lambda: vin_decoder.decode_vin(vin)),
    )

    db_manager = DatabaseManager(
        config.DATABASE_URL,
        pool_size_min=config.DB_POOL_MIN,
        pool_size_max=config.DB_POOL_MAX,
    )
    repository = VehicleConfigRepository(
        db_manager,
        vehicle_schema=config.VEHICLE_SCHEMA,
        equipment_schema=config.EQUIPMENT_SCHEMA,
    )
    compliance = ComplianceCalculator(
        repository,
        front_axle_ratio=config.FRONT_AXLE_RATIO,
        low_payload_threshold=config.LOW_PAYLOAD_THRESHOLD_LBS,
    )

    return ServiceRegistry(
        config=config,
        vin_decoder=vin_decoder,
        fuel_economy=fuel_economy,
        enrichment=enrichment,
        compliance=compliance,
        retry_policy=retry_policy,
        db_manager=db_manager,
        object_store=build_object_store(config),
        identity_provider=build_identity_provider(config),
    )


def get_services() -> ServiceRegistry:
    return current_app.extensions[EXTENSION_KEY]
