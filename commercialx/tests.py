#!/usr/bin/env python3
"""
CommercialX API Test Suite
Service and endpoint tests with upstream registries and the database mocked out
"""

import dataclasses
import io
import json
import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import jwt
import pytest
import requests

from commercialx.config.app_config import AppConfig
from commercialx.index import create_app
from commercialx.models.vehicle_models import (
    Confidence,
    EnrichmentMetadata,
    EPAVehicleData,
    VinDecodeResult,
)
from commercialx.services.compliance_service import (
    GVWR_RECOMMENDATION,
    LOW_PAYLOAD_RECOMMENDATION,
    PAYLOAD_EXCEEDED_RECOMMENDATION,
    ComplianceCalculator,
)
from commercialx.services.enrichment_service import EnrichmentService
from commercialx.services.fuel_economy_service import (
    FuelEconomyService,
    normalize_drive_type,
    normalize_epa_fuel_type,
)
from commercialx.services.object_store import (
    ObjectStore,
    StorageProxyObjectStore,
    VercelBlobObjectStore,
    build_object_store,
)
from commercialx.services.vin_decoder_service import VINDecoderService, parse_int
from commercialx.utils.auth_decorators import JWTIdentityProvider
from commercialx.utils.database import DatabaseManager, VehicleConfigRepository
from commercialx.utils.errors import (
    AuthenticationError,
    ConfigNotFoundError,
    InvalidInputError,
    NotFoundError,
    UpstreamUnavailableError,
)
from commercialx.utils.retry import (
    RetryPolicy,
    backoff_delay,
    is_transient_error,
    retry_with_backoff,
    with_retry,
)
from commercialx.utils.service_availability import ServiceRegistry

TEST_VIN = '1FDUF5HT5NEC12345'
VALID_CHECK_DIGIT_VIN = '1HGCM82633A004352'
JWT_SECRET = 'test-jwt-secret-for-commercialx-suite'

NHTSA_RESULT = {
    'ModelYear': '2022',
    'Make': 'FORD',
    'Model': 'F-550',
    'Series': 'Super Duty',
    'Trim': 'XL',
    'BodyClass': 'Incomplete - Chassis Cab',
    'VehicleType': 'INCOMPLETE VEHICLE',
    'GVWR': 'Class 5: 16,001 - 19,500 lb (7,258 - 8,845 kg)',
    'CurbWeightLB': '',
    'EngineModel': 'Power Stroke',
    'EngineCylinders': '8',
    'DisplacementL': '6.7',
    'TransmissionStyle': 'Automatic',
    'DriveType': '4WD/4-Wheel Drive/4x4',
    'FuelTypePrimary': 'Diesel',
    'Manufacturer': 'FORD MOTOR COMPANY, USA',
    'ErrorCode': '0',
    'ErrorText': '0 - VIN decoded clean. Check Digit (9th position) is correct',
}

EPA_MENU = {'menuItem': [
    {'text': 'Auto (S10), 8 cyl, 6.7 L, Turbo', 'value': '44321'},
    {'text': 'Auto (S10), 8 cyl, 7.3 L', 'value': '44322'},
]}

EPA_VEHICLE = {
    'id': '44321',
    'city08': '15',
    'highway08': '20',
    'comb08': '17',
    'co2': '-1',
    'co2TailpipeGpm': '520.0',
    'fuelCost08': '3950',
    'fuelType': 'Diesel',
    'fuelType1': 'Diesel',
    'fuelType2': '',
    'eng_dscr': '',
    'trany': 'Automatic (S10)',
    'drive': '4-Wheel Drive',
    'cylinders': '8',
    'displ': '6.7',
    'atvType': 'Diesel',
    'range': '0',
    'charge240': '0',
}

EPA_EV = {
    'id': '45001',
    'city08': '131',
    'highway08': '107',
    'comb08': '120',
    'fuelType': 'Electricity',
    'fuelType1': 'Electricity',
    'evMotor': '150 kW AC PMSM',
    'atvType': 'EV',
    'range': '250',
    'charge240': '7.5',
}


def make_http_response(payload=None, status_code=200, content=None):
    """Stand-in for requests.Response"""
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if content is None:
        content = json.dumps(payload).encode() if payload is not None else b''
    response.content = content
    response.text = content.decode()
    return response


def get_response_data(response):
    """Decode a JSON response body"""
    return json.loads(response.data), response.status_code


class FakeRepository:
    """In-memory vehicle and equipment configurations"""

    def __init__(self, vehicles=None, equipment=None):
        self.vehicles = vehicles or {}
        self.equipment = equipment or {}

    def get_vehicle_config(self, vehicle_config_id):
        return self.vehicles.get(vehicle_config_id)

    def get_equipment_config(self, equipment_config_id):
        return self.equipment.get(equipment_config_id)


@pytest.fixture
def repository():
    return FakeRepository(
        vehicles={
            1: {'id': 1, 'curb_weight': 10000, 'gvwr': 12000, 'gawr_front': 5000, 'gawr_rear': 8000},
            2: {'id': 2, 'curb_weight': 11600, 'gvwr': 12000, 'gawr_front': 5000, 'gawr_rear': 8000},
            3: {'id': 3, 'curb_weight': 10000, 'gvwr': 12000, 'gawr_front': 5000, 'gawr_rear': 8000,
                'front_axle_ratio': 0.5},
            4: {'id': 4, 'curb_weight': None, 'gvwr': None, 'gawr_front': None, 'gawr_rear': None},
        },
        equipment={
            7: {'id': 7, 'equipment_weight': 3000},
            8: {'id': 8, 'equipment_weight': 1500},
        }
    )


@pytest.fixture
def nhtsa_session():
    return MagicMock()


@pytest.fixture
def epa_session():
    return MagicMock()


@pytest.fixture
def object_store():
    store = MagicMock(spec=ObjectStore)
    store.name = 'fake_store'
    store.put.return_value = 'https://cdn.example.com/listing.jpg'
    return store


@pytest.fixture
def test_config():
    return AppConfig(JWT_SECRET_KEY=JWT_SECRET, DATABASE_URL=None, LOG_LEVEL='WARNING')


@pytest.fixture
def services(test_config, nhtsa_session, epa_session, repository, object_store):
    vin_decoder = VINDecoderService(session=nhtsa_session)
    fuel_economy = FuelEconomyService(session=epa_session)
    return ServiceRegistry(
        config=test_config,
        vin_decoder=vin_decoder,
        fuel_economy=fuel_economy,
        enrichment=EnrichmentService(vin_decoder, fuel_economy),
        compliance=ComplianceCalculator(repository),
        retry_policy=RetryPolicy(max_attempts=1),
        object_store=object_store,
        identity_provider=JWTIdentityProvider(JWT_SECRET),
    )


@pytest.fixture
def test_app(test_config, services):
    """Create test app instance"""
    app = create_app(config=test_config, services=services)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(test_app):
    """Create test client"""
    return test_app.test_client()


@pytest.fixture
def auth_headers():
    """Valid bearer token for user-1"""
    token = jwt.encode(
        {'sub': 'user-1', 'email': 'dealer@example.com',
         'exp': datetime.now(timezone.utc) + timedelta(hours=1)},
        JWT_SECRET,
        algorithm='HS256'
    )
    return {'Authorization': f'Bearer {token}'}


# ================================
# RETRY HELPER TESTS
# ================================


class TestRetryHelper:
    """Exponential backoff and transient error classification"""

    def test_backoff_doubles_and_caps(self):
        assert [backoff_delay(n, 1.0, 10.0) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_transient_errors_are_retried_until_success(self):
        sleeps = []
        fn = MagicMock(side_effect=[
            UpstreamUnavailableError('timeout', transient=True),
            requests.exceptions.ConnectionError('reset'),
            'decoded',
        ])

        assert retry_with_backoff(fn, sleep=sleeps.append) == 'decoded'
        assert fn.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_last_error_raised_after_max_attempts(self):
        sleeps = []
        fn = MagicMock(side_effect=TimeoutError('slow'))

        with pytest.raises(TimeoutError):
            retry_with_backoff(fn, max_attempts=5, initial_delay=4.0, max_delay=10.0,
                               sleep=sleeps.append)

        assert fn.call_count == 5
        assert sleeps == [4.0, 8.0, 10.0, 10.0]

    @pytest.mark.parametrize('error', [
        InvalidInputError('Invalid VIN'),
        NotFoundError('No data found for VIN'),
        UpstreamUnavailableError('bad request', transient=False),
        ValueError('bad json'),
    ])
    def test_non_transient_errors_fail_immediately(self, error):
        sleeps = []
        fn = MagicMock(side_effect=error)

        with pytest.raises(type(error)):
            retry_with_backoff(fn, sleep=sleeps.append)

        assert fn.call_count == 1
        assert sleeps == []

    def test_classifier_uses_error_types(self):
        assert is_transient_error(requests.exceptions.Timeout())
        assert is_transient_error(ConnectionError())
        assert not is_transient_error(RuntimeError('connection timeout'))

    def test_decorator_form(self, monkeypatch):
        monkeypatch.setattr('commercialx.utils.retry.time.sleep', lambda seconds: None)
        calls = []

        @with_retry(max_attempts=2)
        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise TimeoutError()
            return 'ok'

        assert flaky() == 'ok'
        assert len(calls) == 2

    def test_policy_from_config(self):
        config = AppConfig(RETRY_MAX_ATTEMPTS=4, RETRY_INITIAL_DELAY_SECONDS=0.5,
                           RETRY_MAX_DELAY_SECONDS=3.0)
        policy = RetryPolicy.from_config(config)
        assert policy == RetryPolicy(max_attempts=4, initial_delay=0.5, max_delay=3.0)


# ================================
# VIN DECODER TESTS
# ================================


class TestVINDecoderService:
    """NHTSA decode client"""

    @pytest.mark.parametrize('vin', [
        '', '123', TEST_VIN + 'X', None,
        TEST_VIN + ' ', ' ' + TEST_VIN + ' ', TEST_VIN + '\n',
    ])
    def test_wrong_length_fails_before_network(self, nhtsa_session, vin):
        decoder = VINDecoderService(session=nhtsa_session)

        with pytest.raises(InvalidInputError):
            decoder.decode_vin(vin)

        nhtsa_session.get.assert_not_called()

    def test_decode_maps_registry_fields(self, nhtsa_session):
        nhtsa_session.get.return_value = make_http_response({'Results': [NHTSA_RESULT]})
        decoder = VINDecoderService(base_url='https://vpic.example.com/api/vehicles',
                                    session=nhtsa_session)

        result = decoder.decode_vin(TEST_VIN.lower())

        args, kwargs = nhtsa_session.get.call_args
        assert args[0] == f'https://vpic.example.com/api/vehicles/DecodeVinValues/{TEST_VIN}'
        assert kwargs['params'] == {'format': 'json'}
        assert kwargs['timeout'] == 10.0

        assert result.vin == TEST_VIN
        assert result.year == 2022
        assert result.make == 'FORD'
        assert result.model == 'F-550'
        assert result.body_style == 'Incomplete - Chassis Cab'
        assert result.engine == 'Power Stroke'
        assert result.engine_cylinders == 8
        assert result.displacement_l == 6.7
        assert result.fuel_type == 'Diesel'
        assert result.confidence is Confidence.HIGH
        assert result.decoded_at.tzinfo is not None

    def test_class_gvwr_is_unknown_weight(self, nhtsa_session):
        nhtsa_session.get.return_value = make_http_response({'Results': [NHTSA_RESULT]})

        result = VINDecoderService(session=nhtsa_session).decode_vin(TEST_VIN)

        assert result.gvwr is None
        assert result.gvwr_class.startswith('Class 5')
        assert result.curb_weight is None
        assert result.payload_capacity is None

    def test_numeric_gvwr_and_payload(self, nhtsa_session):
        record = dict(NHTSA_RESULT, GVWR='19,500', CurbWeightLB='7850')
        nhtsa_session.get.return_value = make_http_response({'Results': [record]})

        result = VINDecoderService(session=nhtsa_session).decode_vin(TEST_VIN)

        assert result.gvwr == 19500
        assert result.gvwr_class is None
        assert result.payload_capacity == 11650

    def test_commercial_fields_are_best_effort(self, nhtsa_session):
        record = dict(
            NHTSA_RESULT,
            GAWR_Front='7,000',
            GAWRRear='13,660 lb',
            WheelBaseShort='',
            WheelBase='141.0',
            OverallLength='243.6',
            CabType='Regular',
            Seats='3',
            EngineHP='330.00',
            BatteryKWh='Not Applicable',
            BatteryVoltage='400',
            AxleConfiguration='4x2',
            Axles='2',
            PlantCity='LOUISVILLE',
            PlantCountry='UNITED STATES (USA)',
        )
        nhtsa_session.get.return_value = make_http_response({'Results': [record]})

        result = VINDecoderService(session=nhtsa_session).decode_vin(TEST_VIN)

        assert result.gawr_front == 7000
        assert result.gawr_rear == 13660
        assert result.wheelbase == 141.0
        assert result.overall_length == 243.6
        assert result.overall_width is None
        assert result.cab_type == 'Regular'
        assert result.seating_capacity == 3
        assert result.engine_hp == 330
        assert result.battery_kwh is None
        assert result.battery_voltage == 400.0
        assert result.axle_configuration == '4x2'
        assert result.axles == 2
        assert result.towing_capacity is None

        data = result.to_dict()
        assert data['gawrFront'] == 7000
        assert data['gawrRear'] == 13660
        assert data['wheelbase'] == 141.0
        assert data['engineHP'] == 330
        assert data['plantCity'] == 'LOUISVILLE'
        assert data['plantCountry'] == 'UNITED STATES (USA)'

    def test_nonzero_error_code_is_low_confidence(self, nhtsa_session):
        record = dict(NHTSA_RESULT, ErrorCode='1,400')
        nhtsa_session.get.return_value = make_http_response({'Results': [record]})

        result = VINDecoderService(session=nhtsa_session).decode_vin(TEST_VIN)

        assert result.confidence is Confidence.LOW

    def test_empty_results_is_not_found(self, nhtsa_session):
        nhtsa_session.get.return_value = make_http_response({'Results': []})

        with pytest.raises(NotFoundError):
            VINDecoderService(session=nhtsa_session).decode_vin(TEST_VIN)

    def test_missing_make_is_not_found(self, nhtsa_session):
        record = dict(NHTSA_RESULT, Make='', Model='Not Applicable')
        nhtsa_session.get.return_value = make_http_response({'Results': [record]})

        with pytest.raises(NotFoundError):
            VINDecoderService(session=nhtsa_session).decode_vin(TEST_VIN)

    def test_timeout_is_transient_upstream_error(self, nhtsa_session):
        nhtsa_session.get.side_effect = requests.exceptions.Timeout()

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            VINDecoderService(session=nhtsa_session).decode_vin(TEST_VIN)

        assert exc_info.value.transient

    @pytest.mark.parametrize('status_code,transient', [(503, True), (429, True), (400, False)])
    def test_http_errors(self, nhtsa_session, status_code, transient):
        nhtsa_session.get.return_value = make_http_response({}, status_code=status_code)

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            VINDecoderService(session=nhtsa_session).decode_vin(TEST_VIN)

        assert exc_info.value.transient is transient

    def test_invalid_json_is_upstream_error(self, nhtsa_session):
        response = make_http_response(content=b'<html>')
        response.json.side_effect = ValueError('no json')
        nhtsa_session.get.return_value = response

        with pytest.raises(UpstreamUnavailableError):
            VINDecoderService(session=nhtsa_session).decode_vin(TEST_VIN)

    def test_validate_vin_check_digit(self):
        decoder = VINDecoderService(session=MagicMock())

        valid = decoder.validate_vin(VALID_CHECK_DIGIT_VIN)
        assert valid['check_digit_valid'] is True
        assert valid['warnings'] == []

        mismatch = decoder.validate_vin('1HGCM82643A004352')
        assert mismatch['valid'] is True
        assert mismatch['check_digit_valid'] is False

    def test_validate_vin_rejects_forbidden_letters(self):
        with pytest.raises(InvalidInputError):
            VINDecoderService(session=MagicMock()).validate_vin('1HGCM8263IA004352')

    def test_parse_int(self):
        assert parse_int('8,500') == 8500
        assert parse_int('8500 lb') == 8500
        assert parse_int('Not Applicable') is None
        assert parse_int('Class 3') is None


# ================================
# FUEL ECONOMY TESTS
# ================================


class TestFuelEconomyService:
    """fueleconomy.gov client"""

    def test_find_vehicle_id_takes_first_option(self, epa_session):
        epa_session.get.return_value = make_http_response(EPA_MENU)

        epa_id = FuelEconomyService(session=epa_session).find_vehicle_id(2022, 'FORD', 'F-550')

        assert epa_id == 44321
        args, kwargs = epa_session.get.call_args
        assert args[0].endswith('/vehicle/menu/options')
        assert kwargs['params'] == {'year': 2022, 'make': 'FORD', 'model': 'F-550'}

    def test_single_option_object(self, epa_session):
        epa_session.get.return_value = make_http_response(
            {'menuItem': {'text': 'Auto 6-spd', 'value': '39001'}})

        assert FuelEconomyService(session=epa_session).find_vehicle_id(2019, 'RAM', '3500') == 39001

    @pytest.mark.parametrize('response', [
        make_http_response(content=b''),
        make_http_response({'menuItem': []}),
        make_http_response({}),
    ])
    def test_no_options_is_none(self, epa_session, response):
        epa_session.get.return_value = response

        assert FuelEconomyService(session=epa_session).find_vehicle_id(2022, 'ISUZU', 'NPR') is None

    def test_network_error_is_none(self, epa_session):
        epa_session.get.side_effect = requests.exceptions.ConnectionError()

        assert FuelEconomyService(session=epa_session).get_data_for_vehicle(2022, 'FORD', 'F-550') is None

    def test_http_error_is_none(self, epa_session):
        epa_session.get.return_value = make_http_response({}, status_code=500)

        assert FuelEconomyService(session=epa_session).get_vehicle_data(44321) is None

    def test_transient_failures_retried_when_configured(self, epa_session, monkeypatch):
        monkeypatch.setattr('commercialx.utils.retry.time.sleep', lambda seconds: None)
        epa_session.get.side_effect = [
            make_http_response({}, status_code=503),
            make_http_response(EPA_MENU),
        ]

        service = FuelEconomyService(session=epa_session, max_attempts=2)

        assert service.find_vehicle_id(2022, 'FORD', 'F-550') == 44321
        assert epa_session.get.call_count == 2

    def test_vehicle_mapping_keeps_unknowns_unknown(self, epa_session):
        epa_session.get.return_value = make_http_response(EPA_VEHICLE)

        data = FuelEconomyService(session=epa_session).get_vehicle_data(44321)

        assert data.mpg_city == 15
        assert data.mpg_highway == 20
        assert data.mpg_combined == 17
        assert data.co2_emissions is None
        assert data.co2_emissions_city == 520
        assert data.co2_emissions_highway is None
        assert data.annual_fuel_cost_estimate == 3950
        assert data.mpge is None
        assert data.electric_range is None
        assert data.charge_time_240v is None
        assert data.engine_description is None
        assert data.fuel_type2 is None
        assert data.transmission_description == 'Automatic (S10)'
        assert data.epa_id == 44321

    def test_zero_is_a_measurement(self, epa_session):
        epa_session.get.return_value = make_http_response(dict(EPA_VEHICLE, city08='0'))

        data = FuelEconomyService(session=epa_session).get_vehicle_data(44321)

        assert data.mpg_city == 0

    def test_electric_vehicle_fields(self, epa_session):
        epa_session.get.return_value = make_http_response(EPA_EV)

        data = FuelEconomyService(session=epa_session).get_vehicle_data(45001)

        assert data.mpge == 120
        assert data.electric_range == 250
        assert data.charge_time_240v == 7.5
        assert data.engine_description == '150 kW AC PMSM'

    def test_plug_in_hybrid_uses_alternate_fuel_values(self, epa_session):
        record = dict(
            EPA_VEHICLE,
            fuelType='Premium and Electricity',
            fuelType1='Premium Gasoline',
            fuelType2='Electricity',
            atvType='Plug-in Hybrid',
            combA08='69',
            fuelCost08='2100',
            fuelCostA08='1450',
            rangeA='21',
        )
        epa_session.get.return_value = make_http_response(record)

        data = FuelEconomyService(session=epa_session).get_vehicle_data(44321)

        assert data.annual_fuel_cost_estimate == 1450
        assert data.mpge == 69
        assert data.electric_range == 21

    def test_zero_alternate_fuel_cost_falls_back(self, epa_session):
        epa_session.get.return_value = make_http_response(dict(EPA_VEHICLE, fuelCostA08='0'))

        data = FuelEconomyService(session=epa_session).get_vehicle_data(44321)

        assert data.annual_fuel_cost_estimate == 3950

    def test_get_data_for_vehicle_composes_lookups(self, epa_session):
        epa_session.get.side_effect = [make_http_response(EPA_MENU), make_http_response(EPA_VEHICLE)]

        data = FuelEconomyService(session=epa_session).get_data_for_vehicle(2022, 'FORD', 'F-550')

        assert data.epa_id == 44321
        assert epa_session.get.call_args_list[1][0][0].endswith('/vehicle/44321')

    def test_normalize_fuel_type(self):
        assert normalize_epa_fuel_type('Diesel') == 'diesel'
        assert normalize_epa_fuel_type('Regular Gasoline') == 'gasoline'
        assert normalize_epa_fuel_type('Electricity') == 'electric'
        assert normalize_epa_fuel_type('Compressed Natural Gas') == 'cng'
        assert normalize_epa_fuel_type('E85') == 'flex_fuel'
        assert normalize_epa_fuel_type('Unknown Label') == 'unknown label'
        assert normalize_epa_fuel_type(None) is None

    def test_normalize_drive_type(self):
        assert normalize_drive_type('4-Wheel Drive') == '4WD'
        assert normalize_drive_type('Rear-Wheel Drive') == 'RWD'
        assert normalize_drive_type('6x4') == '6x4'


# ================================
# ENRICHMENT TESTS
# ================================


class TestEnrichmentService:
    """Merging the registry decode with fuel economy data"""

    @staticmethod
    def _vehicle(**overrides):
        fields = dict(vin=TEST_VIN, year=2022, make='FORD', model='F-550',
                      transmission='Automatic', drive_type=None, fuel_type='Diesel',
                      error_code='0')
        fields.update(overrides)
        return VinDecodeResult(**fields)

    def test_merges_epa_data(self):
        decoder = MagicMock()
        decoder.decode_vin.return_value = self._vehicle()
        fuel = MagicMock()
        fuel.get_data_for_vehicle.return_value = EPAVehicleData(
            mpg_city=15, engine_description='6.7L V8 Turbo Diesel',
            transmission_description='Automatic (S10)', drive_type='4-Wheel Drive')

        result = EnrichmentService(decoder, fuel).enrich(TEST_VIN)

        fuel.get_data_for_vehicle.assert_called_once_with(2022, 'FORD', 'F-550')
        assert result.metadata.data_sources == ('nhtsa', 'epa')
        assert result.metadata.epa_available is True
        assert result.engine == '6.7L V8 Turbo Diesel'
        assert result.transmission == 'Automatic'
        assert result.drive_type == '4WD'
        assert result.fuel_type_category == 'diesel'
        assert result.to_dict()['mpgCity'] == 15

    def test_no_epa_data_still_succeeds(self):
        decoder = MagicMock()
        decoder.decode_vin.return_value = self._vehicle()
        fuel = MagicMock()
        fuel.get_data_for_vehicle.return_value = None

        result = EnrichmentService(decoder, fuel).enrich(TEST_VIN)
        data = result.to_dict()

        assert data['enrichmentMetadata']['dataSources'] == ['nhtsa']
        assert data['enrichmentMetadata']['epaAvailable'] is False
        assert 'mpgCity' not in data

    def test_epa_exception_never_aborts(self):
        decoder = MagicMock()
        decoder.decode_vin.return_value = self._vehicle()
        fuel = MagicMock()
        fuel.get_data_for_vehicle.side_effect = RuntimeError('boom')

        result = EnrichmentService(decoder, fuel).enrich(TEST_VIN)

        assert result.epa is None
        assert result.metadata.data_sources == ('nhtsa',)

    def test_decode_failure_propagates_without_epa_lookup(self):
        decoder = MagicMock()
        decoder.decode_vin.side_effect = NotFoundError('No data found for VIN')
        fuel = MagicMock()

        with pytest.raises(NotFoundError):
            EnrichmentService(decoder, fuel).enrich(TEST_VIN)

        fuel.get_data_for_vehicle.assert_not_called()

    def test_metadata_is_deduplicated_and_frozen(self):
        metadata = EnrichmentMetadata(
            nhtsa_confidence=Confidence.HIGH,
            epa_available=True,
            decoded_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            data_sources=('epa', 'nhtsa', 'nhtsa'),
        )

        assert metadata.data_sources == ('nhtsa', 'epa')
        assert metadata.to_dict()['decodedAt'] == '2024-05-01T12:00:00Z'
        with pytest.raises(dataclasses.FrozenInstanceError):
            metadata.epa_available = False


# ================================
# COMPLIANCE CALCULATOR TESTS
# ================================


class TestComplianceCalculator:
    """GVWR and GAWR checks"""

    def test_compliant_vehicle_without_equipment(self, repository):
        result = ComplianceCalculator(repository).calculate_compliance(1)
        data = result.to_dict()

        assert data['totalCombinedWeight'] == 10000
        assert data['frontAxleWeight'] == 4000
        assert data['rearAxleWeight'] == 6000
        assert data['gvwrCompliant'] is True
        assert data['gawrFrontCompliant'] is True
        assert data['gawrRearCompliant'] is True
        assert data['payloadRemaining'] == 2000
        assert data['warnings'] == []
        assert data['recommendations'] == []

    def test_overweight_with_equipment(self, repository):
        result = ComplianceCalculator(repository).calculate_compliance(1, equipment_config_id=7)

        assert result.total_combined_weight == 13000
        assert result.gvwr_compliant is False
        assert result.payload_remaining == -1000
        assert result.warnings[0] == 'Total weight (13000 lbs) exceeds GVWR (12000 lbs) by 1000 lbs'
        assert result.recommendations == [GVWR_RECOMMENDATION, PAYLOAD_EXCEEDED_RECOMMENDATION]

    def test_every_failed_flag_has_a_warning(self, repository):
        result = ComplianceCalculator(repository).calculate_compliance(1, equipment_config_id=7)

        failed = [not result.gvwr_compliant, not result.gawr_front_compliant,
                  not result.gawr_rear_compliant]
        assert len(result.warnings) == sum(failed)
        assert result.warnings[1].startswith('Front axle weight (5200 lbs)')

    def test_low_payload_advisory(self, repository):
        result = ComplianceCalculator(repository).calculate_compliance(2)

        assert result.payload_remaining == 400
        assert result.is_compliant
        assert result.recommendations == [LOW_PAYLOAD_RECOMMENDATION]

    def test_missing_equipment_counts_as_zero(self, repository):
        result = ComplianceCalculator(repository).calculate_compliance(1, equipment_config_id=999)

        assert result.total_combined_weight == 10000

    def test_missing_vehicle_config(self, repository):
        with pytest.raises(ConfigNotFoundError):
            ComplianceCalculator(repository).calculate_compliance(404)

    def test_missing_weights_default_to_zero(self, repository):
        result = ComplianceCalculator(repository).calculate_compliance(4)

        assert result.total_combined_weight == 0
        assert result.payload_remaining == 0
        assert result.is_compliant

    def test_axle_ratio_from_vehicle_config(self, repository):
        result = ComplianceCalculator(repository).calculate_compliance(3)

        assert result.front_axle_weight == 5000
        assert result.rear_axle_weight == 5000
        assert result.gawr_front_compliant is True

    def test_axle_ratio_injected(self, repository):
        result = ComplianceCalculator(repository, front_axle_ratio=0.3).calculate_compliance(1, 8)

        assert result.front_axle_weight == pytest.approx(3450)
        assert result.rear_axle_weight == pytest.approx(8050)
        assert result.gawr_rear_compliant is False
        assert result.warnings == ['Rear axle weight (8050 lbs) exceeds GAWR rear (8000 lbs) by 50 lbs']

    def test_axle_limit_uses_unrounded_weight(self):
        repository = FakeRepository(vehicles={
            5: {'id': 5, 'curb_weight': 12500.01, 'gvwr': 14000, 'gawr_front': 5000, 'gawr_rear': 8000},
            6: {'id': 6, 'curb_weight': 12500, 'gvwr': 14000, 'gawr_front': 5000, 'gawr_rear': 7500},
        })
        calculator = ComplianceCalculator(repository)

        over = calculator.calculate_compliance(5)
        assert over.gawr_front_compliant is False
        assert over.to_dict()['frontAxleWeight'] == 5000
        assert len(over.warnings) == 1

        at_limit = calculator.calculate_compliance(6)
        assert at_limit.gawr_front_compliant is True
        assert at_limit.gawr_rear_compliant is True
        assert at_limit.warnings == []

    def test_option_ids_must_be_integers(self, repository):
        with pytest.raises(InvalidInputError):
            ComplianceCalculator(repository).calculate_compliance(1, selected_vehicle_options=['a'])

    def test_repeated_calls_are_identical(self, repository):
        calculator = ComplianceCalculator(repository)

        first = json.dumps(calculator.calculate_compliance(1, 7).to_dict())
        second = json.dumps(calculator.calculate_compliance(1, 7).to_dict())

        assert first == second


# ================================
# REPOSITORY TESTS
# ================================


class TestVehicleConfigRepository:
    """Queries issued through DatabaseManager.execute_query"""

    def test_vehicle_config_lookup(self):
        db = MagicMock()
        db.execute_query.return_value = {'success': True, 'data': {'id': 5, 'gvwr': 14000}}

        record = VehicleConfigRepository(db).get_vehicle_config(5)

        assert record == {'id': 5, 'gvwr': 14000}
        args, kwargs = db.execute_query.call_args
        assert args[1] == (5,)
        assert kwargs['fetch'] == 'one'

    def test_vehicle_config_absent(self):
        db = MagicMock()
        db.execute_query.return_value = {'success': True, 'data': None}

        assert VehicleConfigRepository(db).get_vehicle_config(5) is None

    def test_vehicle_query_failure_raises(self):
        db = MagicMock()
        db.execute_query.return_value = {'success': False, 'error': 'relation does not exist'}

        with pytest.raises(UpstreamUnavailableError):
            VehicleConfigRepository(db).get_vehicle_config(5)

    def test_equipment_query_failure_is_tolerated(self):
        db = MagicMock()
        db.execute_query.return_value = {'success': False, 'error': 'timeout'}

        assert VehicleConfigRepository(db).get_equipment_config(9) is None

    def test_pool_created_once_under_concurrent_first_use(self):
        def slow_pool(*args):
            time.sleep(0.05)
            return MagicMock()

        db = DatabaseManager('postgresql://localhost/commercialx')
        barrier = threading.Barrier(4)
        pools = []

        def first_query():
            barrier.wait()
            pools.append(db._get_pool())

        with patch('commercialx.utils.database.ThreadedConnectionPool', side_effect=slow_pool) as pool_cls:
            threads = [threading.Thread(target=first_query) for _ in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert pool_cls.call_count == 1
        assert len(pools) == 4
        assert all(pool is pools[0] for pool in pools)


# ================================
# OBJECT STORE AND IDENTITY TESTS
# ================================


class TestObjectStore:
    """Storage adapters"""

    def test_storage_proxy_put(self):
        session = MagicMock()
        session.post.return_value = make_http_response({'url': 'https://files.example.com/a.jpg'})
        store = StorageProxyObjectStore('https://storage.example.com', 'key-1', session=session)

        url = store.put('/listings/u1/a.jpg', b'bytes', 'image/jpeg')

        assert url == 'https://files.example.com/a.jpg'
        args, kwargs = session.post.call_args
        assert args[0] == 'https://storage.example.com/v1/storage/upload'
        assert kwargs['params'] == {'path': 'listings/u1/a.jpg'}
        assert kwargs['headers'] == {'Authorization': 'Bearer key-1'}

    def test_storage_proxy_get(self):
        session = MagicMock()
        session.get.return_value = make_http_response({'url': 'https://files.example.com/a.jpg'})
        store = StorageProxyObjectStore('https://storage.example.com/', 'key-1', session=session)

        assert store.get('listings/u1/a.jpg') == 'https://files.example.com/a.jpg'
        assert session.get.call_args[0][0] == 'https://storage.example.com/v1/storage/downloadUrl'

    def test_vercel_blob_put_failure(self):
        session = MagicMock()
        session.put.return_value = make_http_response({}, status_code=403)
        store = VercelBlobObjectStore('blob-token', session=session)

        with pytest.raises(UpstreamUnavailableError):
            store.put('listings/u1/a.jpg', b'bytes', 'image/jpeg')

    def test_build_object_store_prefers_proxy(self):
        proxy = build_object_store(AppConfig(STORAGE_API_URL='https://s.example.com',
                                             STORAGE_API_KEY='k', VERCEL_BLOB_READ_WRITE_TOKEN='t'))
        blob = build_object_store(AppConfig(STORAGE_API_URL=None, STORAGE_API_KEY=None,
                                            VERCEL_BLOB_READ_WRITE_TOKEN='t'))
        none = build_object_store(AppConfig(STORAGE_API_URL=None, STORAGE_API_KEY=None,
                                            VERCEL_BLOB_READ_WRITE_TOKEN=None))

        assert isinstance(proxy, StorageProxyObjectStore)
        assert isinstance(blob, VercelBlobObjectStore)
        assert none is None


class TestIdentityProvider:
    """JWT verification"""

    def test_verify_returns_principal(self):
        token = jwt.encode({'sub': 'user-9', 'email': 'a@example.com', 'role': 'dealer'},
                           JWT_SECRET, algorithm='HS256')

        principal = JWTIdentityProvider(JWT_SECRET).verify(token)

        assert principal.user_id == 'user-9'
        assert principal.role == 'dealer'

    def test_expired_token_rejected(self):
        token = jwt.encode({'sub': 'user-9', 'exp': datetime.now(timezone.utc) - timedelta(minutes=1)},
                           JWT_SECRET, algorithm='HS256')

        with pytest.raises(AuthenticationError):
            JWTIdentityProvider(JWT_SECRET).verify(token)

    def test_wrong_secret_rejected(self):
        token = jwt.encode({'sub': 'user-9'}, 'another-secret-that-is-long-enough-too', algorithm='HS256')

        with pytest.raises(AuthenticationError):
            JWTIdentityProvider(JWT_SECRET).verify(token)


class TestAppConfig:
    """Environment configuration"""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv('FRONT_AXLE_RATIO', raising=False)
        monkeypatch.delenv('HTTP_TIMEOUT_SECONDS', raising=False)
        config = AppConfig()

        assert config.FRONT_AXLE_RATIO == 0.4
        assert config.HTTP_TIMEOUT_SECONDS == 10.0

    def test_environment_values(self, monkeypatch):
        monkeypatch.setenv('FRONT_AXLE_RATIO', '0.35')
        monkeypatch.setenv('CORS_ALLOWED_ORIGINS', 'https://a.example.com, https://b.example.com')
        config = AppConfig()

        assert config.FRONT_AXLE_RATIO == 0.35
        assert config.ALLOWED_ORIGINS == ['https://a.example.com', 'https://b.example.com']

    def test_unknown_override_rejected(self):
        with pytest.raises(AttributeError):
            AppConfig(NOT_A_SETTING=1)


# ================================
# VIN ENDPOINT TESTS
# ================================


class TestVINEndpoints:
    """VIN decode and validate endpoints"""

    def test_decode_with_epa_data(self, client, nhtsa_session, epa_session):
        nhtsa_session.get.return_value = make_http_response({'Results': [NHTSA_RESULT]})
        epa_session.get.side_effect = [make_http_response(EPA_MENU), make_http_response(EPA_VEHICLE)]

        response = client.post('/api/vin/decode', json={'vin': TEST_VIN})
        data, status = get_response_data(response)

        assert status == 200
        assert data['success'] is True
        vehicle = data['data']
        assert vehicle['year'] == 2022
        assert vehicle['make'] == 'FORD'
        assert vehicle['mpgCity'] == 15
        assert vehicle['fuelTypeCategory'] == 'diesel'
        metadata = vehicle['enrichmentMetadata']
        assert metadata['nhtsaConfidence'] == 'high'
        assert metadata['epaAvailable'] is True
        assert metadata['dataSources'] == ['nhtsa', 'epa']
        assert metadata['decodedAt'].endswith('Z')

    def test_decode_without_epa_data(self, client, nhtsa_session, epa_session):
        nhtsa_session.get.return_value = make_http_response({'Results': [NHTSA_RESULT]})
        epa_session.get.return_value = make_http_response({'menuItem': []})

        response = client.post('/functions/decode-vin', json={'vin': TEST_VIN})
        data, status = get_response_data(response)

        assert status == 200
        assert data['data']['enrichmentMetadata']['dataSources'] == ['nhtsa']
        assert data['data']['enrichmentMetadata']['epaAvailable'] is False

    @pytest.mark.parametrize('body', [{'vin': '1FD'}, {}, {'vin': 12345}, {'vin': TEST_VIN + ' '}])
    def test_decode_invalid_vin(self, client, nhtsa_session, body):
        response = client.post('/api/vin/decode', json=body)
        data, status = get_response_data(response)

        assert status == 400
        assert data == {'success': False, 'error': 'Invalid VIN', 'timestamp': data['timestamp']}
        nhtsa_session.get.assert_not_called()

    def test_decode_not_found(self, client, nhtsa_session):
        nhtsa_session.get.return_value = make_http_response({'Results': []})

        response = client.post('/api/vin/decode', json={'vin': TEST_VIN})
        data, status = get_response_data(response)

        assert status == 404
        assert data['error'] == 'No data found for VIN'

    def test_decode_upstream_failure(self, client, nhtsa_session):
        nhtsa_session.get.side_effect = requests.exceptions.Timeout()

        response = client.post('/api/vin/decode', json={'vin': TEST_VIN})
        data, status = get_response_data(response)

        assert status == 500
        assert data['success'] is False
        assert 'Traceback' not in data['error']

    def test_decode_preflight(self, client):
        response = client.options('/functions/decode-vin')

        assert response.status_code == 204
        assert response.headers['Access-Control-Allow-Origin'] == '*'
        assert 'POST' in response.headers['Access-Control-Allow-Methods']
        assert 'authorization' in response.headers['Access-Control-Allow-Headers']

    def test_validate_endpoint(self, client, nhtsa_session):
        response = client.post('/api/vin/validate', json={'vin': VALID_CHECK_DIGIT_VIN})
        data, status = get_response_data(response)

        assert status == 200
        assert data['data']['check_digit_valid'] is True
        nhtsa_session.get.assert_not_called()


# ================================
# COMPLIANCE ENDPOINT TESTS
# ================================


class TestComplianceEndpoints:
    """Compliance calculation endpoint"""

    def test_calculate(self, client):
        response = client.post('/api/compliance/calculate',
                               json={'vehicleConfigId': 1, 'equipmentConfigId': 7,
                                     'selectedVehicleOptions': [], 'selectedEquipmentOptions': [3]})
        data, status = get_response_data(response)

        assert status == 200
        assert set(data) == {
            'gvwrCompliant', 'gawrFrontCompliant', 'gawrRearCompliant', 'totalCombinedWeight',
            'frontAxleWeight', 'rearAxleWeight', 'payloadRemaining', 'warnings', 'recommendations'
        }
        assert data['gvwrCompliant'] is False
        assert data['payloadRemaining'] == -1000

    def test_function_path(self, client):
        response = client.post('/functions/calculate-compliance', json={'vehicleConfigId': 1})
        data, status = get_response_data(response)

        assert status == 200
        assert data['gvwrCompliant'] is True

    def test_config_not_found(self, client):
        response = client.post('/api/compliance/calculate', json={'vehicleConfigId': 404})
        data, status = get_response_data(response)

        assert status == 404
        assert data == {'error': 'Vehicle config not found'}

    @pytest.mark.parametrize('body', [{}, {'vehicleConfigId': 'abc'}, {'vehicleConfigId': True}])
    def test_bad_request(self, client, body):
        response = client.post('/api/compliance/calculate', json=body)

        assert response.status_code == 400
        assert 'error' in json.loads(response.data)

    def test_store_failure(self, client, services):
        services.compliance.repository = MagicMock()
        services.compliance.repository.get_vehicle_config.side_effect = UpstreamUnavailableError(
            'Vehicle configuration lookup failed')

        response = client.post('/api/compliance/calculate', json={'vehicleConfigId': 1})
        data, status = get_response_data(response)

        assert status == 500
        assert data == {'error': 'Vehicle configuration lookup failed'}

    def test_unexpected_failure_keeps_error_shape(self, client, services):
        services.compliance.repository = MagicMock()
        services.compliance.repository.get_vehicle_config.side_effect = RuntimeError('connection reset')

        response = client.post('/functions/calculate-compliance', json={'vehicleConfigId': 1})
        data, status = get_response_data(response)

        assert status == 500
        assert data == {'error': 'An unexpected error occurred'}


# ================================
# UPLOAD AND HEALTH ENDPOINT TESTS
# ================================


class TestUploadEndpoints:
    """Listing image upload"""

    def test_upload_image(self, client, auth_headers, object_store):
        response = client.post(
            '/api/uploads/images',
            data={'file': (io.BytesIO(b'fake-image-bytes'), 'truck.jpg')},
            headers=auth_headers,
            content_type='multipart/form-data'
        )
        data, status = get_response_data(response)

        assert status == 201
        assert data['data']['url'] == 'https://cdn.example.com/listing.jpg'
        key, content, _content_type = object_store.put.call_args[0]
        assert key.startswith('listings/user-1/')
        assert key.endswith('.jpg')
        assert content == b'fake-image-bytes'

    def test_upload_requires_token(self, client, object_store):
        response = client.post(
            '/api/uploads/images',
            data={'file': (io.BytesIO(b'x'), 'truck.jpg')},
            content_type='multipart/form-data'
        )

        assert response.status_code == 401
        object_store.put.assert_not_called()

    def test_upload_rejects_invalid_token(self, client, object_store):
        response = client.post(
            '/api/uploads/images',
            data={'file': (io.BytesIO(b'x'), 'truck.jpg')},
            headers={'Authorization': 'Bearer not-a-jwt'},
            content_type='multipart/form-data'
        )

        assert response.status_code == 401

    def test_upload_rejects_file_type(self, client, auth_headers, object_store):
        response = client.post(
            '/api/uploads/images',
            data={'file': (io.BytesIO(b'x'), 'truck.exe')},
            headers=auth_headers,
            content_type='multipart/form-data'
        )

        assert response.status_code == 400
        object_store.put.assert_not_called()


class TestHealthChecks:
    """Health and routing"""

    def test_api_health_check(self, client):
        response = client.get('/api/health')
        data, status = get_response_data(response)

        assert status == 200
        assert data['status'] == 'healthy'
        assert data['components']['identity_provider'] == 'configured'
        assert data['components']['object_store'] == 'fake_store'
        assert data['components']['database'] == 'not_configured'

    def test_database_health_not_configured(self, client):
        assert client.get('/api/health/database').status_code == 503

    def test_unknown_endpoint(self, client):
        response = client.get('/api/does-not-exist')
        data, status = get_response_data(response)

        assert status == 404
        assert data['success'] is False

    def test_wrong_method(self, client):
        assert client.get('/api/vin/decode').status_code == 405
