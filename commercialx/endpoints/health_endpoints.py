"""
Health Check Endpoints
Service status and configuration overview
"""

from datetime import datetime, timezone

from flask import Blueprint, jsonify

from commercialx import __version__
from commercialx.utils.service_availability import get_services

health_bp = Blueprint('health', __name__)


@health_bp.route('/health')
def health_check():
    """Main health check endpoint"""
    services = get_services()

    return jsonify({
        "service": "CommercialX Vehicle Data Service",
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z",
        "components": services.availability(),
        "upstreams": {
            "nhtsa": services.config.NHTSA_API_URL,
            "epa": services.config.EPA_API_URL
        }
    })


@health_bp.route('/health/database')
def database_health():
    """Database connectivity health check"""
    db_manager = get_services().db_manager
    if db_manager is None or not db_manager.available:
        return jsonify({"status": "not_configured"}), 503

    connection_test = db_manager.test_connection()
    status_code = 200 if connection_test['success'] else 503
    return jsonify({
        "status": "connected" if connection_test['success'] else "unavailable",
        **connection_test
    }), status_code
