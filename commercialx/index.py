#!/usr/bin/env python3
"""
CommercialX - Main Application Entry Point
Flask application with VIN enrichment, compliance and upload blueprints
"""

import logging

from flask import Flask
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from commercialx.config.app_config import AppConfig
from commercialx.endpoints.compliance_endpoints import calculate_compliance, compliance_bp
from commercialx.endpoints.health_endpoints import health_bp
from commercialx.endpoints.upload_endpoints import upload_bp
from commercialx.endpoints.vin_endpoints import decode_vin, vin_bp
from commercialx.utils.response_helpers import error_response, exception_response
from commercialx.utils.errors import CommercialXError
from commercialx.utils.service_availability import EXTENSION_KEY, build_services

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging(level="INFO"):
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)


def register_blueprints(app):
    """Register all endpoint blueprints"""
    app.register_blueprint(health_bp, url_prefix='/api')
    app.register_blueprint(vin_bp, url_prefix='/api/vin')
    app.register_blueprint(compliance_bp, url_prefix='/api/compliance')
    app.register_blueprint(upload_bp, url_prefix='/api/uploads')

    # Serverless function paths used by existing clients
    app.add_url_rule('/functions/decode-vin', 'decode_vin_function',
                     decode_vin, methods=['POST'])
    app.add_url_rule('/functions/calculate-compliance', 'calculate_compliance_function',
                     calculate_compliance, methods=['POST'])


def register_error_handlers(app):
    """Global error handlers"""

    @app.errorhandler(CommercialXError)
    def handle_service_error(error):
        return exception_response(error)

    @app.errorhandler(404)
    def not_found(error):
        return error_response("Endpoint not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response("Method not allowed", 405)

    @app.errorhandler(413)
    def request_too_large(error):
        return error_response("Request too large", 413)

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle unexpected exceptions"""
        if isinstance(error, HTTPException):
            return error_response(error.description, error.code)
        logger.exception(f"Unexpected error: {error}")
        return error_response("An unexpected error occurred", 500)


def create_app(config=None, services=None):
    """
    Build the Flask application

    Args:
        config (AppConfig): settings, read from the environment when omitted
        services (ServiceRegistry): prebuilt services, mostly for tests
    """
    config = config or AppConfig()
    configure_logging(config.LOG_LEVEL)

    app = Flask(__name__)
    app.config.update(config.get_flask_config())
    app.extensions[EXTENSION_KEY] = services or build_services(config)

    CORS(app,
         origins=config.ALLOWED_ORIGINS,
         allow_headers=config.CORS_ALLOW_HEADERS.split(', '),
         methods=["GET", "POST", "OPTIONS"])

    @app.before_request
    def handle_preflight():
        return config.handle_preflight_request()

    @app.after_request
    def after_request(response):
        return config.handle_cors_response(response)

    register_blueprints(app)
    register_error_handlers(app)

    @app.route('/')
    def root():
        """Root endpoint with API information"""
        return {
            "service": "CommercialX Vehicle Data Service",
            "endpoints": {
                "health": "/api/health",
                "vin_decode": "/api/vin/decode",
                "vin_validate": "/api/vin/validate",
                "compliance": "/api/compliance/calculate",
                "image_upload": "/api/uploads/images"
            }
        }

    return app


# Entry point for serverless deployments
app = create_app()

if __name__ == "__main__":
    app.run(debug=False, host='0.0.0.0', port=5000)
