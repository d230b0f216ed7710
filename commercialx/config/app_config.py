"""
Application Configuration Management
Centralized configuration for the CommercialX vehicle data service
"""

import os
from flask import request, make_response


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value not in (None, '') else default


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value not in (None, '') else default


class AppConfig:
    """Centralized application configuration"""

    def __init__(self, **overrides):
        # Database configuration
        self.DATABASE_URL = os.environ.get('DATABASE_URL')
        self.DB_POOL_MIN = _env_int('DB_POOL_MIN', 1)
        self.DB_POOL_MAX = _env_int('DB_POOL_MAX', 10)
        self.VEHICLE_SCHEMA = os.environ.get('VEHICLE_SCHEMA', '03. Vehicle Data')
        self.EQUIPMENT_SCHEMA = os.environ.get('EQUIPMENT_SCHEMA', '04. Equipment Data')

        # Upstream registries
        self.NHTSA_API_URL = os.environ.get(
            'NHTSA_API_URL', 'https://vpic.nhtsa.dot.gov/api/vehicles')
        self.EPA_API_URL = os.environ.get(
            'EPA_API_URL', 'https://www.fueleconomy.gov/ws/rest')
        self.HTTP_TIMEOUT_SECONDS = _env_float('HTTP_TIMEOUT_SECONDS', 10.0)

        # Retry policy for upstream calls
        self.RETRY_MAX_ATTEMPTS = _env_int('RETRY_MAX_ATTEMPTS', 3)
        self.RETRY_INITIAL_DELAY_SECONDS = _env_float('RETRY_INITIAL_DELAY_SECONDS', 1.0)
        self.RETRY_MAX_DELAY_SECONDS = _env_float('RETRY_MAX_DELAY_SECONDS', 10.0)
        self.EPA_MAX_ATTEMPTS = _env_int('EPA_MAX_ATTEMPTS', 1)

        # Compliance settings
        self.FRONT_AXLE_RATIO = _env_float('FRONT_AXLE_RATIO', 0.4)
        self.LOW_PAYLOAD_THRESHOLD_LBS = _env_int('LOW_PAYLOAD_THRESHOLD_LBS', 500)

        # Identity provider
        self.JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY')
        self.JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')

        # Object storage: storage proxy first, Vercel Blob as fallback
        self.STORAGE_API_URL = os.environ.get('STORAGE_API_URL')
        self.STORAGE_API_KEY = os.environ.get('STORAGE_API_KEY')
        self.VERCEL_BLOB_READ_WRITE_TOKEN = os.environ.get('BLOB_READ_WRITE_TOKEN')

        # File upload settings
        self.ALLOWED_IMAGE_EXTENSIONS = {'jpg', 'jpeg', 'png', 'gif', 'webp'}
        self.MAX_IMAGE_SIZE = 10 * 1024 * 1024   # 10MB

        # CORS configuration
        origins = os.environ.get('CORS_ALLOWED_ORIGINS', '*')
        self.ALLOWED_ORIGINS = [o.strip() for o in origins.split(',') if o.strip()]
        self.CORS_ALLOW_HEADERS = 'authorization, x-client-info, apikey, content-type'
        self.CORS_ALLOW_METHODS = 'GET, POST, OPTIONS'

        # Flask configuration
        self.SECRET_KEY = os.environ.get('SECRET_KEY', 'commercialx-dev-secret')
        self.LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown configuration key: {key}")
            setattr(self, key, value)

    @property
    def allow_any_origin(self):
        return '*' in self.ALLOWED_ORIGINS

    def get_flask_config(self):
        """Get Flask configuration dictionary"""
        return {
            'SECRET_KEY': self.SECRET_KEY,
            'DEBUG': False,
            'TESTING': False,
            'MAX_CONTENT_LENGTH': 16 * 1024 * 1024  # 16MB max request size
        }

    def _allowed_origin_header(self):
        origin = request.headers.get('Origin')
        if self.allow_any_origin or origin is None:
            return '*'
        if origin in self.ALLOWED_ORIGINS:
            return origin
        return None

    def handle_cors_response(self, response):
        """Handle CORS headers for responses"""
        allowed = self._allowed_origin_header()
        if allowed:
            response.headers['Access-Control-Allow-Origin'] = allowed
        response.headers['Access-Control-Allow-Headers'] = self.CORS_ALLOW_HEADERS
        response.headers['Access-Control-Allow-Methods'] = self.CORS_ALLOW_METHODS
        return response

    def handle_preflight_request(self):
        """Handle CORS preflight requests"""
        if request.method == "OPTIONS":
            response = make_response('', 204)
            allowed = self._allowed_origin_header()
            if allowed:
                response.headers['Access-Control-Allow-Origin'] = allowed
            response.headers['Access-Control-Allow-Headers'] = self.CORS_ALLOW_HEADERS
            response.headers['Access-Control-Allow-Methods'] = self.CORS_ALLOW_METHODS
            response.headers['Access-Control-Max-Age'] = '3600'
            return response
        return None

    def allowed_file(self, filename, file_type='image'):
        """Check if file type is allowed"""
        if not filename or '.' not in filename:
            return False

        extension = filename.rsplit('.', 1)[1].lower()

        if file_type == 'image':
            return extension in self.ALLOWED_IMAGE_EXTENSIONS
        return False

    def validate_file_size(self, file, file_type='image'):
        """Validate file size"""
        file.seek(0, os.SEEK_END)
        file_size = file.tell()
        file.seek(0)

        max_size = self.MAX_IMAGE_SIZE

        if file_size > max_size:
            max_mb = max_size / (1024 * 1024)
            return False, f"File too large. Maximum size: {max_mb}MB"

        return True, "File size OK"
