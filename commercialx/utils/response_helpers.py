#!/usr/bin/env python3
"""
Response Helper Utilities
Standardized response formatting for API endpoints
"""

from datetime import datetime, timezone
from flask import jsonify


def _timestamp():
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + 'Z'


def success_response(data, message=None, status_code=200):
    """
    Create a standardized success response

    Args:
        data: Response data
        message (str): Optional success message
        status_code (int): HTTP status code

    Returns:
        tuple: (response, status_code)
    """
    response = {
        'success': True,
        'data': data,
        'timestamp': _timestamp()
    }

    if message:
        response['message'] = message

    return jsonify(response), status_code


def error_response(message, status_code=400, error_code=None):
    """
    Create a standardized error response

    Args:
        message (str): Error message
        status_code (int): HTTP status code
        error_code (str): Optional error code

    Returns:
        tuple: (response, status_code)
    """
    response = {
        'success': False,
        'error': message,
        'timestamp': _timestamp()
    }

    if error_code:
        response['error_code'] = error_code

    return jsonify(response), status_code


def exception_response(error):
    """Error envelope for a CommercialXError"""
    return error_response(error.message, error.status_code)
