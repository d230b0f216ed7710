"""
Upload Endpoints
Listing image uploads to the configured object store
"""

import logging
import uuid
from datetime import datetime, timezone

from flask import Blueprint, g, request

from commercialx.utils.auth_decorators import token_required
from commercialx.utils.errors import CommercialXError
from commercialx.utils.response_helpers import error_response, exception_response, success_response
from commercialx.utils.service_availability import get_services

logger = logging.getLogger(__name__)

upload_bp = Blueprint('uploads', __name__)


def build_image_key(user_id, filename):
    timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
    unique_id = str(uuid.uuid4())[:8]
    extension = filename.rsplit('.', 1)[1].lower()
    return f"listings/{user_id}/{timestamp}_{unique_id}.{extension}"


@upload_bp.route('/images', methods=['POST'])
@token_required
def upload_image():
    """Upload one listing image (multipart field "file")"""
    services = get_services()
    config = services.config

    if services.object_store is None:
        return error_response('Image storage is not configured', 503)

    file = request.files.get('file')
    if file is None or not file.filename:
        return error_response('No image file provided', 400)

    if not config.allowed_file(file.filename, 'image'):
        allowed = ', '.join(sorted(config.ALLOWED_IMAGE_EXTENSIONS))
        return error_response(f'Invalid file type. Allowed: {allowed}', 400)

    size_ok, size_message = config.validate_file_size(file, 'image')
    if not size_ok:
        return error_response(size_message, 400)

    key = build_image_key(g.principal.user_id, file.filename)
    content = file.read()
    content_type = file.mimetype or 'application/octet-stream'

    try:
        url = services.retry_policy.call(
            lambda: services.object_store.put(key, content, content_type))
    except CommercialXError as e:
        logger.error(f"Image upload failed for {key}: {e.message}")
        return exception_response(e)

    logger.info(f"Stored listing image {key} ({len(content)} bytes)")
    return success_response({'key': key, 'url': url, 'size': len(content)}, status_code=201)
