#!/usr/bin/env python3
"""
Object Storage Service
Listing image storage behind a small put/get interface
"""

import logging
from typing import Optional
from urllib.parse import quote

import requests

from commercialx.utils.errors import NotFoundError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

VERCEL_BLOB_URL = 'https://blob.vercel-storage.com'


def normalize_key(key: str) -> str:
    return key.lstrip('/')


class ObjectStore:
    """put(key, data) -> url and get(key) -> url"""

    name = 'object_store'

    def put(self, key: str, data: bytes, content_type: str = 'application/octet-stream') -> str:
        raise NotImplementedError

    def get(self, key: str) -> str:
        raise NotImplementedError


class StorageProxyObjectStore(ObjectStore):
    """REST storage proxy exposing v1/storage/upload and v1/storage/downloadUrl"""

    name = 'storage_proxy'

    def __init__(self, base_url: str, api_key: str, timeout: float = 60,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/') + '/'
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self):
        return {'Authorization': f'Bearer {self.api_key}'}

    def put(self, key, data, content_type='application/octet-stream'):
        key = normalize_key(key)
        filename = key.rsplit('/', 1)[-1] or 'file'
        try:
            response = self.session.post(
                f"{self.base_url}v1/storage/upload",
                params={'path': key},
                files={'file': (filename, data, content_type)},
                headers=self._headers(),
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Storage upload error for {key}: {e}")
            raise UpstreamUnavailableError('Storage upload failed', transient=True) from e

        if response.status_code not in (200, 201):
            logger.error(f"Storage upload failed: HTTP {response.status_code} - {response.text}")
            raise UpstreamUnavailableError(f'Storage upload failed: HTTP {response.status_code}')

        url = response.json().get('url')
        return url or self.get(key)

    def get(self, key):
        key = normalize_key(key)
        try:
            response = self.session.get(
                f"{self.base_url}v1/storage/downloadUrl",
                params={'path': key},
                headers=self._headers(),
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Storage download URL error for {key}: {e}")
            raise UpstreamUnavailableError('Storage lookup failed', transient=True) from e

        if response.status_code == 404:
            raise NotFoundError(f'Object not found: {key}')
        if response.status_code != 200:
            raise UpstreamUnavailableError(f'Storage lookup failed: HTTP {response.status_code}')

        url = response.json().get('url')
        if not url:
            raise NotFoundError(f'Object not found: {key}')
        return url


class VercelBlobObjectStore(ObjectStore):
    """Vercel Blob REST API; objects are public, so get() builds the URL directly"""

    name = 'vercel_blob'

    def __init__(self, token: str, base_url: str = VERCEL_BLOB_URL, timeout: float = 60,
                 session: Optional[requests.Session] = None):
        self.token = token
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def put(self, key, data, content_type='application/octet-stream'):
        key = normalize_key(key)
        url = f"{self.base_url}/{quote(key)}"
        headers = {
            'Authorization': f'Bearer {self.token}',
            'X-Content-Type': content_type
        }

        try:
            response = self.session.put(url, data=data, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Vercel Blob upload error for {key}: {e}")
            raise UpstreamUnavailableError('Storage upload failed', transient=True) from e

        if response.status_code not in (200, 201):
            logger.error(f"Vercel Blob upload failed: HTTP {response.status_code} - {response.text}")
            raise UpstreamUnavailableError(f'Storage upload failed: HTTP {response.status_code}')

        return response.json().get('url', url)

    def get(self, key):
        return f"{self.base_url}/{quote(normalize_key(key))}"


def build_object_store(config) -> Optional[ObjectStore]:
    """Storage proxy when configured, otherwise Vercel Blob, otherwise None"""
    if config.STORAGE_API_URL and config.STORAGE_API_KEY:
        return StorageProxyObjectStore(config.STORAGE_API_URL, config.STORAGE_API_KEY)
    if config.VERCEL_BLOB_READ_WRITE_TOKEN:
        return VercelBlobObjectStore(config.VERCEL_BLOB_READ_WRITE_TOKEN)
    logger.info("No object store configured; image uploads are disabled")
    return None
