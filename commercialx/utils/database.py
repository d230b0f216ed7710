"""
Database Utilities and Connection Management
PostgreSQL connection pooling and read-only access to vehicle and equipment configurations
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from commercialx.utils.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Database connection manager with a lazily created connection pool"""

    def __init__(self, database_url=None, pool_size_min=1, pool_size_max=10):
        self.database_url = database_url
        self.pool_size_min = pool_size_min
        self.pool_size_max = pool_size_max
        self.available = bool(self.database_url)
        self.pool = None
        self._pool_lock = threading.Lock()

    def _get_pool(self):
        if self.pool is None:
            with self._pool_lock:
                if self.pool is None:
                    self.pool = ThreadedConnectionPool(
                        self.pool_size_min,
                        self.pool_size_max,
                        self.database_url
                    )
                    logger.info(
                        f"Database connection pool initialized "
                        f"({self.pool_size_min}-{self.pool_size_max} connections)"
                    )
        return self.pool

    @contextmanager
    def get_connection(self):
        """Get database connection from pool"""
        if not self.available:
            raise UpstreamUnavailableError("Database not configured")

        pool = self._get_pool()
        conn = pool.getconn()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    @contextmanager
    def get_cursor(self, cursor_factory=None):
        """Get database cursor with automatic connection management"""
        with self.get_connection() as conn:
            cursor = conn.cursor(cursor_factory=cursor_factory)
            try:
                yield cursor, conn
            finally:
                cursor.close()

    def test_connection(self) -> Dict[str, Any]:
        """Test database connection and return timing"""
        if not self.available:
            return {
                'success': False,
                'error': 'Database not configured'
            }

        start_time = time.time()
        try:
            with self.get_cursor() as (cursor, conn):
                cursor.execute('SELECT 1;')
                cursor.fetchone()
            return {
                'success': True,
                'connection_time_ms': round((time.time() - start_time) * 1000, 2)
            }
        except (psycopg2.Error, UpstreamUnavailableError) as e:
            logger.error(f"Database connection test failed: {e}")
            return {
                'success': False,
                'error': 'Database connection failed',
                'connection_time_ms': round((time.time() - start_time) * 1000, 2)
            }

    def execute_query(self, query, params: tuple = None, fetch: str = 'all') -> Dict[str, Any]:
        """Execute a read query; failures are reported in the result rather than raised"""
        if not self.available:
            return {'success': False, 'error': 'Database not available'}

        try:
            with self.get_cursor(cursor_factory=RealDictCursor) as (cursor, conn):
                cursor.execute(query, params)

                if fetch == 'all':
                    result = cursor.fetchall()
                elif fetch == 'one':
                    result = cursor.fetchone()
                else:
                    result = None

                return {
                    'success': True,
                    'data': result,
                    'rowcount': cursor.rowcount
                }

        except psycopg2.Error as e:
            logger.error(f"Database query failed: {e}")
            return {
                'success': False,
                'error': str(e)
            }

    def close(self):
        if self.pool is not None:
            self.pool.closeall()
            self.pool = None


class VehicleConfigRepository:
    """Read-only lookups used by the compliance calculator"""

    def __init__(self, db_manager: DatabaseManager,
                 vehicle_schema='03. Vehicle Data', equipment_schema='04. Equipment Data'):
        self.db = db_manager
        self.vehicle_schema = vehicle_schema
        self.equipment_schema = equipment_schema

    def get_vehicle_config(self, vehicle_config_id: int) -> Optional[Dict[str, Any]]:
        """
        Vehicle configuration joined with its parent vehicle

        Returns None when no configuration has the id. Raises
        UpstreamUnavailableError when the store cannot be queried.
        """
        query = sql.SQL(
            "SELECT vc.*, v.curb_weight, v.gvwr, v.gawr_front, v.gawr_rear "
            "FROM {config} vc "
            "LEFT JOIN {vehicle} v ON v.id = vc.vehicle_id "
            "WHERE vc.id = %s"
        ).format(
            config=sql.Identifier(self.vehicle_schema, 'vehicle_config'),
            vehicle=sql.Identifier(self.vehicle_schema, 'vehicle'),
        )

        result = self.db.execute_query(query, (vehicle_config_id,), fetch='one')
        if not result['success']:
            raise UpstreamUnavailableError('Vehicle configuration lookup failed')
        return dict(result['data']) if result['data'] else None

    def get_equipment_config(self, equipment_config_id: int) -> Optional[Dict[str, Any]]:
        """
        Equipment configuration joined with its equipment record

        Returns None when the configuration is missing or the lookup fails;
        equipment is optional input to a compliance check.
        """
        query = sql.SQL(
            "SELECT ec.*, e.weight AS equipment_weight "
            "FROM {config} ec "
            "LEFT JOIN {equipment} e ON e.id = ec.equipment_id "
            "WHERE ec.id = %s"
        ).format(
            config=sql.Identifier(self.equipment_schema, 'equipment_config'),
            equipment=sql.Identifier(self.equipment_schema, 'equipment'),
        )

        result = self.db.execute_query(query, (equipment_config_id,), fetch='one')
        if not result['success']:
            logger.warning(
                f"Equipment configuration {equipment_config_id} lookup failed: {result.get('error')}"
            )
            return None
        return dict(result['data']) if result['data'] else None
