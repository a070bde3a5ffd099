import logging
import queue
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from config import Settings
from models import DeviceRecord

logger = logging.getLogger("saltern_api.database")

_COLUMNS = (
    "mac_address",
    "name",
    "salinity",
    "target_salinity",
    "valve",
    "manual_mode",
    "is_final",
    "lat",
    "lng",
    "address",
    "updated_at",
)

# Columnas que la app del operador puede modificar
EDITABLE_COLUMNS = frozenset(
    ("valve", "manual_mode", "target_salinity", "is_final", "name")
)


class StoreError(Exception):
    """Fallo del almacén (base de datos caída, consulta inválida, pool agotado)."""


class UpsertResult(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


def _now_us() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1_000_000)


def _to_record(row) -> DeviceRecord:
    data = dict(zip(_COLUMNS, row))
    data["device_id"] = data.pop("mac_address")
    return DeviceRecord(**data)


class ConnectionPool:
    """
    Pool fijo de conexiones sqlite3.

    Si todas las conexiones están ocupadas, la petición espera en cola
    hasta que se libere una (o hasta `timeout` segundos, si se indicó).
    """

    def __init__(self, db_path: str, size: int = 10, timeout: Optional[float] = None):
        self.db_path = db_path
        self.size = size
        self.timeout = timeout
        self._idle: "queue.Queue[sqlite3.Connection]" = queue.Queue(maxsize=size)
        self._all: List[sqlite3.Connection] = []

    def open(self):
        for _ in range(self.size):
            conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                isolation_level=None,
                check_same_thread=False,
                uri=self.db_path.startswith("file:"),
            )
            conn.execute("PRAGMA journal_mode=WAL")
            self._all.append(conn)
            self._idle.put(conn)
        logger.info(f"Pool de {self.size} conexiones abierto sobre {self.db_path}")

    def close(self):
        for conn in self._all:
            conn.close()
        self._all.clear()
        self._idle = queue.Queue(maxsize=self.size)
        logger.info("Pool de conexiones cerrado")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._idle.get(timeout=self.timeout)
        except queue.Empty:
            raise StoreError(
                f"No hay conexiones libres tras esperar {self.timeout}s"
            ) from None
        try:
            yield conn
        finally:
            try:
                if conn.in_transaction:
                    conn.rollback()
            finally:
                # la conexión vuelve al pool aunque falle el rollback
                self._idle.put(conn)


# Almacén de registros de dispositivos
class DatabaseManager:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.pool = ConnectionPool(
            settings.db_path, size=settings.pool_size, timeout=settings.pool_timeout
        )

    def open(self):
        try:
            self.pool.open()
        except sqlite3.Error as e:
            self.pool.close()
            raise StoreError(f"No se pudo abrir {self.settings.db_path}: {e}") from e
        self.initialize_db()

    def close(self):
        self.pool.close()

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        try:
            with self.pool.connection() as conn:
                yield conn
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    def initialize_db(self):
        """Crea la tabla devices si no existe"""
        with self.get_connection() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS devices (
                mac_address TEXT PRIMARY KEY NOT NULL,
                name TEXT,
                salinity REAL DEFAULT 0,
                target_salinity REAL DEFAULT 100,
                valve INTEGER DEFAULT 0,
                manual_mode INTEGER DEFAULT 0,
                is_final INTEGER DEFAULT 0,
                lat REAL DEFAULT 0,
                lng REAL DEFAULT 0,
                address TEXT,
                updated_at INTEGER
            )
            """)
        logger.info("Base de datos inicializada correctamente")

    def conditional_upsert(
        self,
        device_id: str,
        salinity: Any,
        valve: Any,
        lat: Any,
        lng: Any,
        address: Any,
    ) -> UpsertResult:
        """
        Inserta el dispositivo o actualiza sus lecturas.

        La válvula solo se sobrescribe si manual_mode no está activo; la
        comprobación y la escritura van en la misma sentencia UPDATE.
        """
        now = _now_us()
        with self.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                """
                INSERT INTO devices (mac_address, salinity, valve, lat, lng, address, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(mac_address) DO NOTHING
                """,
                (device_id, salinity, valve, lat, lng, address, now),
            )
            if cursor.rowcount == 1:
                result = UpsertResult.CREATED
            else:
                conn.execute(
                    """
                    UPDATE devices SET
                        salinity = ?,
                        valve = CASE WHEN manual_mode = 1 THEN valve ELSE ? END,
                        lat = ?,
                        lng = ?,
                        address = ?,
                        updated_at = MAX(?, COALESCE(updated_at, 0) + 1)
                    WHERE mac_address = ?
                    """,
                    (salinity, valve, lat, lng, address, now, device_id),
                )
                result = UpsertResult.UPDATED
            conn.execute("COMMIT")

        return result

    def get(self, device_id: str) -> Optional[DeviceRecord]:
        with self.get_connection() as conn:
            row = conn.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM devices WHERE mac_address = ?",
                (device_id,),
            ).fetchone()

        return _to_record(row) if row else None

    def list_all(self) -> List[DeviceRecord]:
        with self.get_connection() as conn:
            rows = conn.execute(f"SELECT {', '.join(_COLUMNS)} FROM devices").fetchall()

        return [_to_record(row) for row in rows]

    def update_fields(self, device_id: str, columns: Dict[str, Any]) -> int:
        """Actualiza solo las columnas indicadas; devuelve las filas afectadas."""
        unknown = set(columns) - EDITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columnas no editables: {sorted(unknown)}")

        assignments = ", ".join(f"{column} = ?" for column in columns)
        with self.get_connection() as conn:
            cursor = conn.execute(
                f"""
                UPDATE devices
                SET {assignments}, updated_at = MAX(?, COALESCE(updated_at, 0) + 1)
                WHERE mac_address = ?
                """,
                (*columns.values(), _now_us(), device_id),
            )
            return cursor.rowcount
