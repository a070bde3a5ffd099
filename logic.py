import logging
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from database import DatabaseManager, UpsertResult
from models import CommandEcho, DeviceRecord, DeviceView, EditResult, Location, SyncReport

logger = logging.getLogger("saltern_api.logic")

# Instrucción para un equipo recién registrado. target_salinity es 0 y no el
# 100 de la tabla: el firmware lo usa para saber que aún no está configurado.
BOOTSTRAP_COMMAND = CommandEcho(manual_mode=False, target_salinity=0, valve=False)


def normalize_device_id(raw: Any) -> str:
    """MAC en mayúsculas y sin espacios."""
    if raw is None:
        return ""
    return str(raw).strip().upper()


def as_flag(value: Any) -> bool:
    """Convierte la columna 0/1 a booleano: solo 1 es verdadero (2 o -1 son False)."""
    return value == 1


def _flag_column(value: Any) -> Any:
    # true/false de JSON se guardan como 1/0; el resto se guarda tal cual
    if isinstance(value, bool):
        return int(value)
    return value


def _as_is(value: Any) -> Any:
    return value


class EditableField(Enum):
    """Campos que la app del operador puede cambiar, con su columna y setter."""

    VALVE = ("valve", "valve", _flag_column)
    MANUAL_MODE = ("manualMode", "manual_mode", _flag_column)
    TARGET_SALINITY = ("targetSalinity", "target_salinity", _as_is)
    IS_FINAL = ("isFinal", "is_final", _flag_column)
    NAME = ("name", "name", _as_is)

    def __init__(self, api_name: str, column: str, setter: Callable[[Any], Any]):
        self.api_name = api_name
        self.column = column
        self.setter = setter

    @classmethod
    def from_api_name(cls, name: Any) -> Optional["EditableField"]:
        for field in cls:
            if field.api_name == name:
                return field
        return None


class ReconciliationEngine:
    """Fusiona el reporte del dispositivo con el estado que fijó el operador."""

    def __init__(self, store: DatabaseManager):
        self.store = store

    def sync(self, report: SyncReport) -> CommandEcho:
        """
        Guarda la lectura del dispositivo y devuelve su instrucción de control.

        En modo manual la válvula reportada se ignora; en modo automático
        pasa a ser la válvula guardada. Un equipo nuevo recibe siempre
        BOOTSTRAP_COMMAND.
        """
        device_id = normalize_device_id(report.mac)
        if not device_id:
            logger.warning("Sync recibido sin MAC - se ignora")
            return BOOTSTRAP_COMMAND.model_copy()

        result = self.store.conditional_upsert(
            device_id,
            salinity=report.salinity,
            valve=_flag_column(report.valve),
            lat=report.lat,
            lng=report.lng,
            address=report.address,
        )

        if result is UpsertResult.CREATED:
            logger.info(f"Nuevo dispositivo registrado: {device_id}")
            return BOOTSTRAP_COMMAND.model_copy()

        record = self.store.get(device_id)
        if record is None:
            return BOOTSTRAP_COMMAND.model_copy()

        command = CommandEcho(
            manual_mode=as_flag(record.manual_mode),
            target_salinity=record.target_salinity,
            valve=as_flag(record.valve),
        )
        logger.info(
            f"Sync {device_id}: salinidad={report.salinity} "
            f"modo={'manual' if command.manual_mode else 'auto'} válvula={command.valve}"
        )
        return command


def project_record(record: DeviceRecord) -> DeviceView:
    return DeviceView(
        name=record.name,
        salinity=record.salinity,
        target_salinity=record.target_salinity,
        valve=as_flag(record.valve),
        manual_mode=as_flag(record.manual_mode),
        is_final=as_flag(record.is_final),
        address=record.address,
        location=Location(lat=record.lat, lng=record.lng),
    )


class FleetViewProjector:
    def __init__(self, store: DatabaseManager):
        self.store = store

    def list_all(self) -> Dict[str, DeviceView]:
        """{ "MAC": {datos...}, "MAC2": {...} } con todos los equipos."""
        return {record.device_id: project_record(record) for record in self.store.list_all()}


class CommandApplier:
    def __init__(self, store: DatabaseManager):
        self.store = store

    def apply_edit(self, device_id: Any, fields: Any) -> EditResult:
        """
        Aplica una edición parcial del operador.

        Las claves fuera de EditableField se ignoran sin error. Si no queda
        ninguna, no se toca la fila y se devuelve EditResult.NO_CHANGES.
        Una MAC inexistente no es un error: el UPDATE no afecta filas.
        """
        columns: Dict[str, Any] = {}
        if isinstance(fields, Mapping):
            for key, value in fields.items():
                field = EditableField.from_api_name(key)
                if field is None:
                    continue
                columns[field.column] = field.setter(value)

        if not columns:
            return EditResult.NO_CHANGES

        device_id = normalize_device_id(device_id)
        matched = self.store.update_fields(device_id, columns)
        if matched == 0:
            logger.info(f"Edición para {device_id!r} no coincidió con ningún dispositivo")
        else:
            logger.info(f"Dispositivo {device_id} actualizado: {sorted(columns)}")
        return EditResult.APPLIED
