from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# Modelos de datos
class SyncReport(BaseModel):
    """Reporte periódico que envía cada dispositivo (Arduino)."""

    # Sin validación de rangos: el servidor guarda lo que reporta el equipo
    mac: Any = ""
    salinity: Any = None
    valve: Any = False
    lat: Any = 0
    lng: Any = 0
    address: Optional[Any] = None


class CommandEcho(BaseModel):
    """Instrucción de operación que el dispositivo recibe tras sincronizar."""

    manual_mode: bool = False
    target_salinity: Any = 0
    valve: bool = False


class Location(BaseModel):
    lat: Any = 0
    lng: Any = 0


class DeviceView(BaseModel):
    """Estado de un dispositivo tal como lo consume la app del operador."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    salinity: Any = None
    target_salinity: Any = Field(None, alias="targetSalinity")
    valve: bool = False
    manual_mode: bool = Field(False, alias="manualMode")
    is_final: bool = Field(False, alias="isFinal")
    address: Optional[str] = None
    location: Location = Location()


class DeviceRecord(BaseModel):
    """Fila de la tabla devices, con los valores tal cual están guardados."""

    device_id: str
    name: Optional[str] = None
    salinity: Any = 0
    target_salinity: Any = 100
    valve: Any = 0
    manual_mode: Any = 0
    is_final: Any = 0
    lat: Any = 0
    lng: Any = 0
    address: Optional[Any] = None
    updated_at: Optional[int] = None  # microsegundos desde epoch


class EditResult(str, Enum):
    APPLIED = "applied"
    NO_CHANGES = "no_changes"
