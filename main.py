from contextlib import asynccontextmanager
from typing import Any, Dict, Mapping, Optional

from fastapi import Body, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
import logging

from config import Settings
from database import DatabaseManager, StoreError
from logic import CommandApplier, FleetViewProjector, ReconciliationEngine
from models import CommandEcho, DeviceView, EditResult, SyncReport

logger = logging.getLogger("saltern_api")


def configure_logging(settings: Settings):
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Construye la aplicación con su propio almacén y componentes."""
    settings = settings or Settings.from_env()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db_manager = DatabaseManager(settings)
        try:
            db_manager.open()
        except StoreError as e:
            logger.error(f"Fallo al inicializar la base de datos: {e}")
            db_manager.close()
            raise

        app.state.db_manager = db_manager
        app.state.engine = ReconciliationEngine(db_manager)
        app.state.projector = FleetViewProjector(db_manager)
        app.state.applier = CommandApplier(db_manager)
        logger.info(f"Servidor listo (db={settings.db_path}, pool={settings.pool_size})")

        yield

        db_manager.close()

    app = FastAPI(title="Sistema de Control de Salinas", lifespan=lifespan)
    app.state.settings = settings

    # Configurar CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_endpoints(app)
    return app


def get_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.engine


def get_projector(request: Request) -> FleetViewProjector:
    return request.app.state.projector


def get_applier(request: Request) -> CommandApplier:
    return request.app.state.applier


def _register_endpoints(app: FastAPI):
    # Los endpoints son síncronos: FastAPI los ejecuta en su threadpool y
    # cada uno toma una conexión del pool mientras dura la consulta.

    @app.post("/api/device/sync", response_model=CommandEcho)
    def sync_device(
        body: Any = Body(default=None),
        engine: ReconciliationEngine = Depends(get_engine),
    ):
        """Arduino: guarda la lectura del sensor y devuelve el comando actual."""
        # Un cuerpo vacío o que no es un objeto se trata como sync sin MAC
        if isinstance(body, Mapping):
            report = SyncReport.model_validate(body)
        else:
            report = SyncReport()
        try:
            return engine.sync(report)
        except StoreError as e:
            logger.error(f"Error en sync de {report.mac}: {e}")
            return PlainTextResponse("Server Error", status_code=500)

    @app.get("/api/devices", response_model=Dict[str, DeviceView])
    def list_devices(projector: FleetViewProjector = Depends(get_projector)):
        """App: estado de todos los equipos, indexado por MAC."""
        try:
            return projector.list_all()
        except StoreError as e:
            logger.error(f"Error al listar dispositivos: {e}")
            return PlainTextResponse("DB Error", status_code=500)

    @app.put("/api/device/{mac}")
    def edit_device(
        mac: str,
        body: Any = Body(default=None),
        applier: CommandApplier = Depends(get_applier),
    ):
        """App: control y ajustes (válvula, modo manual, objetivo, nombre...)."""
        try:
            result = applier.apply_edit(mac, body)
        except StoreError as e:
            logger.error(f"Error al editar {mac}: {e}")
            return PlainTextResponse(str(e), status_code=500)

        if result is EditResult.NO_CHANGES:
            return PlainTextResponse("No changes")
        return {"success": True}

    @app.get("/")
    def root():
        """Endpoint raíz para verificar que la API está funcionando."""
        return {
            "mensaje": "API de Control de Salinas funcionando correctamente",
            "endpoints": [
                {
                    "ruta": "/api/device/sync",
                    "método": "POST",
                    "descripción": "Sincronizar lectura del dispositivo",
                },
                {
                    "ruta": "/api/devices",
                    "método": "GET",
                    "descripción": "Estado de todos los dispositivos",
                },
                {
                    "ruta": "/api/device/{mac}",
                    "método": "PUT",
                    "descripción": "Editar un dispositivo",
                },
            ],
            "version": "1.0.0",
        }


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
