import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import CORS_ORIGIN, LOG_LEVEL
from app.database import Base, engine
from app import models, models_gestion  # noqa: F401  registra las tablas en Base
from app.routers import (
    admin_boletas, admin_clientes, admin_cortes, admin_descuentos, admin_lecturas, admin_medidores,
    admin_multas, admin_pagos, admin_repactaciones, admin_rutas, admin_subsidios, admin_tarifas,
    auth, portal_cliente,
)
from app.utils.errores import ErrorAPI

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Portal COAB iniciado")
    yield


app = FastAPI(title="COAB - Portal de Clientes y Administración", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGIN,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- ERRORES: siempre {"error": {"code", "message"}} ---
CODIGOS_HTTP = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}


@app.exception_handler(ErrorAPI)
async def manejar_error_api(request: Request, exc: ErrorAPI):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.mensaje}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def manejar_validacion(request: Request, exc: RequestValidationError):
    errores = exc.errors()
    mensaje = "Datos inválidos"
    if errores:
        primero = errores[0]
        campo = ".".join(str(p) for p in primero.get("loc", ()) if p not in ("body", "query", "path"))
        mensaje = f"{campo}: {primero.get('msg')}" if campo else primero.get("msg", mensaje)
    return JSONResponse(
        status_code=400,
        content={"error": {"code": "VALIDATION_ERROR", "message": mensaje}},
    )


@app.exception_handler(StarletteHTTPException)
async def manejar_http(request: Request, exc: StarletteHTTPException):
    codigo = CODIGOS_HTTP.get(exc.status_code, "INTERNAL_ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": codigo, "message": str(exc.detail)}},
    )


@app.exception_handler(Exception)
async def manejar_inesperado(request: Request, exc: Exception):
    logger.exception(f"Error no controlado en {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "Error interno del servidor"}},
    )


# --- RUTAS ---
app.include_router(auth.router)
app.include_router(portal_cliente.router)
# admin_boletas antes que admin_clientes: /admin/clientes/buscar-boleta
app.include_router(admin_boletas.router)
app.include_router(admin_clientes.router)
app.include_router(admin_pagos.router)
app.include_router(admin_medidores.router)
app.include_router(admin_lecturas.router)
app.include_router(admin_multas.router)
app.include_router(admin_subsidios.router)
app.include_router(admin_rutas.router)
app.include_router(admin_repactaciones.router)
app.include_router(admin_tarifas.router)
app.include_router(admin_cortes.router)
app.include_router(admin_descuentos.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
