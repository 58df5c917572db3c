"""
Módulo: Portal del Cliente
app/routers/portal_cliente.py

Endpoints /clientes/me/* para el cliente autenticado, más los avisos
públicos del portal.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.database import get_db
from app.middleware.autorizacion import requiere_cliente
from app.models import Cliente
from app.services import auth_service, autopago_service, cliente_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/clientes", tags=["Portal Cliente"])


# ============================================================
# SCHEMAS
# ============================================================

class ActualizarPerfilRequest(BaseModel):
    correo: Optional[str] = Field(None, max_length=150)
    telefono: Optional[str] = Field(None, max_length=20)


class CambiarContrasenaRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    contrasena_actual: str = Field(..., alias="contrasenaActual", min_length=1)
    contrasena_nueva: str = Field(..., alias="contrasenaNueva", min_length=1)


class ActivarAutopagoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tarjeta_id: int = Field(..., alias="tarjetaId")


class SolicitudRepactacionRequest(BaseModel):
    cuotas: int = Field(..., ge=2, le=48)
    motivo: Optional[str] = Field(None, max_length=1000)


# ============================================================
# AVISOS PÚBLICOS
# ============================================================
@router.get("/notificaciones")
async def notificaciones(db: Session = Depends(get_db)):
    return {"notificaciones": cliente_service.notificaciones_activas(db)}


# ============================================================
# PERFIL
# ============================================================
@router.get("/me")
async def mi_perfil(cliente: Cliente = Depends(requiere_cliente)):
    return cliente_service.perfil_cliente(cliente)


@router.patch("/me")
async def actualizar_mi_perfil(
    data: ActualizarPerfilRequest,
    cliente: Cliente = Depends(requiere_cliente),
    db: Session = Depends(get_db),
):
    return cliente_service.actualizar_perfil(db, cliente, data.correo, data.telefono)


@router.post("/me/cambiar-contrasena")
async def cambiar_contrasena(
    data: CambiarContrasenaRequest,
    cliente: Cliente = Depends(requiere_cliente),
    db: Session = Depends(get_db),
):
    return auth_service.cambiar_contrasena(db, cliente, data.contrasena_actual, data.contrasena_nueva)


# ============================================================
# SALDO, PAGOS, BOLETAS
# ============================================================
@router.get("/me/saldo")
async def mi_saldo(cliente: Cliente = Depends(requiere_cliente), db: Session = Depends(get_db)):
    return cliente_service.saldo_cliente(db, cliente.id)


@router.get("/me/pagos")
async def mis_pagos(
    cursor: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    cliente: Cliente = Depends(requiere_cliente),
    db: Session = Depends(get_db),
):
    return cliente_service.pagos_cliente(db, cliente.id, cursor, limit)


@router.get("/me/boletas")
async def mis_boletas(
    cursor: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    cliente: Cliente = Depends(requiere_cliente),
    db: Session = Depends(get_db),
):
    return cliente_service.boletas_cliente(db, cliente.id, cursor, limit)


@router.get("/me/boletas/{boleta_id}")
async def mi_boleta(
    boleta_id: int,
    cliente: Cliente = Depends(requiere_cliente),
    db: Session = Depends(get_db),
):
    return cliente_service.boleta_detalle(db, cliente.id, boleta_id)


# ============================================================
# PAGO AUTOMÁTICO
# ============================================================
@router.get("/me/autopago")
async def mi_autopago(cliente: Cliente = Depends(requiere_cliente), db: Session = Depends(get_db)):
    return {
        **autopago_service.estado_autopago(db, cliente.id),
        "historial": autopago_service.historial_autopago(db, cliente.id, 10),
    }


@router.post("/me/autopago/activar")
async def activar_autopago(
    data: ActivarAutopagoRequest,
    cliente: Cliente = Depends(requiere_cliente),
    db: Session = Depends(get_db),
):
    resultado = autopago_service.activar_autopago(db, cliente, data.tarjeta_id)
    logger.info(f"Cliente {cliente.id} activó pago automático con tarjeta {data.tarjeta_id}")
    return resultado


@router.post("/me/autopago/desactivar")
async def desactivar_autopago(cliente: Cliente = Depends(requiere_cliente), db: Session = Depends(get_db)):
    resultado = autopago_service.desactivar_autopago(db, cliente)
    logger.info(f"Cliente {cliente.id} desactivó pago automático")
    return resultado


# ============================================================
# REPACTACIÓN
# ============================================================
@router.post("/me/repactacion", status_code=201)
async def solicitar_repactacion(
    data: SolicitudRepactacionRequest,
    request: Request,
    cliente: Cliente = Depends(requiere_cliente),
    db: Session = Depends(get_db),
):
    ip = request.client.host if request.client else None
    return cliente_service.solicitar_repactacion(db, cliente, data.cuotas, data.motivo, ip)


@router.get("/me/solicitudes-repactacion")
async def mis_solicitudes(cliente: Cliente = Depends(requiere_cliente), db: Session = Depends(get_db)):
    return {"solicitudes": cliente_service.solicitudes_cliente(db, cliente.id)}
