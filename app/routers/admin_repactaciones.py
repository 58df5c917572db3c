"""
Módulo: Repactaciones
app/routers/admin_repactaciones.py

Convenios de pago y revisión de solicitudes de los clientes.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.database import get_db
from app.middleware.autorizacion import requiere_permiso
from app.models import Perfil
from app.services import repactaciones_service

router = APIRouter(prefix="/admin", tags=["Admin Repactaciones"])


class RepactacionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    numero_cliente: str = Field(..., alias="numeroCliente", min_length=1)
    monto_deuda_inicial: Decimal = Field(..., alias="montoDeudaInicial", gt=0)
    total_cuotas: int = Field(..., alias="totalCuotas", ge=1, le=120)
    fecha_inicio: Optional[date] = Field(None, alias="fechaInicio")
    numero_convenio: Optional[str] = Field(None, alias="numeroConvenio", max_length=30)
    monto_cuota_inicial: Optional[Decimal] = Field(None, alias="montoCuotaInicial", ge=0)
    monto_cuota_base: Optional[Decimal] = Field(None, alias="montoCuotaBase", ge=0)
    observaciones: Optional[str] = None


class RepactacionUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    numero_convenio: Optional[str] = Field(None, alias="numeroConvenio", max_length=30)
    monto_deuda_inicial: Optional[Decimal] = Field(None, alias="montoDeudaInicial", gt=0)
    total_cuotas: Optional[int] = Field(None, alias="totalCuotas", ge=1, le=120)
    fecha_inicio: Optional[date] = Field(None, alias="fechaInicio")
    fecha_termino_real: Optional[date] = Field(None, alias="fechaTerminoReal")
    estado: Optional[str] = Field(None, pattern="^(activo|completado|cancelado)$")
    observaciones: Optional[str] = None


class RechazoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    motivo_rechazo: str = Field(..., alias="motivoRechazo", min_length=1)


# ============================================================
# REPACTACIONES
# ============================================================
@router.get("/repactaciones")
async def listar(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    estado: Optional[str] = None,
    sort_by: str = Query("fechaInicio", alias="sortBy", pattern="^(cliente|monto|fechaInicio|estado)$"),
    sort_direction: str = Query("desc", alias="sortDirection", pattern="^(asc|desc)$"),
    admin: Perfil = Depends(requiere_permiso("repactaciones", "view")),
    db: Session = Depends(get_db),
):
    return repactaciones_service.listar(db, page, limit, estado, sort_by, sort_direction)


@router.get("/repactaciones/{repactacion_id}")
async def detalle(
    repactacion_id: int,
    admin: Perfil = Depends(requiere_permiso("repactaciones", "view")),
    db: Session = Depends(get_db),
):
    return repactaciones_service.detalle(db, repactacion_id)


@router.post("/repactaciones", status_code=201)
async def crear(
    data: RepactacionCreate,
    admin: Perfil = Depends(requiere_permiso("repactaciones", "create")),
    db: Session = Depends(get_db),
):
    return repactaciones_service.crear(db, data.model_dump(), admin.email)


@router.patch("/repactaciones/{repactacion_id}")
async def actualizar(
    repactacion_id: int,
    data: RepactacionUpdate,
    admin: Perfil = Depends(requiere_permiso("repactaciones", "edit")),
    db: Session = Depends(get_db),
):
    return repactaciones_service.actualizar(
        db, repactacion_id, data.model_dump(exclude_unset=True), admin.email
    )


@router.post("/repactaciones/{repactacion_id}/cancelar")
async def cancelar(
    repactacion_id: int,
    admin: Perfil = Depends(requiere_permiso("repactaciones", "cancel")),
    db: Session = Depends(get_db),
):
    return repactaciones_service.cancelar(db, repactacion_id, admin.email)


@router.post("/repactaciones/{repactacion_id}/completar")
async def completar(
    repactacion_id: int,
    admin: Perfil = Depends(requiere_permiso("repactaciones", "edit")),
    db: Session = Depends(get_db),
):
    return repactaciones_service.completar(db, repactacion_id, admin.email)


@router.delete("/repactaciones/{repactacion_id}")
async def eliminar(
    repactacion_id: int,
    admin: Perfil = Depends(requiere_permiso("repactaciones", "delete")),
    db: Session = Depends(get_db),
):
    return repactaciones_service.eliminar(db, repactacion_id, admin.email)


# ============================================================
# SOLICITUDES
# ============================================================
@router.get("/solicitudes-repactacion")
async def listar_solicitudes(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    estado: Optional[str] = Query(None, pattern="^(pendiente|aprobada|rechazada)$"),
    admin: Perfil = Depends(requiere_permiso("solicitudes_repactacion", "view")),
    db: Session = Depends(get_db),
):
    return repactaciones_service.listar_solicitudes(db, page, limit, estado)


@router.post("/solicitudes-repactacion/{solicitud_id}/aprobar")
async def aprobar(
    solicitud_id: int,
    admin: Perfil = Depends(requiere_permiso("solicitudes_repactacion", "approve_request")),
    db: Session = Depends(get_db),
):
    return repactaciones_service.aprobar_solicitud(db, solicitud_id, admin.email)


@router.post("/solicitudes-repactacion/{solicitud_id}/rechazar")
async def rechazar(
    solicitud_id: int,
    data: RechazoRequest,
    admin: Perfil = Depends(requiere_permiso("solicitudes_repactacion", "approve_request")),
    db: Session = Depends(get_db),
):
    return repactaciones_service.rechazar_solicitud(db, solicitud_id, data.motivo_rechazo, admin.email)
