"""
Módulo: Multas
app/routers/admin_multas.py
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
from app.services import multas_service

router = APIRouter(prefix="/admin/multas", tags=["Admin Multas"])


class MultaCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cliente_id: int = Field(..., alias="clienteId")
    monto: Decimal = Field(..., gt=0)
    motivo: str = Field(..., min_length=1, max_length=200)
    descripcion: Optional[str] = None
    fecha_aplicacion: Optional[date] = Field(None, alias="fechaAplicacion")
    periodo_desde: Optional[date] = Field(None, alias="periodoDesde")
    periodo_hasta: Optional[date] = Field(None, alias="periodoHasta")
    afecto_iva: bool = Field(True, alias="afectoIva")


class MultaUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    monto: Optional[Decimal] = Field(None, gt=0)
    motivo: Optional[str] = Field(None, min_length=1, max_length=200)
    descripcion: Optional[str] = None
    fecha_aplicacion: Optional[date] = Field(None, alias="fechaAplicacion")
    periodo_desde: Optional[date] = Field(None, alias="periodoDesde")
    periodo_hasta: Optional[date] = Field(None, alias="periodoHasta")
    afecto_iva: Optional[bool] = Field(None, alias="afectoIva")


class CancelarRequest(BaseModel):
    motivo: str = Field(..., min_length=1, max_length=500)


@router.get("")
async def listar(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    estado: Optional[str] = Query(None, pattern="^(activa|cancelada)$"),
    cliente_id: Optional[int] = Query(None, alias="clienteId"),
    search: Optional[str] = None,
    admin: Perfil = Depends(requiere_permiso("multas", "view")),
    db: Session = Depends(get_db),
):
    return multas_service.listar(db, page, limit, estado, cliente_id, search)


@router.get("/{multa_id}")
async def detalle(
    multa_id: int,
    admin: Perfil = Depends(requiere_permiso("multas", "view")),
    db: Session = Depends(get_db),
):
    return multas_service.serializar(multas_service.obtener_multa(db, multa_id))


@router.post("", status_code=201)
async def crear(
    data: MultaCreate,
    admin: Perfil = Depends(requiere_permiso("multas", "create")),
    db: Session = Depends(get_db),
):
    return multas_service.crear(db, data.model_dump(), admin.email)


@router.patch("/{multa_id}")
async def actualizar(
    multa_id: int,
    data: MultaUpdate,
    admin: Perfil = Depends(requiere_permiso("multas", "edit")),
    db: Session = Depends(get_db),
):
    return multas_service.actualizar(db, multa_id, data.model_dump(exclude_unset=True), admin.email)


@router.post("/{multa_id}/cancelar")
async def cancelar(
    multa_id: int,
    data: CancelarRequest,
    admin: Perfil = Depends(requiere_permiso("multas", "cancel")),
    db: Session = Depends(get_db),
):
    return multas_service.cancelar(db, multa_id, data.motivo, admin.email)
