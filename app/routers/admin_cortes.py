"""
Módulo: Cortes de Servicio
app/routers/admin_cortes.py
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
from app.services import cortes_service

router = APIRouter(prefix="/admin/cortes", tags=["Admin Cortes"])


class CorteCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    numero_cliente: str = Field(..., alias="numeroCliente", min_length=1)
    motivo_corte: str = Field(..., alias="motivoCorte", min_length=1, max_length=200)
    fecha_corte: Optional[date] = Field(None, alias="fechaCorte")
    monto_cobrado: Optional[Decimal] = Field(None, alias="montoCobrado", ge=0)
    afecto_iva: bool = Field(True, alias="afectoIva")
    observaciones: Optional[str] = None


class CorteUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    motivo_corte: Optional[str] = Field(None, alias="motivoCorte", min_length=1, max_length=200)
    fecha_corte: Optional[date] = Field(None, alias="fechaCorte")
    monto_cobrado: Optional[Decimal] = Field(None, alias="montoCobrado", ge=0)
    observaciones: Optional[str] = None


class ReposicionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    numero_reposicion: Optional[int] = Field(None, alias="numeroReposicion", ge=1, le=2)


@router.get("")
async def listar(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    estado: Optional[str] = Query(None, pattern="^(cortado|repuesto)$"),
    search: Optional[str] = None,
    sort_by: str = Query(
        "fechaCorte", alias="sortBy", pattern="^(numeroCliente|fechaCorte|estado|fechaReposicion)$"
    ),
    sort_direction: str = Query("desc", alias="sortDirection", pattern="^(asc|desc)$"),
    admin: Perfil = Depends(requiere_permiso("cortes_servicio", "view")),
    db: Session = Depends(get_db),
):
    return cortes_service.listar(db, page, limit, estado, search, sort_by, sort_direction)


@router.get("/cliente/{cliente_id}")
async def por_cliente(
    cliente_id: int,
    admin: Perfil = Depends(requiere_permiso("cortes_servicio", "view")),
    db: Session = Depends(get_db),
):
    return {"cortes": cortes_service.por_cliente(db, cliente_id)}


@router.get("/cliente/{cliente_id}/reposicion-info")
async def info_reposicion(
    cliente_id: int,
    admin: Perfil = Depends(requiere_permiso("cortes_servicio", "view")),
    db: Session = Depends(get_db),
):
    return cortes_service.info_reposicion(db, cliente_id)


@router.get("/{corte_id}")
async def detalle(
    corte_id: int,
    admin: Perfil = Depends(requiere_permiso("cortes_servicio", "view")),
    db: Session = Depends(get_db),
):
    return cortes_service.serializar(cortes_service.obtener_corte(db, corte_id))


@router.post("", status_code=201)
async def crear(
    data: CorteCreate,
    admin: Perfil = Depends(requiere_permiso("cortes_servicio", "create")),
    db: Session = Depends(get_db),
):
    return cortes_service.crear(db, data.model_dump(), admin.email)


@router.patch("/{corte_id}")
async def actualizar(
    corte_id: int,
    data: CorteUpdate,
    admin: Perfil = Depends(requiere_permiso("cortes_servicio", "edit")),
    db: Session = Depends(get_db),
):
    return cortes_service.actualizar(db, corte_id, data.model_dump(exclude_unset=True), admin.email)


@router.post("/{corte_id}/reposicion")
async def reposicion(
    corte_id: int,
    data: Optional[ReposicionRequest] = None,
    admin: Perfil = Depends(requiere_permiso("cortes_servicio", "authorize_reposicion")),
    db: Session = Depends(get_db),
):
    numero = data.numero_reposicion if data else None
    return cortes_service.autorizar_reposicion(db, corte_id, admin.email, numero)


@router.delete("/{corte_id}")
async def eliminar(
    corte_id: int,
    admin: Perfil = Depends(requiere_permiso("cortes_servicio", "delete")),
    db: Session = Depends(get_db),
):
    return cortes_service.eliminar(db, corte_id, admin.email)
