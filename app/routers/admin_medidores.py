"""
Módulo: Medidores
app/routers/admin_medidores.py
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
from app.services import medidores_service

router = APIRouter(prefix="/admin/medidores", tags=["Admin Medidores"])


class MedidorBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    numero_serie: Optional[str] = Field(None, alias="numeroSerie", max_length=50)
    marca: Optional[str] = Field(None, max_length=50)
    modelo: Optional[str] = Field(None, max_length=50)
    fecha_instalacion: Optional[date] = Field(None, alias="fechaInstalacion")
    fecha_retiro: Optional[date] = Field(None, alias="fechaRetiro")
    estado: Optional[str] = None
    lectura_inicial: Optional[Decimal] = Field(None, alias="lecturaInicial", ge=0)
    mostrar_en_ruta: Optional[bool] = Field(None, alias="mostrarEnRuta")


class MedidorCreate(MedidorBase):
    direccion_id: int = Field(..., alias="direccionId")


class MedidorUpdate(MedidorBase):
    direccion_id: Optional[int] = Field(None, alias="direccionId")


@router.get("")
async def listar(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    estado: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = Query("numeroSerie", alias="sortBy"),
    sort_direction: str = Query("asc", alias="sortDirection", pattern="^(asc|desc)$"),
    admin: Perfil = Depends(requiere_permiso("medidores", "view")),
    db: Session = Depends(get_db),
):
    return medidores_service.listar(db, page, limit, estado, search, sort_by, sort_direction)


@router.get("/{medidor_id}")
async def detalle(
    medidor_id: int,
    admin: Perfil = Depends(requiere_permiso("medidores", "view")),
    db: Session = Depends(get_db),
):
    return medidores_service.detalle(db, medidor_id)


@router.post("", status_code=201)
async def crear(
    data: MedidorCreate,
    admin: Perfil = Depends(requiere_permiso("medidores", "create")),
    db: Session = Depends(get_db),
):
    return medidores_service.crear(db, data.model_dump(exclude_unset=True), admin.email)


@router.patch("/{medidor_id}")
async def actualizar(
    medidor_id: int,
    data: MedidorUpdate,
    admin: Perfil = Depends(requiere_permiso("medidores", "edit")),
    db: Session = Depends(get_db),
):
    return medidores_service.actualizar(db, medidor_id, data.model_dump(exclude_unset=True), admin.email)


@router.post("/{medidor_id}/toggle-ruta")
async def alternar_ruta(
    medidor_id: int,
    admin: Perfil = Depends(requiere_permiso("medidores", "edit")),
    db: Session = Depends(get_db),
):
    return medidores_service.alternar_mostrar_en_ruta(db, medidor_id, admin.email)


@router.delete("/{medidor_id}")
async def eliminar(
    medidor_id: int,
    admin: Perfil = Depends(requiere_permiso("medidores", "delete")),
    db: Session = Depends(get_db),
):
    return medidores_service.eliminar(db, medidor_id, admin.email)
