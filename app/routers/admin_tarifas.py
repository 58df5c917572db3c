"""
Módulo: Tarifas
app/routers/admin_tarifas.py
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
from app.services import tarifas_service
from app.utils.errores import ErrorNoEncontrado

router = APIRouter(prefix="/admin/tarifas", tags=["Admin Tarifas"])


class TarifaCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    costo_despacho: Decimal = Field(..., alias="costoDespacho", ge=0)
    costo_reposicion_1: Decimal = Field(..., alias="costoReposicion1", ge=0)
    costo_reposicion_2: Decimal = Field(..., alias="costoReposicion2", ge=0)
    costo_m3_agua: Decimal = Field(..., alias="costoM3Agua", ge=0)
    costo_m3_alcantarillado_tratamiento: Optional[Decimal] = Field(
        None, alias="costoM3AlcantarilladoTratamiento", ge=0
    )
    cargo_fijo: Decimal = Field(..., alias="cargoFijo", ge=0)
    tasa_iva: Decimal = Field(..., alias="tasaIva", ge=0, le=1)
    fecha_inicio: date = Field(..., alias="fechaInicio")
    fecha_fin: Optional[date] = Field(None, alias="fechaFin")
    tasa_interes_mensual: Decimal = Field(Decimal("0"), alias="tasaInteresMensual", ge=0, le=Decimal("0.5"))
    dias_gracia_interes: int = Field(30, alias="diasGraciaInteres", ge=0)


class TarifaUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    costo_despacho: Optional[Decimal] = Field(None, alias="costoDespacho", ge=0)
    costo_reposicion_1: Optional[Decimal] = Field(None, alias="costoReposicion1", ge=0)
    costo_reposicion_2: Optional[Decimal] = Field(None, alias="costoReposicion2", ge=0)
    costo_m3_agua: Optional[Decimal] = Field(None, alias="costoM3Agua", ge=0)
    costo_m3_alcantarillado_tratamiento: Optional[Decimal] = Field(
        None, alias="costoM3AlcantarilladoTratamiento", ge=0
    )
    cargo_fijo: Optional[Decimal] = Field(None, alias="cargoFijo", ge=0)
    tasa_iva: Optional[Decimal] = Field(None, alias="tasaIva", ge=0, le=1)
    fecha_inicio: Optional[date] = Field(None, alias="fechaInicio")
    fecha_fin: Optional[date] = Field(None, alias="fechaFin")
    tasa_interes_mensual: Optional[Decimal] = Field(None, alias="tasaInteresMensual", ge=0, le=Decimal("0.5"))
    dias_gracia_interes: Optional[int] = Field(None, alias="diasGraciaInteres", ge=0)


@router.get("")
async def listar(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    sort_by: str = Query("fechaInicio", alias="sortBy", pattern="^(fechaInicio|cargoFijo|costoM3)$"),
    sort_direction: str = Query("desc", alias="sortDirection", pattern="^(asc|desc)$"),
    admin: Perfil = Depends(requiere_permiso("tarifas", "view")),
    db: Session = Depends(get_db),
):
    return tarifas_service.listar(db, page, limit, sort_by, sort_direction)


@router.get("/vigente")
async def vigente(
    admin: Perfil = Depends(requiere_permiso("tarifas", "view")),
    db: Session = Depends(get_db),
):
    tarifa = tarifas_service.tarifa_vigente(db)
    if not tarifa:
        raise ErrorNoEncontrado("No hay tarifa vigente")
    return tarifas_service.serializar(tarifa)


@router.get("/{tarifa_id}")
async def detalle(
    tarifa_id: int,
    admin: Perfil = Depends(requiere_permiso("tarifas", "view")),
    db: Session = Depends(get_db),
):
    return tarifas_service.serializar(tarifas_service.obtener_tarifa(db, tarifa_id))


@router.post("", status_code=201)
async def crear(
    data: TarifaCreate,
    admin: Perfil = Depends(requiere_permiso("tarifas", "create")),
    db: Session = Depends(get_db),
):
    return tarifas_service.crear(db, data.model_dump(), admin.email)


@router.patch("/{tarifa_id}")
async def actualizar(
    tarifa_id: int,
    data: TarifaUpdate,
    admin: Perfil = Depends(requiere_permiso("tarifas", "edit")),
    db: Session = Depends(get_db),
):
    return tarifas_service.actualizar(db, tarifa_id, data.model_dump(exclude_unset=True), admin.email)


@router.delete("/{tarifa_id}")
async def eliminar(
    tarifa_id: int,
    admin: Perfil = Depends(requiere_permiso("tarifas", "delete")),
    db: Session = Depends(get_db),
):
    return tarifas_service.eliminar(db, tarifa_id, admin.email)
