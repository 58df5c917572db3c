"""
Módulo: Descuentos
app/routers/admin_descuentos.py
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
from app.services import descuentos_service

router = APIRouter(prefix="/admin", tags=["Admin Descuentos"])

TIPOS = "^(porcentaje|monto_fijo)$"


class DescuentoCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    nombre: str = Field(..., min_length=1, max_length=150)
    descripcion: Optional[str] = None
    tipo_descuento: str = Field("porcentaje", alias="tipoDescuento", pattern=TIPOS)
    valor: Decimal = Field(..., gt=0)
    fecha_inicio: Optional[date] = Field(None, alias="fechaInicio")
    fecha_fin: Optional[date] = Field(None, alias="fechaFin")
    activo: bool = True
    aplica_cargo_fijo: bool = Field(True, alias="aplicaCargoFijo")
    aplica_consumo: bool = Field(True, alias="aplicaConsumo")
    consumo_minimo: Optional[Decimal] = Field(None, alias="consumoMinimo", ge=0)
    consumo_maximo: Optional[Decimal] = Field(None, alias="consumoMaximo", ge=0)


class DescuentoUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    nombre: Optional[str] = Field(None, min_length=1, max_length=150)
    descripcion: Optional[str] = None
    tipo_descuento: Optional[str] = Field(None, alias="tipoDescuento", pattern=TIPOS)
    valor: Optional[Decimal] = Field(None, gt=0)
    fecha_inicio: Optional[date] = Field(None, alias="fechaInicio")
    fecha_fin: Optional[date] = Field(None, alias="fechaFin")
    activo: Optional[bool] = None
    aplica_cargo_fijo: Optional[bool] = Field(None, alias="aplicaCargoFijo")
    aplica_consumo: Optional[bool] = Field(None, alias="aplicaConsumo")
    consumo_minimo: Optional[Decimal] = Field(None, alias="consumoMinimo", ge=0)
    consumo_maximo: Optional[Decimal] = Field(None, alias="consumoMaximo", ge=0)


class DescuentoIndividualRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cliente_id: int = Field(..., alias="clienteId")
    tipo: str = Field(..., pattern=TIPOS)
    valor: Decimal = Field(..., gt=0)
    motivo: str = Field(..., min_length=1)


class PlantillaDescuento(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=150)
    tipo: str = Field(..., pattern=TIPOS)
    valor: Decimal = Field(..., gt=0)
    descripcion: Optional[str] = None


class DescuentoMasivoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    descuento_id: Optional[int] = Field(None, alias="descuentoId")
    plantilla: Optional[PlantillaDescuento] = None
    filtro: str = Field(..., alias="recipientFilter", pattern="^(todos|ruta|manual)$")
    ruta_id: Optional[int] = Field(None, alias="rutaId")
    cliente_ids: Optional[list[int]] = Field(None, alias="clienteIds")


# ============================================================
# PLANTILLAS
# ============================================================

@router.get("/descuentos")
async def listar(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    sort_by: str = Query("fechaCreacion", alias="sortBy", pattern="^(nombre|tipo|valor|fechaCreacion)$"),
    sort_direction: str = Query("desc", alias="sortDirection", pattern="^(asc|desc)$"),
    admin: Perfil = Depends(requiere_permiso("descuentos", "view")),
    db: Session = Depends(get_db),
):
    return descuentos_service.listar(db, page, limit, sort_by, sort_direction)


@router.get("/descuentos/{descuento_id}")
async def detalle(
    descuento_id: int,
    admin: Perfil = Depends(requiere_permiso("descuentos", "view")),
    db: Session = Depends(get_db),
):
    return descuentos_service.serializar(descuentos_service.obtener_descuento(db, descuento_id))


@router.post("/descuentos", status_code=201)
async def crear(
    data: DescuentoCreate,
    admin: Perfil = Depends(requiere_permiso("descuentos", "create")),
    db: Session = Depends(get_db),
):
    return descuentos_service.crear(db, data.model_dump(), admin.email)


@router.patch("/descuentos/{descuento_id}")
async def actualizar(
    descuento_id: int,
    data: DescuentoUpdate,
    admin: Perfil = Depends(requiere_permiso("descuentos", "edit")),
    db: Session = Depends(get_db),
):
    return descuentos_service.actualizar(db, descuento_id, data.model_dump(exclude_unset=True), admin.email)


@router.delete("/descuentos/{descuento_id}")
async def eliminar(
    descuento_id: int,
    admin: Perfil = Depends(requiere_permiso("descuentos", "delete")),
    db: Session = Depends(get_db),
):
    return descuentos_service.eliminar(db, descuento_id, admin.email)


# ============================================================
# DESCUENTOS ASIGNADOS (rutas fijas antes de /{aplicado_id})
# ============================================================

@router.get("/descuentos-aplicados")
async def listar_aplicados(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    cliente_id: Optional[int] = Query(None, alias="clienteId"),
    ruta_id: Optional[int] = Query(None, alias="rutaId"),
    descuento_id: Optional[int] = Query(None, alias="descuentoId"),
    solo_plantilla: bool = Query(False, alias="soloPlantilla"),
    solo_puntuales: bool = Query(False, alias="soloPuntuales"),
    solo_pendientes: bool = Query(False, alias="soloPendientes"),
    fecha_desde: Optional[date] = Query(None, alias="fechaDesde"),
    fecha_hasta: Optional[date] = Query(None, alias="fechaHasta"),
    search: Optional[str] = None,
    sort_by: str = Query("fecha", alias="sortBy", pattern="^(cliente|monto|fecha|estado)$"),
    sort_direction: str = Query("desc", alias="sortDirection", pattern="^(asc|desc)$"),
    admin: Perfil = Depends(requiere_permiso("descuentos", "view")),
    db: Session = Depends(get_db),
):
    return descuentos_service.listar_aplicados(
        db, page, limit, cliente_id, ruta_id, descuento_id, solo_plantilla, solo_puntuales,
        solo_pendientes, fecha_desde, fecha_hasta, search, sort_by, sort_direction,
    )


@router.get("/descuentos-aplicados/preview-count")
async def contar_destinatarios(
    filtro: str = Query(..., alias="filter", pattern="^(todos|ruta|manual)$"),
    ruta_id: Optional[int] = Query(None, alias="rutaId"),
    cliente_ids: Optional[str] = Query(None, alias="clienteIds"),
    admin: Perfil = Depends(requiere_permiso("descuentos", "view")),
    db: Session = Depends(get_db),
):
    ids = [int(i) for i in (cliente_ids or "").split(",") if i.strip().isdigit()]
    return {"count": descuentos_service.contar_destinatarios(db, filtro, ruta_id, ids)}


@router.post("/descuentos-aplicados/individual", status_code=201)
async def crear_individual(
    data: DescuentoIndividualRequest,
    admin: Perfil = Depends(requiere_permiso("descuentos", "create")),
    db: Session = Depends(get_db),
):
    return descuentos_service.crear_individual(db, data.model_dump(), admin.email)


@router.post("/descuentos-aplicados/masivo", status_code=201)
async def crear_masivo(
    data: DescuentoMasivoRequest,
    admin: Perfil = Depends(requiere_permiso("descuentos", "create")),
    db: Session = Depends(get_db),
):
    return descuentos_service.crear_masivo(db, data.model_dump(), admin.email)


@router.get("/descuentos-aplicados/{aplicado_id}")
async def detalle_aplicado(
    aplicado_id: int,
    admin: Perfil = Depends(requiere_permiso("descuentos", "view")),
    db: Session = Depends(get_db),
):
    return descuentos_service.detalle_aplicado(db, aplicado_id)


@router.delete("/descuentos-aplicados/{aplicado_id}")
async def eliminar_aplicado(
    aplicado_id: int,
    admin: Perfil = Depends(requiere_permiso("descuentos", "delete")),
    db: Session = Depends(get_db),
):
    return descuentos_service.eliminar_aplicado(db, aplicado_id, admin.email)
