"""
Módulo: Subsidios
app/routers/admin_subsidios.py
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
from app.services import subsidios_service

router = APIRouter(prefix="/admin/subsidios", tags=["Admin Subsidios"])


class SubsidioCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(..., gt=0)
    limite_m3: int = Field(..., alias="limiteM3", ge=0)
    porcentaje: Decimal = Field(..., ge=0, le=100)
    fecha_inicio: date = Field(..., alias="fechaInicio")
    fecha_termino: Optional[date] = Field(None, alias="fechaTermino")
    numero_decreto: Optional[str] = Field(None, alias="numeroDecreto", max_length=50)
    observaciones: Optional[str] = None
    estado: str = Field("activo", pattern="^(activo|inactivo)$")


class SubsidioUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    limite_m3: Optional[int] = Field(None, alias="limiteM3", ge=0)
    porcentaje: Optional[Decimal] = Field(None, ge=0, le=100)
    fecha_inicio: Optional[date] = Field(None, alias="fechaInicio")
    fecha_termino: Optional[date] = Field(None, alias="fechaTermino")
    numero_decreto: Optional[str] = Field(None, alias="numeroDecreto", max_length=50)
    observaciones: Optional[str] = None
    estado: Optional[str] = Field(None, pattern="^(activo|inactivo)$")


class AsignarRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cliente_id: int = Field(..., alias="clienteId")
    subsidio_id: int = Field(..., alias="subsidioId")
    detalles: Optional[str] = None


class RetirarRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cliente_id: int = Field(..., alias="clienteId")
    detalles: Optional[str] = None


# ============================================================
# RUTAS FIJAS (antes de /{subsidio_id})
# ============================================================
@router.get("/activos")
async def activos(
    admin: Perfil = Depends(requiere_permiso("subsidios", "view")),
    db: Session = Depends(get_db),
):
    return {"subsidios": subsidios_service.activos(db)}


@router.get("/historial")
async def historial(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    cliente_id: Optional[int] = Query(None, alias="clienteId"),
    subsidio_id: Optional[int] = Query(None, alias="subsidioId"),
    tipo_cambio: Optional[str] = Query(None, alias="tipoCambio", pattern="^(alta|baja)$"),
    admin: Perfil = Depends(requiere_permiso("subsidios", "view")),
    db: Session = Depends(get_db),
):
    return subsidios_service.listar_historial(db, page, limit, cliente_id, subsidio_id, tipo_cambio)


@router.get("/cliente/{cliente_id}")
async def subsidio_de_cliente(
    cliente_id: int,
    admin: Perfil = Depends(requiere_permiso("subsidios", "view")),
    db: Session = Depends(get_db),
):
    return {"subsidio": subsidios_service.subsidio_actual(db, cliente_id)}


@router.post("/historial/asignar", status_code=201)
async def asignar(
    data: AsignarRequest,
    admin: Perfil = Depends(requiere_permiso("subsidios", "edit")),
    db: Session = Depends(get_db),
):
    return subsidios_service.asignar(db, data.cliente_id, data.subsidio_id, data.detalles, admin.email)


@router.post("/historial/retirar", status_code=201)
async def retirar(
    data: RetirarRequest,
    admin: Perfil = Depends(requiere_permiso("subsidios", "edit")),
    db: Session = Depends(get_db),
):
    return subsidios_service.retirar(db, data.cliente_id, data.detalles, admin.email)


# ============================================================
# CATÁLOGO
# ============================================================
@router.get("")
async def listar(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    estado: Optional[str] = Query(None, pattern="^(activo|inactivo)$"),
    admin: Perfil = Depends(requiere_permiso("subsidios", "view")),
    db: Session = Depends(get_db),
):
    return subsidios_service.listar(db, page, limit, estado)


@router.get("/{subsidio_id}")
async def detalle(
    subsidio_id: int,
    admin: Perfil = Depends(requiere_permiso("subsidios", "view")),
    db: Session = Depends(get_db),
):
    return subsidios_service.serializar(subsidios_service.obtener_subsidio(db, subsidio_id))


@router.post("", status_code=201)
async def crear(
    data: SubsidioCreate,
    admin: Perfil = Depends(requiere_permiso("subsidios", "create")),
    db: Session = Depends(get_db),
):
    return subsidios_service.crear(db, data.model_dump(), admin.email)


@router.patch("/{subsidio_id}")
async def actualizar(
    subsidio_id: int,
    data: SubsidioUpdate,
    admin: Perfil = Depends(requiere_permiso("subsidios", "edit")),
    db: Session = Depends(get_db),
):
    return subsidios_service.actualizar(db, subsidio_id, data.model_dump(exclude_unset=True), admin.email)


@router.delete("/{subsidio_id}")
async def eliminar(
    subsidio_id: int,
    admin: Perfil = Depends(requiere_permiso("subsidios", "delete")),
    db: Session = Depends(get_db),
):
    return subsidios_service.eliminar(db, subsidio_id, admin.email)
