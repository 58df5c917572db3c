"""
Módulo: Rutas
app/routers/admin_rutas.py
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.database import get_db
from app.middleware.autorizacion import requiere_permiso
from app.models import Perfil
from app.services import rutas_service

router = APIRouter(prefix="/admin/rutas", tags=["Admin Rutas"])


class RutaCreate(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=100)
    descripcion: Optional[str] = None


class RutaUpdate(BaseModel):
    nombre: Optional[str] = Field(None, min_length=1, max_length=100)
    descripcion: Optional[str] = None


class ReasignarRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    direccion_ids: List[int] = Field(..., alias="direccionIds", min_length=1)


class OrdenRequest(BaseModel):
    orden: int = Field(..., ge=1)


@router.get("")
async def listar(
    admin: Perfil = Depends(requiere_permiso("rutas", "view")),
    db: Session = Depends(get_db),
):
    return {"rutas": rutas_service.listar(db)}


@router.patch("/direcciones/{direccion_id}/orden")
async def actualizar_orden(
    direccion_id: int,
    data: OrdenRequest,
    admin: Perfil = Depends(requiere_permiso("rutas", "edit")),
    db: Session = Depends(get_db),
):
    return rutas_service.actualizar_orden(db, direccion_id, data.orden, admin.email)


@router.get("/{ruta_id}")
async def detalle(
    ruta_id: int,
    admin: Perfil = Depends(requiere_permiso("rutas", "view")),
    db: Session = Depends(get_db),
):
    return rutas_service.detalle(db, ruta_id)


@router.get("/{ruta_id}/direcciones")
async def direcciones(
    ruta_id: int,
    admin: Perfil = Depends(requiere_permiso("rutas", "view")),
    db: Session = Depends(get_db),
):
    rutas_service.obtener_ruta(db, ruta_id)
    return {"direcciones": rutas_service.direcciones_de_ruta(db, ruta_id)}


@router.get("/{ruta_id}/medidores")
async def hoja_de_ruta(
    ruta_id: int,
    admin: Perfil = Depends(requiere_permiso("rutas", "view")),
    db: Session = Depends(get_db),
):
    return {"medidores": rutas_service.medidores_para_lectura(db, ruta_id)}


@router.post("", status_code=201)
async def crear(
    data: RutaCreate,
    admin: Perfil = Depends(requiere_permiso("rutas", "create")),
    db: Session = Depends(get_db),
):
    return rutas_service.crear(db, data.nombre, data.descripcion, admin.email)


@router.patch("/{ruta_id}")
async def actualizar(
    ruta_id: int,
    data: RutaUpdate,
    admin: Perfil = Depends(requiere_permiso("rutas", "edit")),
    db: Session = Depends(get_db),
):
    return rutas_service.actualizar(db, ruta_id, data.model_dump(exclude_unset=True), admin.email)


@router.post("/{ruta_id}/reasignar")
async def reasignar(
    ruta_id: int,
    data: ReasignarRequest,
    admin: Perfil = Depends(requiere_permiso("rutas", "edit")),
    db: Session = Depends(get_db),
):
    return rutas_service.reasignar_direcciones(db, ruta_id, data.direccion_ids, admin.email)


@router.delete("/{ruta_id}")
async def eliminar(
    ruta_id: int,
    admin: Perfil = Depends(requiere_permiso("rutas", "delete")),
    db: Session = Depends(get_db),
):
    return rutas_service.eliminar(db, ruta_id, admin.email)
