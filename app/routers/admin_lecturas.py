"""
Módulo: Lecturas
app/routers/admin_lecturas.py
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.database import get_db
from app.middleware.autorizacion import requiere_permiso
from app.models import Perfil
from app.services import lecturas_service

router = APIRouter(prefix="/admin/lecturas", tags=["Admin Lecturas"])


class LecturaUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    valor_lectura: Decimal = Field(..., alias="valorLectura")
    observaciones: Optional[str] = Field(None, max_length=500)


class CorreccionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    valor_corregido: Decimal = Field(..., alias="valorCorregido")
    motivo_correccion: str = Field(..., alias="motivoCorreccion", min_length=1, max_length=500)


@router.get("")
async def listar(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    medidor_id: Optional[int] = Query(None, alias="medidorId"),
    cliente_id: Optional[int] = Query(None, alias="clienteId"),
    periodo_ano: Optional[int] = Query(None, alias="periodoAno"),
    periodo_mes: Optional[int] = Query(None, alias="periodoMes", ge=1, le=12),
    con_correccion: Optional[bool] = Query(None, alias="conCorreccion"),
    search: Optional[str] = None,
    admin: Perfil = Depends(requiere_permiso("lecturas", "view")),
    db: Session = Depends(get_db),
):
    return lecturas_service.listar(
        db, page, limit, medidor_id, cliente_id, periodo_ano, periodo_mes, con_correccion, search
    )


@router.get("/{lectura_id}")
async def detalle(
    lectura_id: int,
    admin: Perfil = Depends(requiere_permiso("lecturas", "view")),
    db: Session = Depends(get_db),
):
    return lecturas_service.detalle(db, lectura_id)


@router.get("/{lectura_id}/contexto")
async def contexto(
    lectura_id: int,
    admin: Perfil = Depends(requiere_permiso("lecturas", "view")),
    db: Session = Depends(get_db),
):
    return lecturas_service.contexto(db, lectura_id)


@router.patch("/{lectura_id}")
async def actualizar(
    lectura_id: int,
    data: LecturaUpdate,
    admin: Perfil = Depends(requiere_permiso("lecturas", "edit_before_boleta")),
    db: Session = Depends(get_db),
):
    return lecturas_service.actualizar(db, lectura_id, data.valor_lectura, data.observaciones, admin.email)


@router.post("/{lectura_id}/correccion")
async def corregir(
    lectura_id: int,
    data: CorreccionRequest,
    admin: Perfil = Depends(requiere_permiso("lecturas", "create_correction")),
    db: Session = Depends(get_db),
):
    return lecturas_service.registrar_correccion(
        db, lectura_id, data.valor_corregido, data.motivo_correccion, admin.email
    )
