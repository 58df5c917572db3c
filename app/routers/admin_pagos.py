"""
Módulo: Pagos (Administración)
app/routers/admin_pagos.py

Listado de pagos y registro de pagos en oficina. Cada pago registrado se
imputa contra la deuda total del cliente y actualiza el estado de sus boletas.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.database import get_db
from app.middleware.autorizacion import requiere_permiso
from app.models import Pago, Perfil
from app.services import cliente_service, saldo_service
from app.utils.moneda import a_float, formatear_pesos
from app.utils.paginacion import paginar

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/pagos", tags=["Admin Pagos"])


class PagoCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cliente_id: int = Field(..., alias="clienteId")
    monto: Decimal = Field(..., gt=0)
    tipo_pago: str = Field("efectivo", alias="tipoPago", max_length=30)
    canal: str = Field("oficina", max_length=30)
    numero_transaccion: Optional[str] = Field(None, alias="numeroTransaccion", max_length=100)
    observaciones: Optional[str] = Field(None, max_length=500)
    fecha_pago: Optional[datetime] = Field(None, alias="fechaPago")


@router.get("")
async def listar_pagos(
    cliente_id: Optional[int] = Query(None, alias="clienteId"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    admin: Perfil = Depends(requiere_permiso("pagos", "view")),
    db: Session = Depends(get_db),
):
    query = db.query(Pago)
    if cliente_id:
        query = query.filter(Pago.cliente_id == cliente_id)
    query = query.order_by(Pago.fecha_pago.desc(), Pago.id.desc())

    pagos, paginacion = paginar(query, page, limit)
    return {
        "data": [
            {**cliente_service.serializar_pago(p), "clienteId": str(p.cliente_id), "registradoPor": p.registrado_por}
            for p in pagos
        ],
        "pagination": paginacion,
    }


@router.post("", status_code=201)
async def registrar_pago(
    data: PagoCreate,
    admin: Perfil = Depends(requiere_permiso("pagos", "create")),
    db: Session = Depends(get_db),
):
    resultado = saldo_service.registrar_pago_y_aplicar(
        db,
        data.cliente_id,
        data.monto,
        tipo_pago=data.tipo_pago,
        canal=data.canal,
        numero_transaccion=data.numero_transaccion,
        observaciones=data.observaciones,
        registrado_por=admin.email,
        fecha_pago=data.fecha_pago,
    )

    return {
        "success": True,
        "pago": cliente_service.serializar_pago(resultado["pago"]),
        "boletasActualizadas": resultado["boletas_actualizadas"],
        "boletasPagadas": resultado["boletas_pagadas"],
        "boletasPendientes": resultado["boletas_pendientes"],
        "saldoNuevo": a_float(resultado["saldo_nuevo"]),
        "saldoNuevoFormateado": formatear_pesos(resultado["saldo_nuevo"]),
        "creditoDisponible": a_float(resultado["credito_disponible"]),
    }
