"""
Módulo: Administración de Clientes
app/routers/admin_clientes.py

Búsqueda, ficha, desbloqueo, enlaces de activación y edición de clientes.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.database import get_db
from app.middleware.autorizacion import requiere_permiso
from app.models import Perfil
from app.services import admin_clientes_service, auth_service, lecturas_service, whatsapp_service
from app.utils.errores import ErrorAPI

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/clientes", tags=["Admin Clientes"])


# ============================================================
# SCHEMAS
# ============================================================

class ContactoUpdate(BaseModel):
    correo: Optional[str] = Field(None, max_length=150)
    telefono: Optional[str] = Field(None, max_length=20)


class ClienteUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rut: Optional[str] = Field(None, max_length=12)
    numero_cliente: Optional[str] = Field(None, alias="numeroCliente", max_length=20)
    primer_nombre: Optional[str] = Field(None, alias="primerNombre", max_length=100)
    segundo_nombre: Optional[str] = Field(None, alias="segundoNombre", max_length=100)
    primer_apellido: Optional[str] = Field(None, alias="primerApellido", max_length=100)
    segundo_apellido: Optional[str] = Field(None, alias="segundoApellido", max_length=100)
    correo: Optional[str] = Field(None, max_length=150)
    telefono: Optional[str] = Field(None, max_length=20)
    es_cliente_actual: Optional[bool] = Field(None, alias="esClienteActual")


class DireccionUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    direccion_calle: Optional[str] = Field(None, alias="direccionCalle", max_length=200)
    direccion_numero: Optional[str] = Field(None, alias="direccionNumero", max_length=20)
    poblacion: Optional[str] = Field(None, max_length=100)
    comuna: Optional[str] = Field(None, max_length=100)
    ruta_id: Optional[int] = Field(None, alias="rutaId")


def _ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# ============================================================
# BÚSQUEDA Y FICHA
# ============================================================
@router.get("")
async def buscar(
    q: Optional[str] = None,
    cursor: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    admin: Perfil = Depends(requiere_permiso("clientes", "view")),
    db: Session = Depends(get_db),
):
    return admin_clientes_service.buscar_clientes(db, q, cursor, limit)


@router.get("/{cliente_id}")
async def ficha(
    cliente_id: int,
    admin: Perfil = Depends(requiere_permiso("clientes", "view")),
    db: Session = Depends(get_db),
):
    return admin_clientes_service.perfil_admin(db, cliente_id)


@router.get("/{cliente_id}/pagos")
async def pagos(
    cliente_id: int,
    cursor: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    admin: Perfil = Depends(requiere_permiso("clientes", "view")),
    db: Session = Depends(get_db),
):
    return admin_clientes_service.pagos_cliente(db, cliente_id, cursor, limit)


@router.get("/{cliente_id}/boletas")
async def boletas(
    cliente_id: int,
    cursor: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    admin: Perfil = Depends(requiere_permiso("clientes", "view")),
    db: Session = Depends(get_db),
):
    return admin_clientes_service.boletas_cliente(db, cliente_id, cursor, limit)


@router.get("/{cliente_id}/medidores")
async def medidores(
    cliente_id: int,
    admin: Perfil = Depends(requiere_permiso("clientes", "view")),
    db: Session = Depends(get_db),
):
    return {"medidores": admin_clientes_service.medidores_cliente(db, cliente_id)}


@router.get("/{cliente_id}/lecturas")
async def lecturas(
    cliente_id: int,
    limit: int = Query(24, ge=1, le=100),
    admin: Perfil = Depends(requiere_permiso("lecturas", "view")),
    db: Session = Depends(get_db),
):
    admin_clientes_service.obtener_cliente(db, cliente_id)
    return {"lecturas": lecturas_service.lecturas_cliente(db, cliente_id, limit)}


@router.get("/{cliente_id}/multas")
async def multas(
    cliente_id: int,
    admin: Perfil = Depends(requiere_permiso("multas", "view")),
    db: Session = Depends(get_db),
):
    return {"multas": admin_clientes_service.multas_cliente(db, cliente_id)}


@router.get("/{cliente_id}/repactaciones")
async def repactaciones(
    cliente_id: int,
    admin: Perfil = Depends(requiere_permiso("repactaciones", "view")),
    db: Session = Depends(get_db),
):
    return {"repactaciones": admin_clientes_service.repactaciones_cliente(db, cliente_id)}


# ============================================================
# CUENTA DEL PORTAL
# ============================================================
@router.post("/{cliente_id}/desbloquear")
async def desbloquear(
    cliente_id: int,
    request: Request,
    admin: Perfil = Depends(requiere_permiso("clientes", "edit_contact")),
    db: Session = Depends(get_db),
):
    return admin_clientes_service.desbloquear_cuenta(db, cliente_id, admin.email, _ip(request))


@router.post("/{cliente_id}/generar-setup")
async def generar_setup(
    cliente_id: int,
    request: Request,
    admin: Perfil = Depends(requiere_permiso("clientes", "edit_contact")),
    db: Session = Depends(get_db),
):
    return auth_service.generar_enlace_setup(db, cliente_id, admin.email, _ip(request))


@router.post("/{cliente_id}/enviar-setup")
async def enviar_setup(
    cliente_id: int,
    request: Request,
    admin: Perfil = Depends(requiere_permiso("clientes", "edit_contact")),
    db: Session = Depends(get_db),
):
    """Genera el enlace y lo envía por WhatsApp; sin teléfono devuelve el enlace en el error."""
    enlace = auth_service.generar_enlace_setup(db, cliente_id, admin.email, _ip(request))
    cliente = enlace["cliente"]

    if not cliente["telefono"]:
        raise ErrorAPI(
            "El cliente no tiene teléfono registrado",
            codigo="NO_PHONE",
            status_code=400,
            extra={"setupUrl": enlace["setupUrl"]},
        )

    envio = whatsapp_service.enviar_enlace_setup(cliente["nombre"], cliente["telefono"], enlace["setupUrl"])
    if not envio["success"]:
        logger.warning(f"No se pudo enviar enlace de setup al cliente {cliente_id}: {envio.get('error')}")

    return {
        **enlace,
        "enviado": envio["success"],
        "messageId": envio.get("messageId"),
        "errorEnvio": envio.get("error"),
    }


# ============================================================
# EDICIÓN
# ============================================================
@router.get("/{cliente_id}/editar")
async def para_editar(
    cliente_id: int,
    admin: Perfil = Depends(requiere_permiso("clientes", "view")),
    db: Session = Depends(get_db),
):
    return admin_clientes_service.cliente_para_editar(db, cliente_id)


@router.patch("/{cliente_id}/contacto")
async def editar_contacto(
    cliente_id: int,
    data: ContactoUpdate,
    admin: Perfil = Depends(requiere_permiso("clientes", "edit_contact")),
    db: Session = Depends(get_db),
):
    return admin_clientes_service.actualizar_contacto(
        db, cliente_id, data.model_dump(exclude_unset=True), admin.email
    )


@router.patch("/{cliente_id}/direccion")
async def editar_direccion(
    cliente_id: int,
    data: DireccionUpdate,
    admin: Perfil = Depends(requiere_permiso("clientes", "edit_contact")),
    db: Session = Depends(get_db),
):
    return admin_clientes_service.actualizar_direccion(
        db, cliente_id, data.model_dump(exclude_unset=True), admin.email
    )


@router.patch("/{cliente_id}")
async def editar(
    cliente_id: int,
    data: ClienteUpdate,
    admin: Perfil = Depends(requiere_permiso("clientes", "edit_all")),
    db: Session = Depends(get_db),
):
    return admin_clientes_service.actualizar_completo(
        db, cliente_id, data.model_dump(exclude_unset=True), admin.email
    )
