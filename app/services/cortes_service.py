"""
Servicio: Cortes y Reposiciones de Servicio
app/services/cortes_service.py

Un corte nace en estado cortado y pasa a repuesto cuando un supervisor
autoriza la reposición. La primera reposición de un cliente es la
número 1; desde la segunda se cobra la tarifa de reposición 2.
"""

import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import Cliente
from app.models_gestion import CorteServicio, EstadoCorte
from app.services import auditoria
from app.services.tarifas_service import tarifa_vigente
from app.utils.errores import ErrorConflicto, ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import hoy_chile, iso
from app.utils.moneda import a_float
from app.utils.paginacion import paginar

logger = logging.getLogger(__name__)

ORDENAMIENTOS = {
    "numeroCliente": CorteServicio.numero_cliente,
    "fechaCorte": CorteServicio.fecha_corte,
    "estado": CorteServicio.estado,
    "fechaReposicion": CorteServicio.fecha_reposicion,
}


def serializar(c: CorteServicio) -> dict:
    cliente = c.cliente
    return {
        "id": str(c.id),
        "clienteId": str(c.cliente_id),
        "numeroCliente": c.numero_cliente,
        "fechaCorte": iso(c.fecha_corte),
        "fechaReposicion": iso(c.fecha_reposicion),
        "motivoCorte": c.motivo_corte,
        "estado": c.estado,
        "numeroReposicion": c.numero_reposicion,
        "montoCobrado": a_float(c.monto_cobrado) if c.monto_cobrado is not None else None,
        "afectoIva": c.afecto_iva,
        "autorizadoCortePor": c.autorizado_corte_por,
        "autorizadoReposicionPor": c.autorizado_reposicion_por,
        "observaciones": c.observaciones,
        "boletaAplicadaId": str(c.boleta_aplicada_id) if c.boleta_aplicada_id else None,
        "fechaCreacion": iso(c.creado_en),
        "cliente": {
            "id": str(cliente.id),
            "numeroCliente": cliente.numero_cliente,
            "nombre": cliente.nombre_corto,
        } if cliente else None,
    }


def obtener_corte(db: Session, corte_id: int) -> CorteServicio:
    corte = db.query(CorteServicio).filter(CorteServicio.id == corte_id).first()
    if not corte:
        raise ErrorNoEncontrado("Corte no encontrado")
    return corte


def listar(
    db: Session,
    page: int = 1,
    limit: int = 50,
    estado: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "fechaCorte",
    sort_direction: str = "desc",
) -> dict:
    query = db.query(CorteServicio).join(Cliente, CorteServicio.cliente_id == Cliente.id)
    if estado:
        query = query.filter(CorteServicio.estado == estado)
    if search:
        termino = f"%{search.strip()}%"
        query = query.filter(or_(
            CorteServicio.numero_cliente.ilike(termino),
            Cliente.primer_nombre.ilike(termino),
            Cliente.primer_apellido.ilike(termino),
        ))

    columna = ORDENAMIENTOS.get(sort_by, CorteServicio.fecha_corte)
    query = query.order_by(columna.desc() if sort_direction == "desc" else columna.asc(), CorteServicio.id.desc())
    cortes, paginacion = paginar(query, page, limit)
    return {"cortes": [serializar(c) for c in cortes], "pagination": paginacion}


def por_cliente(db: Session, cliente_id: int) -> list:
    cortes = (
        db.query(CorteServicio)
        .filter(CorteServicio.cliente_id == cliente_id)
        .order_by(CorteServicio.creado_en.desc(), CorteServicio.id.desc())
        .all()
    )
    return [serializar(c) for c in cortes]


def _reposiciones_previas(db: Session, cliente_id: int, excluir_id: Optional[int] = None) -> int:
    query = db.query(CorteServicio).filter(
        CorteServicio.cliente_id == cliente_id,
        CorteServicio.estado == EstadoCorte.REPUESTO.value,
    )
    if excluir_id:
        query = query.filter(CorteServicio.id != excluir_id)
    return query.count()


def info_reposicion(db: Session, cliente_id: int) -> dict:
    """Reposiciones previas del cliente y valores de la tarifa vigente."""
    if not db.query(Cliente.id).filter(Cliente.id == cliente_id).first():
        raise ErrorNoEncontrado("Cliente no encontrado")

    previas = _reposiciones_previas(db, cliente_id)
    tarifa = tarifa_vigente(db)
    return {
        "reposicionesPrevias": previas,
        "siguienteNumeroReposicion": 2 if previas >= 1 else 1,
        "tarifaReposicion1": a_float(tarifa.costo_reposicion_1) if tarifa else 0,
        "tarifaReposicion2": a_float(tarifa.costo_reposicion_2) if tarifa else 0,
    }


def crear(db: Session, datos: dict, admin_email: str) -> dict:
    cliente = db.query(Cliente).filter(Cliente.numero_cliente == datos["numero_cliente"]).first()
    if not cliente:
        raise ErrorNoEncontrado(f"Cliente no encontrado con número: {datos['numero_cliente']}")

    corte = CorteServicio(
        cliente_id=cliente.id,
        numero_cliente=cliente.numero_cliente,
        fecha_corte=datos.get("fecha_corte") or hoy_chile(),
        motivo_corte=datos["motivo_corte"],
        estado=EstadoCorte.CORTADO.value,
        monto_cobrado=datos.get("monto_cobrado"),
        afecto_iva=bool(datos.get("afecto_iva", True)),
        autorizado_corte_por=admin_email,
        observaciones=datos.get("observaciones"),
    )
    db.add(corte)
    db.flush()

    auditoria.registrar(
        db, "CREAR_CORTE", "cortes_servicio", corte.id, usuario_email=admin_email,
        datos_nuevos={"numeroCliente": cliente.numero_cliente, "motivo": corte.motivo_corte},
    )
    db.commit()
    db.refresh(corte)

    logger.info(f"Corte {corte.id} registrado para cliente {cliente.numero_cliente} por {admin_email}")
    return serializar(corte)


def actualizar(db: Session, corte_id: int, datos: dict, admin_email: str) -> dict:
    corte = obtener_corte(db, corte_id)
    if not datos:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")

    anteriores = {
        "fechaCorte": iso(corte.fecha_corte),
        "motivo": corte.motivo_corte,
        "montoCobrado": a_float(corte.monto_cobrado) if corte.monto_cobrado is not None else None,
    }
    if datos.get("fecha_corte"):
        corte.fecha_corte = datos["fecha_corte"]
    if datos.get("motivo_corte"):
        corte.motivo_corte = datos["motivo_corte"]
    if "observaciones" in datos:
        corte.observaciones = datos["observaciones"]
    if "monto_cobrado" in datos:
        corte.monto_cobrado = datos["monto_cobrado"]

    auditoria.registrar(
        db, "EDITAR_CORTE", "cortes_servicio", corte_id, usuario_email=admin_email,
        datos_anteriores=anteriores,
        datos_nuevos={
            "fechaCorte": iso(corte.fecha_corte),
            "motivo": corte.motivo_corte,
            "montoCobrado": a_float(corte.monto_cobrado) if corte.monto_cobrado is not None else None,
        },
    )
    db.commit()
    db.refresh(corte)
    return serializar(corte)


def eliminar(db: Session, corte_id: int, admin_email: str) -> dict:
    corte = obtener_corte(db, corte_id)

    auditoria.registrar(
        db, "ELIMINAR_CORTE", "cortes_servicio", corte_id, usuario_email=admin_email,
        datos_anteriores={
            "clienteId": str(corte.cliente_id),
            "numeroCliente": corte.numero_cliente,
            "fechaCorte": iso(corte.fecha_corte),
            "motivo": corte.motivo_corte,
            "estado": corte.estado,
        },
    )
    db.delete(corte)
    db.commit()
    return {"success": True, "message": "Corte eliminado"}


def autorizar_reposicion(
    db: Session, corte_id: int, admin_email: str, numero_reposicion: Optional[int] = None
) -> dict:
    corte = obtener_corte(db, corte_id)
    if corte.estado == EstadoCorte.REPUESTO.value:
        raise ErrorConflicto("El servicio ya fue repuesto")

    if not numero_reposicion:
        previas = _reposiciones_previas(db, corte.cliente_id, excluir_id=corte.id)
        numero_reposicion = 2 if previas >= 1 else 1

    anterior = corte.estado
    corte.estado = EstadoCorte.REPUESTO.value
    corte.fecha_reposicion = hoy_chile()
    corte.autorizado_reposicion_por = admin_email
    corte.numero_reposicion = numero_reposicion

    auditoria.registrar(
        db, "REPOSICION_SERVICIO", "cortes_servicio", corte_id, usuario_email=admin_email,
        datos_anteriores={"estado": anterior},
        datos_nuevos={"estado": corte.estado, "numeroReposicion": numero_reposicion},
    )
    db.commit()
    db.refresh(corte)

    logger.info(f"Reposición {numero_reposicion} autorizada para corte {corte_id} por {admin_email}")
    return serializar(corte)
