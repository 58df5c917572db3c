"""
Servicio: Repactaciones
app/services/repactaciones_service.py

Convenios de pago en cuotas y revisión de las solicitudes que hacen los
clientes desde el portal.

Cuotas: la cuota base es la deuda dividida por el número de cuotas,
truncada a pesos; la cuota inicial absorbe la diferencia (nunca es menor
que la base) para que la suma de todas las cuotas sea exactamente la deuda.
Al crear un convenio el administrador puede fijar las cuotas a mano.
"""

import logging
import re
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from sqlalchemy.orm import Session

from app.models import Boleta, Cliente
from app.models_gestion import (
    TRANSICIONES_REPACTACION,
    EstadoRepactacion,
    EstadoSolicitud,
    Repactacion,
    SolicitudRepactacion,
)
from app.services import auditoria, cliente_service
from app.utils.errores import ErrorConflicto, ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import ahora_utc, hoy_chile, iso, nombre_periodo
from app.utils.moneda import a_decimal, a_float, formatear_pesos
from app.utils.paginacion import paginar

logger = logging.getLogger(__name__)

ORDENAMIENTOS = {
    "cliente": Cliente.primer_apellido,
    "monto": Repactacion.monto_deuda_inicial,
    "fechaInicio": Repactacion.fecha_inicio,
    "estado": Repactacion.estado,
}


def calcular_cuotas(monto, total_cuotas: int) -> tuple[Decimal, Decimal]:
    """Retorna (cuota_inicial, cuota_base)."""
    if total_cuotas < 1:
        raise ErrorValidacion("El número de cuotas debe ser al menos 1")
    monto = a_decimal(monto)
    if monto <= 0:
        raise ErrorValidacion("El monto de la deuda debe ser mayor a cero")

    base = (monto / total_cuotas).quantize(Decimal("1"), rounding=ROUND_DOWN)
    inicial = monto - base * (total_cuotas - 1)
    return inicial, base


def serializar(r: Repactacion) -> dict:
    cliente = r.cliente
    return {
        "id": str(r.id),
        "numeroConvenio": r.numero_convenio,
        "clienteId": str(r.cliente_id),
        "numeroCliente": r.numero_cliente,
        "montoDeudaInicial": a_float(r.monto_deuda_inicial),
        "totalCuotas": r.total_cuotas,
        "montoCuotaInicial": a_float(r.monto_cuota_inicial),
        "montoCuotaBase": a_float(r.monto_cuota_base),
        "fechaInicio": iso(r.fecha_inicio),
        "fechaTerminoReal": iso(r.fecha_termino_real),
        "estado": r.estado,
        "observaciones": r.observaciones,
        "fechaCreacion": iso(r.fecha_creacion),
        "cliente": {
            "id": str(cliente.id),
            "numeroCliente": cliente.numero_cliente,
            "nombre": cliente.nombre_corto,
        } if cliente else None,
    }


def obtener_repactacion(db: Session, repactacion_id: int) -> Repactacion:
    repactacion = db.query(Repactacion).filter(Repactacion.id == repactacion_id).first()
    if not repactacion:
        raise ErrorNoEncontrado("Repactación no encontrada")
    return repactacion


def _siguiente_numero_convenio(db: Session) -> str:
    """Mayor parte numérica de los convenios existentes + 1."""
    maximo = 0
    for (numero,) in db.query(Repactacion.numero_convenio).filter(Repactacion.numero_convenio != None):
        digitos = re.sub(r"\D", "", numero)
        if digitos and int(digitos) > maximo:
            maximo = int(digitos)
    return str(maximo + 1)


# ============================================================
# CONSULTAS
# ============================================================

def listar(
    db: Session,
    page: int = 1,
    limit: int = 50,
    estado: Optional[str] = None,
    sort_by: str = "fechaInicio",
    sort_direction: str = "desc",
) -> dict:
    query = db.query(Repactacion).join(Cliente, Repactacion.cliente_id == Cliente.id)
    if estado:
        query = query.filter(Repactacion.estado == estado)

    columna = ORDENAMIENTOS.get(sort_by, Repactacion.fecha_inicio)
    query = query.order_by(columna.desc() if sort_direction == "desc" else columna.asc(), Repactacion.id.desc())

    repactaciones, paginacion = paginar(query, page, limit)
    return {"repactaciones": [serializar(r) for r in repactaciones], "pagination": paginacion}


def detalle(db: Session, repactacion_id: int) -> dict:
    repactacion = obtener_repactacion(db, repactacion_id)
    boletas = (
        db.query(Boleta)
        .filter(Boleta.repactacion_id == repactacion_id)
        .order_by(Boleta.fecha_emision.desc(), Boleta.id.desc())
        .limit(12)
        .all()
    )
    return {
        **serializar(repactacion),
        "boletas": [
            {
                "id": str(b.id),
                "folio": b.folio,
                "periodo": nombre_periodo(b.periodo_desde),
                "periodoDesde": iso(b.periodo_desde),
                "periodoHasta": iso(b.periodo_hasta),
                "monto": a_float(b.monto_total),
                "estado": b.estado,
            }
            for b in boletas
        ],
    }


# ============================================================
# ESCRITURA
# ============================================================

def crear(db: Session, datos: dict, admin_email: str) -> dict:
    """El administrador identifica al cliente por su número de cliente."""
    cliente = db.query(Cliente).filter(
        Cliente.numero_cliente == datos["numero_cliente"],
        Cliente.es_cliente_actual == True,
    ).first()
    if not cliente:
        raise ErrorNoEncontrado(f"Cliente no encontrado con número: {datos['numero_cliente']}")

    monto = a_decimal(datos["monto_deuda_inicial"])
    total_cuotas = datos["total_cuotas"]
    inicial, base = calcular_cuotas(monto, total_cuotas)
    if datos.get("monto_cuota_inicial") is not None:
        inicial = a_decimal(datos["monto_cuota_inicial"])
    if datos.get("monto_cuota_base") is not None:
        base = a_decimal(datos["monto_cuota_base"])

    repactacion = Repactacion(
        cliente_id=cliente.id,
        numero_cliente=cliente.numero_cliente,
        numero_convenio=datos.get("numero_convenio") or _siguiente_numero_convenio(db),
        monto_deuda_inicial=monto,
        total_cuotas=total_cuotas,
        monto_cuota_inicial=inicial,
        monto_cuota_base=base,
        fecha_inicio=datos.get("fecha_inicio") or hoy_chile(),
        estado=EstadoRepactacion.ACTIVO.value,
        observaciones=datos.get("observaciones"),
        creado_por=admin_email,
    )
    db.add(repactacion)
    db.flush()

    auditoria.registrar(
        db, "CREAR_REPACTACION", "repactaciones", repactacion.id, usuario_email=admin_email,
        datos_nuevos={
            "numeroCliente": cliente.numero_cliente,
            "numeroConvenio": repactacion.numero_convenio,
            "monto": str(monto),
            "cuotas": total_cuotas,
        },
    )
    db.commit()
    db.refresh(repactacion)

    logger.info(
        f"Repactación {repactacion.numero_convenio} creada para cliente {cliente.numero_cliente}: "
        f"{formatear_pesos(monto)} en {total_cuotas} cuotas"
    )
    return serializar(repactacion)


def _cambiar_estado(repactacion: Repactacion, nuevo: str):
    if nuevo == repactacion.estado:
        raise ErrorConflicto(f"La repactación ya está en estado {nuevo}")
    permitidos = TRANSICIONES_REPACTACION.get(repactacion.estado, set())
    if nuevo not in permitidos:
        raise ErrorValidacion(f"No se puede pasar de {repactacion.estado} a {nuevo}")
    repactacion.estado = nuevo
    if nuevo == EstadoRepactacion.COMPLETADO.value and not repactacion.fecha_termino_real:
        repactacion.fecha_termino_real = hoy_chile()


def _resumen(r: Repactacion) -> dict:
    return {
        "montoDeudaInicial": str(r.monto_deuda_inicial),
        "totalCuotas": r.total_cuotas,
        "estado": r.estado,
        "observaciones": r.observaciones,
    }


def actualizar(db: Session, repactacion_id: int, datos: dict, admin_email: str) -> dict:
    repactacion = obtener_repactacion(db, repactacion_id)
    if not datos:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")
    anteriores = _resumen(repactacion)

    if "numero_convenio" in datos:
        repactacion.numero_convenio = datos["numero_convenio"]
    if "observaciones" in datos:
        repactacion.observaciones = datos["observaciones"]
    if "fecha_inicio" in datos and datos["fecha_inicio"]:
        repactacion.fecha_inicio = datos["fecha_inicio"]
    if "fecha_termino_real" in datos:
        repactacion.fecha_termino_real = datos["fecha_termino_real"]

    # Cambió la deuda o el número de cuotas: se recalculan las cuotas
    if datos.get("monto_deuda_inicial") is not None or datos.get("total_cuotas") is not None:
        monto = a_decimal(datos.get("monto_deuda_inicial") or repactacion.monto_deuda_inicial)
        total = datos.get("total_cuotas") or repactacion.total_cuotas
        inicial, base = calcular_cuotas(monto, total)
        repactacion.monto_deuda_inicial = monto
        repactacion.total_cuotas = total
        repactacion.monto_cuota_inicial = inicial
        repactacion.monto_cuota_base = base

    if datos.get("estado"):
        _cambiar_estado(repactacion, datos["estado"])

    auditoria.registrar(
        db, "EDITAR_REPACTACION", "repactaciones", repactacion_id, usuario_email=admin_email,
        datos_anteriores=anteriores, datos_nuevos=_resumen(repactacion),
    )
    db.commit()
    db.refresh(repactacion)
    return serializar(repactacion)


def cancelar(db: Session, repactacion_id: int, admin_email: str) -> dict:
    repactacion = obtener_repactacion(db, repactacion_id)
    anterior = repactacion.estado
    _cambiar_estado(repactacion, EstadoRepactacion.CANCELADO.value)

    auditoria.registrar(
        db, "CANCELAR_REPACTACION", "repactaciones", repactacion_id, usuario_email=admin_email,
        datos_anteriores={"estado": anterior}, datos_nuevos={"estado": repactacion.estado},
    )
    db.commit()
    logger.info(f"Repactación {repactacion_id} cancelada por {admin_email}")
    return {"success": True, "message": "Repactación cancelada"}


def completar(db: Session, repactacion_id: int, admin_email: str) -> dict:
    repactacion = obtener_repactacion(db, repactacion_id)
    anterior = repactacion.estado
    _cambiar_estado(repactacion, EstadoRepactacion.COMPLETADO.value)

    auditoria.registrar(
        db, "COMPLETAR_REPACTACION", "repactaciones", repactacion_id, usuario_email=admin_email,
        datos_anteriores={"estado": anterior}, datos_nuevos={"estado": repactacion.estado},
    )
    db.commit()
    return {"success": True, "message": "Repactación completada"}


def eliminar(db: Session, repactacion_id: int, admin_email: str) -> dict:
    repactacion = obtener_repactacion(db, repactacion_id)

    # Desliga boletas y solicitudes antes de borrar
    db.query(Boleta).filter(Boleta.repactacion_id == repactacion_id).update(
        {"repactacion_id": None}, synchronize_session=False
    )
    db.query(SolicitudRepactacion).filter(SolicitudRepactacion.repactacion_id == repactacion_id).update(
        {"repactacion_id": None}, synchronize_session=False
    )

    auditoria.registrar(
        db, "ELIMINAR_REPACTACION", "repactaciones", repactacion_id, usuario_email=admin_email,
        datos_anteriores={
            "numeroConvenio": repactacion.numero_convenio,
            "clienteId": str(repactacion.cliente_id),
            **_resumen(repactacion),
        },
    )
    db.delete(repactacion)
    db.commit()
    return {"success": True, "message": "Repactación eliminada"}


# ============================================================
# SOLICITUDES DEL PORTAL
# ============================================================

def listar_solicitudes(db: Session, page: int = 1, limit: int = 50, estado: Optional[str] = None) -> dict:
    query = db.query(SolicitudRepactacion)
    if estado:
        query = query.filter(SolicitudRepactacion.estado == estado)
    query = query.order_by(SolicitudRepactacion.creado_en.desc(), SolicitudRepactacion.id.desc())

    solicitudes, paginacion = paginar(query, page, limit)
    datos = []
    for s in solicitudes:
        cliente = s.cliente
        datos.append({
            **cliente_service.serializar_solicitud(s),
            "numeroCliente": cliente.numero_cliente if cliente else None,
            "cliente": {
                "id": str(cliente.id),
                "numeroCliente": cliente.numero_cliente,
                "nombre": cliente.nombre_corto,
            } if cliente else None,
        })
    return {"solicitudes": datos, "pagination": paginacion}


def _solicitud_pendiente(db: Session, solicitud_id: int) -> SolicitudRepactacion:
    solicitud = db.query(SolicitudRepactacion).filter(SolicitudRepactacion.id == solicitud_id).first()
    if not solicitud:
        raise ErrorNoEncontrado("Solicitud no encontrada")
    if solicitud.estado != EstadoSolicitud.PENDIENTE.value:
        raise ErrorConflicto("La solicitud ya fue procesada")
    return solicitud


def aprobar_solicitud(db: Session, solicitud_id: int, admin_email: str) -> dict:
    solicitud = _solicitud_pendiente(db, solicitud_id)
    cliente = solicitud.cliente

    inicial, base = calcular_cuotas(solicitud.monto_deuda_estimado, solicitud.cuotas_solicitadas)
    repactacion = Repactacion(
        cliente_id=solicitud.cliente_id,
        numero_cliente=cliente.numero_cliente if cliente else None,
        numero_convenio=_siguiente_numero_convenio(db),
        monto_deuda_inicial=a_decimal(solicitud.monto_deuda_estimado),
        total_cuotas=solicitud.cuotas_solicitadas,
        monto_cuota_inicial=inicial,
        monto_cuota_base=base,
        fecha_inicio=hoy_chile(),
        estado=EstadoRepactacion.ACTIVO.value,
        observaciones=(
            f"Aprobada desde solicitud {solicitud_id}. "
            f"Motivo cliente: {solicitud.motivo or 'No especificado'}"
        ),
        creado_por=admin_email,
    )
    db.add(repactacion)
    db.flush()

    solicitud.estado = EstadoSolicitud.APROBADA.value
    solicitud.revisado_por = admin_email
    solicitud.fecha_revision = ahora_utc()
    solicitud.repactacion_id = repactacion.id

    auditoria.registrar(
        db, "APROBAR_SOLICITUD_REPACTACION", "solicitudes_repactacion", solicitud_id,
        usuario_email=admin_email, datos_nuevos={"repactacionId": str(repactacion.id)},
    )
    db.commit()

    logger.info(f"Solicitud {solicitud_id} aprobada por {admin_email}: repactación {repactacion.id}")
    return {"success": True, "message": "Solicitud aprobada", "repactacionId": str(repactacion.id)}


def rechazar_solicitud(db: Session, solicitud_id: int, motivo_rechazo: str, admin_email: str) -> dict:
    if not motivo_rechazo or not motivo_rechazo.strip():
        raise ErrorValidacion("Debe indicar el motivo del rechazo")
    solicitud = _solicitud_pendiente(db, solicitud_id)

    solicitud.estado = EstadoSolicitud.RECHAZADA.value
    solicitud.revisado_por = admin_email
    solicitud.fecha_revision = ahora_utc()
    solicitud.motivo_rechazo = motivo_rechazo.strip()

    auditoria.registrar(
        db, "RECHAZAR_SOLICITUD_REPACTACION", "solicitudes_repactacion", solicitud_id,
        usuario_email=admin_email, datos_nuevos={"motivoRechazo": solicitud.motivo_rechazo},
    )
    db.commit()
    return {"success": True, "message": "Solicitud rechazada"}
