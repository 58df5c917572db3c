"""
Servicio: Portal del Cliente
app/services/cliente_service.py

Lecturas y actualizaciones del propio cliente: perfil, saldo, pagos,
boletas y solicitudes de repactación. Arma las respuestas a partir de
saldo_service.
"""

import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import ESTADOS_IMPAGOS, Boleta, Cliente, Notificacion, Pago
from app.models_gestion import EstadoSolicitud, SolicitudRepactacion
from app.services import auditoria, saldo_service
from app.utils.errores import ErrorConflicto, ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import ahora_utc, iso, nombre_periodo
from app.utils.moneda import CERO, a_float, formatear_pesos
from app.utils.paginacion import paginar_por_cursor
from app.utils.rut import formatear_rut

logger = logging.getLogger(__name__)


# ============================================================
# SERIALIZADORES
# ============================================================

def serializar_pago(p: Pago) -> dict:
    return {
        "id": str(p.id),
        "monto": a_float(p.monto),
        "montoFormateado": formatear_pesos(p.monto),
        "fechaPago": iso(p.fecha_pago),
        "tipoPago": p.tipo_pago,
        "canal": p.canal,
        "estado": p.estado,
        "numeroTransaccion": p.numero_transaccion,
        "observaciones": p.observaciones,
    }


def serializar_boleta(b: Boleta, mapa: dict) -> dict:
    """mapa: resultado de saldo_service.mapa_pagos_parciales."""
    mes = saldo_service.monto_mes(b)
    parcial = mapa.get(b.id)
    if b.estado in ESTADOS_IMPAGOS and parcial:
        adeudado = parcial["monto_adeudado"]
        parcialmente_pagada = parcial["parcialmente_pagada"]
    else:
        adeudado = CERO
        parcialmente_pagada = False

    return {
        "id": str(b.id),
        "folio": b.folio,
        "periodo": nombre_periodo(b.periodo_desde),
        "periodoDesde": iso(b.periodo_desde),
        "periodoHasta": iso(b.periodo_hasta),
        "fechaEmision": iso(b.fecha_emision),
        "fechaVencimiento": iso(b.fecha_vencimiento),
        "consumoM3": a_float(b.consumo_m3),
        "montoTotal": a_float(mes),
        "montoTotalAcumulado": a_float(b.monto_total),
        "montoAdeudado": a_float(adeudado),
        "parcialmentePagada": parcialmente_pagada,
        "estado": b.estado,
        "tienePdf": bool(b.pdf_path),
    }


def serializar_solicitud(s: SolicitudRepactacion) -> dict:
    return {
        "id": str(s.id),
        "clienteId": str(s.cliente_id),
        "montoDeudaEstimado": a_float(s.monto_deuda_estimado),
        "cuotasSolicitadas": s.cuotas_solicitadas,
        "motivo": s.motivo,
        "estado": s.estado,
        "revisadoPor": s.revisado_por,
        "fechaRevision": iso(s.fecha_revision),
        "motivoRechazo": s.motivo_rechazo,
        "repactacionId": str(s.repactacion_id) if s.repactacion_id else None,
        "creadoEn": iso(s.creado_en),
    }


# ============================================================
# PERFIL
# ============================================================

def perfil_cliente(cliente: Cliente) -> dict:
    direccion = cliente.direccion_principal
    return {
        "id": str(cliente.id),
        "rut": formatear_rut(cliente.rut) if cliente.rut else None,
        "numeroCliente": cliente.numero_cliente,
        "nombreCompleto": cliente.nombre_completo,
        "primerNombre": cliente.primer_nombre,
        "primerApellido": cliente.primer_apellido,
        "correo": cliente.correo,
        "telefono": cliente.telefono,
        "direccion": direccion.texto if direccion else None,
        "estadoCuenta": cliente.estado_cuenta,
        "pagoAutomaticoActivo": bool(cliente.pago_automatico_activo),
    }


def actualizar_perfil(db: Session, cliente: Cliente, correo: Optional[str] = None, telefono: Optional[str] = None) -> dict:
    if correo is None and telefono is None:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")

    anteriores = {"correo": cliente.correo, "telefono": cliente.telefono}
    if correo is not None:
        cliente.correo = correo.strip().lower() or None
    if telefono is not None:
        cliente.telefono = telefono.strip() or None

    auditoria.registrar(
        db, "ACTUALIZAR_PERFIL", "clientes", cliente.id, usuario_tipo="cliente",
        datos_anteriores=anteriores,
        datos_nuevos={"correo": cliente.correo, "telefono": cliente.telefono},
    )
    db.commit()
    db.refresh(cliente)
    return perfil_cliente(cliente)


# ============================================================
# SALDO, PAGOS Y BOLETAS
# ============================================================

def saldo_cliente(db: Session, cliente_id: int) -> dict:
    resumen = saldo_service.resumen_saldo(db, cliente_id)
    return {
        "saldo": a_float(resumen["saldo"]),
        "saldoFormateado": formatear_pesos(resumen["saldo"]),
        "fechaVencimiento": iso(resumen["fecha_vencimiento"]),
        "estadoCuenta": resumen["estado_cuenta"],
    }


def pagos_cliente(db: Session, cliente_id: int, cursor=None, limit: Optional[int] = None) -> dict:
    query = db.query(Pago).filter(Pago.cliente_id == cliente_id)
    pagos, paginacion = paginar_por_cursor(query, Pago.id, cursor, limit)
    return {"data": [serializar_pago(p) for p in pagos], "pagination": paginacion}


def boletas_cliente(db: Session, cliente_id: int, cursor=None, limit: Optional[int] = None) -> dict:
    query = db.query(Boleta).filter(Boleta.cliente_id == cliente_id)
    boletas, paginacion = paginar_por_cursor(query, Boleta.id, cursor, limit)
    mapa = saldo_service.mapa_pagos_parciales(db, cliente_id)
    return {"data": [serializar_boleta(b, mapa) for b in boletas], "pagination": paginacion}


def boleta_detalle(db: Session, cliente_id: int, boleta_id: int) -> dict:
    boleta = db.query(Boleta).filter(Boleta.id == boleta_id, Boleta.cliente_id == cliente_id).first()
    if not boleta:
        raise ErrorNoEncontrado("Boleta no encontrada")

    mapa = saldo_service.mapa_pagos_parciales(db, cliente_id)
    detalle = serializar_boleta(boleta, mapa)
    detalle["cargos"] = {
        "costoAgua": a_float(boleta.costo_agua),
        "costoAlcantarillado": a_float(boleta.costo_alcantarillado),
        "costoTratamiento": a_float(boleta.costo_tratamiento),
        "costoCargoFijo": a_float(boleta.costo_cargo_fijo),
        "montoNeto": a_float(boleta.monto_neto),
        "montoIva": a_float(boleta.monto_iva),
        "montoSubsidio": a_float(boleta.monto_subsidio),
        "montoDescuento": a_float(boleta.monto_descuento),
        "montoInteres": a_float(boleta.monto_interes),
        "montoMultas": a_float(boleta.monto_multas),
        "montoSaldoAnterior": a_float(boleta.monto_saldo_anterior),
    }
    detalle["diasVencido"] = boleta.dias_vencido or 0
    return detalle


# ============================================================
# REPACTACIÓN
# ============================================================

def solicitar_repactacion(
    db: Session,
    cliente: Cliente,
    cuotas: int,
    motivo: Optional[str] = None,
    ip: Optional[str] = None,
) -> dict:
    """Un cliente puede tener a lo más una solicitud pendiente."""
    pendiente = db.query(SolicitudRepactacion).filter(
        SolicitudRepactacion.cliente_id == cliente.id,
        SolicitudRepactacion.estado == EstadoSolicitud.PENDIENTE.value,
    ).first()
    if pendiente:
        raise ErrorConflicto("Ya tiene una solicitud de repactación pendiente")

    deuda = saldo_service.obtener_saldo_actual(db, cliente.id)
    if deuda <= 0:
        raise ErrorValidacion("No tiene deuda pendiente para repactar")

    solicitud = SolicitudRepactacion(
        cliente_id=cliente.id,
        monto_deuda_estimado=deuda,
        cuotas_solicitadas=cuotas,
        motivo=motivo,
        estado=EstadoSolicitud.PENDIENTE.value,
    )
    db.add(solicitud)
    db.flush()

    auditoria.registrar(
        db, "SOLICITAR_REPACTACION", "solicitudes_repactacion", solicitud.id,
        usuario_tipo="cliente", ip_address=ip,
        datos_nuevos={"monto": str(deuda), "cuotas": cuotas},
    )
    db.commit()
    db.refresh(solicitud)

    logger.info(f"Cliente {cliente.id} solicitó repactación de {formatear_pesos(deuda)} en {cuotas} cuotas")
    return serializar_solicitud(solicitud)


def solicitudes_cliente(db: Session, cliente_id: int) -> list:
    solicitudes = (
        db.query(SolicitudRepactacion)
        .filter(SolicitudRepactacion.cliente_id == cliente_id)
        .order_by(SolicitudRepactacion.creado_en.desc(), SolicitudRepactacion.id.desc())
        .all()
    )
    return [serializar_solicitud(s) for s in solicitudes]


# ============================================================
# NOTIFICACIONES
# ============================================================

def notificaciones_activas(db: Session) -> list:
    ahora = ahora_utc()
    notificaciones = (
        db.query(Notificacion)
        .filter(
            Notificacion.activa == True,
            or_(Notificacion.desde == None, Notificacion.desde <= ahora),
            or_(Notificacion.hasta == None, Notificacion.hasta >= ahora),
        )
        .order_by(Notificacion.creado_en.desc())
        .all()
    )
    return [
        {
            "id": str(n.id),
            "titulo": n.titulo,
            "mensaje": n.mensaje,
            "tipo": n.tipo,
            "desde": iso(n.desde),
            "hasta": iso(n.hasta),
        }
        for n in notificaciones
    ]
