"""
Servicio: Saldo y Pagos Parciales
app/services/saldo_service.py

Calcula el saldo de un cliente, su próximo vencimiento y cuánto queda
por pagar de cada boleta impaga.

Los pagos no están ligados a una boleta: se imputan contra la deuda total,
cubriendo primero lo más antiguo (FIFO). Por eso, al repartir el saldo
pendiente entre las boletas impagas, se recorre desde la más reciente hacia
la más antigua: lo que queda debiendo está en las boletas nuevas.

Todo el cálculo es con Decimal. Las funciones de lectura no modifican
nada y dan el mismo resultado si no hubo escrituras entre llamadas.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import ESTADOS_IMPAGOS, Boleta, Cliente, EstadoBoleta, EstadoPago, Pago
from app.services import auditoria
from app.utils.errores import ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import ahora_utc
from app.utils.moneda import CERO, a_decimal, formatear_pesos

logger = logging.getLogger(__name__)

CENTAVO = Decimal("0.01")


def _centavos(valor) -> Decimal:
    return a_decimal(valor).quantize(CENTAVO)


def monto_mes(boleta: Boleta) -> Decimal:
    """Monto del mes; las boletas sin monto_total_mes usan monto_total."""
    if boleta.monto_total_mes is not None:
        return _centavos(boleta.monto_total_mes)
    return _centavos(boleta.monto_total)


def estado_cuenta(saldo: Decimal) -> str:
    return "MOROSO" if saldo > 0 else "AL_DIA"


# ── Consultas base ────────────────────────────────────────────────────────────

def _boletas_impagas(db: Session, cliente_id: int) -> list[Boleta]:
    return (
        db.query(Boleta)
        .filter(Boleta.cliente_id == cliente_id, Boleta.estado.in_(ESTADOS_IMPAGOS))
        .order_by(Boleta.periodo_desde.desc(), Boleta.id.desc())
        .all()
    )


def _total_pagado(db: Session, cliente_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Pago.monto), 0))
        .filter(Pago.cliente_id == cliente_id, Pago.estado == EstadoPago.COMPLETADO.value)
        .scalar()
    )
    return _centavos(total)


def _total_cubierto(db: Session, cliente_id: int) -> Decimal:
    pagadas = (
        db.query(Boleta)
        .filter(Boleta.cliente_id == cliente_id, Boleta.estado == EstadoBoleta.PAGADA.value)
        .all()
    )
    return sum((monto_mes(b) for b in pagadas), CERO)


def _saldo(db: Session, cliente_id: int, impagas: list[Boleta]) -> Decimal:
    if not impagas:
        return CERO

    deuda_bruta = sum((monto_mes(b) for b in impagas), CERO)
    abonos = max(CERO, _total_pagado(db, cliente_id) - _total_cubierto(db, cliente_id))
    return max(CERO, deuda_bruta - abonos)


def _repartir(impagas: list[Boleta], saldo: Decimal) -> dict:
    """impagas debe venir de más reciente a más antigua."""
    mapa = {}
    restante = saldo
    for boleta in impagas:
        mes = monto_mes(boleta)
        adeudado = min(restante, mes) if mes > 0 else CERO
        restante = max(CERO, restante - mes)
        mapa[boleta.id] = {
            "monto_adeudado": adeudado,
            "parcialmente_pagada": CERO < adeudado < mes,
        }
    return mapa


# ── API del servicio ──────────────────────────────────────────────────────────

def obtener_saldo_actual(db: Session, cliente_id: int) -> Decimal:
    return _saldo(db, cliente_id, _boletas_impagas(db, cliente_id))


def obtener_proximo_vencimiento(db: Session, cliente_id: int):
    return (
        db.query(func.min(Boleta.fecha_vencimiento))
        .filter(Boleta.cliente_id == cliente_id, Boleta.estado.in_(ESTADOS_IMPAGOS))
        .scalar()
    )


def mapa_pagos_parciales(db: Session, cliente_id: int) -> dict:
    """
    {boleta_id: {"monto_adeudado": Decimal, "parcialmente_pagada": bool}}
    para cada boleta pendiente o parcial del cliente.
    """
    impagas = _boletas_impagas(db, cliente_id)
    return _repartir(impagas, _saldo(db, cliente_id, impagas))


def resumen_saldo(db: Session, cliente_id: int) -> dict:
    if not db.query(Cliente.id).filter(Cliente.id == cliente_id).first():
        raise ErrorNoEncontrado("Cliente no encontrado")

    impagas = _boletas_impagas(db, cliente_id)
    saldo = _saldo(db, cliente_id, impagas)
    return {
        "saldo": saldo,
        "fecha_vencimiento": obtener_proximo_vencimiento(db, cliente_id),
        "estado_cuenta": estado_cuenta(saldo),
        "boletas": _repartir(impagas, saldo),
    }


def recalcular_estados_boletas(db: Session, cliente_id: int) -> dict:
    """
    Recalcula el estado de las boletas impagas del cliente con el mismo
    criterio de obtener_saldo_actual: las boletas ya pagadas consumen su
    monto del total pagado y el resto se imputa a las impagas. No hace commit.
    """
    impagas = _boletas_impagas(db, cliente_id)

    deuda_bruta = sum((monto_mes(b) for b in impagas), CERO)
    abonos = max(CERO, _total_pagado(db, cliente_id) - _total_cubierto(db, cliente_id))
    saldo = max(CERO, deuda_bruta - abonos)
    credito = max(CERO, abonos - deuda_bruta)

    restante = saldo
    actualizadas = pagadas = pendientes = 0
    detalles = []

    for boleta in impagas:
        mes = monto_mes(boleta)
        adeudado = min(restante, mes) if mes > 0 else CERO
        restante = max(CERO, restante - adeudado)

        if adeudado <= 0:
            nuevo = EstadoBoleta.PAGADA.value
        elif adeudado < mes:
            nuevo = EstadoBoleta.PARCIAL.value
        else:
            nuevo = EstadoBoleta.PENDIENTE.value

        if nuevo == EstadoBoleta.PAGADA.value:
            pagadas += 1
        else:
            pendientes += 1

        if boleta.estado != nuevo:
            detalles.append({
                "boleta_id": boleta.id,
                "estado_anterior": boleta.estado,
                "estado_nuevo": nuevo,
                "monto_adeudado": adeudado,
            })
            boleta.estado = nuevo
            actualizadas += 1

    return {
        "boletas_actualizadas": actualizadas,
        "boletas_pagadas": pagadas,
        "boletas_pendientes": pendientes,
        "saldo_nuevo": saldo,
        "credito_disponible": credito,
        "detalles": detalles,
    }


def registrar_pago_y_aplicar(
    db: Session,
    cliente_id: int,
    monto,
    tipo_pago: str = "efectivo",
    canal: str = "oficina",
    numero_transaccion: Optional[str] = None,
    observaciones: Optional[str] = None,
    registrado_por: Optional[str] = None,
    fecha_pago=None,
) -> dict:
    """Crea un pago completado y reimputa la deuda del cliente."""
    monto = _centavos(monto)
    if monto <= 0:
        raise ErrorValidacion("El monto debe ser mayor a cero")

    cliente = db.query(Cliente).filter(Cliente.id == cliente_id).first()
    if not cliente:
        raise ErrorNoEncontrado("Cliente no encontrado")

    pago = Pago(
        cliente_id=cliente_id,
        monto=monto,
        fecha_pago=fecha_pago or ahora_utc(),
        tipo_pago=tipo_pago,
        canal=canal,
        estado=EstadoPago.COMPLETADO.value,
        numero_transaccion=numero_transaccion,
        observaciones=observaciones,
        registrado_por=registrado_por,
    )
    db.add(pago)
    db.flush()

    resultado = recalcular_estados_boletas(db, cliente_id)

    if resultado["credito_disponible"] > 0:
        nota = f"[Saldo a favor: {formatear_pesos(resultado['credito_disponible'])}]"
        pago.observaciones = f"{pago.observaciones} {nota}".strip() if pago.observaciones else nota

    auditoria.registrar(
        db, "REGISTRAR_PAGO", "pagos", pago.id,
        usuario_email=registrado_por,
        datos_nuevos={
            "cliente_id": cliente_id,
            "monto": str(monto),
            "tipo_pago": tipo_pago,
            "boletas_actualizadas": resultado["boletas_actualizadas"],
            "saldo_nuevo": str(resultado["saldo_nuevo"]),
        },
    )
    db.commit()
    db.refresh(pago)

    logger.info(
        f"Pago {pago.id} de {formatear_pesos(monto)} aplicado a cliente {cliente_id}: "
        f"{resultado['boletas_actualizadas']} boletas actualizadas, saldo {formatear_pesos(resultado['saldo_nuevo'])}"
    )

    return {"pago": pago, **resultado}
