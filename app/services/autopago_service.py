"""
Servicio: Pago Automático
app/services/autopago_service.py

Activación y consulta del pago automático con tarjeta guardada.
El cobro recurrente lo hace el proveedor de pagos; aquí solo se guarda
la preferencia del cliente y se muestran los intentos registrados.
"""

from sqlalchemy.orm import Session

from app.models import Cliente, IntentoPagoAutomatico, TarjetaGuardada
from app.services import auditoria
from app.utils.errores import ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import iso
from app.utils.moneda import a_float


def estado_autopago(db: Session, cliente_id: int) -> dict:
    cliente = db.query(Cliente).filter(Cliente.id == cliente_id).first()
    if not cliente:
        raise ErrorNoEncontrado("Cliente no encontrado")

    tarjeta = None
    if cliente.tarjeta_pago_automatico_id:
        tarjeta = db.query(TarjetaGuardada).filter(
            TarjetaGuardada.id == cliente.tarjeta_pago_automatico_id
        ).first()

    ultimo = (
        db.query(IntentoPagoAutomatico)
        .filter(IntentoPagoAutomatico.cliente_id == cliente_id)
        .order_by(IntentoPagoAutomatico.creado_en.desc(), IntentoPagoAutomatico.id.desc())
        .first()
    )

    return {
        "activo": bool(cliente.pago_automatico_activo),
        "tarjetaId": str(tarjeta.id) if tarjeta else None,
        "tarjetaUltimosDigitos": tarjeta.ultimos_digitos if tarjeta else None,
        "tarjetaTipo": tarjeta.tipo_tarjeta if tarjeta else None,
        "ultimoIntento": {
            "fecha": iso(ultimo.creado_en),
            "estado": ultimo.estado,
            "monto": a_float(ultimo.monto),
            "error": ultimo.error_mensaje,
        } if ultimo else None,
    }


def historial_autopago(db: Session, cliente_id: int, limit: int = 10) -> list:
    intentos = (
        db.query(IntentoPagoAutomatico)
        .filter(IntentoPagoAutomatico.cliente_id == cliente_id)
        .order_by(IntentoPagoAutomatico.creado_en.desc(), IntentoPagoAutomatico.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": str(i.id),
            "fecha": iso(i.creado_en),
            "monto": a_float(i.monto),
            "estado": i.estado,
            "intentoNumero": i.intento_numero,
            "errorMensaje": i.error_mensaje,
        }
        for i in intentos
    ]


def activar_autopago(db: Session, cliente: Cliente, tarjeta_id: int) -> dict:
    tarjeta = db.query(TarjetaGuardada).filter(
        TarjetaGuardada.id == tarjeta_id,
        TarjetaGuardada.cliente_id == cliente.id,
        TarjetaGuardada.activa == True,
    ).first()
    if not tarjeta:
        raise ErrorValidacion("Tarjeta no encontrada o inactiva")

    cliente.pago_automatico_activo = True
    cliente.tarjeta_pago_automatico_id = tarjeta.id
    auditoria.registrar(
        db, "ACTIVAR_AUTOPAGO", "clientes", cliente.id, usuario_tipo="cliente",
        datos_nuevos={"pago_automatico_activo": True, "tarjeta_pago_automatico_id": str(tarjeta.id)},
    )
    db.commit()
    return {"success": True}


def desactivar_autopago(db: Session, cliente: Cliente) -> dict:
    # La tarjeta queda asociada para cuando se reactive
    cliente.pago_automatico_activo = False
    auditoria.registrar(
        db, "DESACTIVAR_AUTOPAGO", "clientes", cliente.id, usuario_tipo="cliente",
        datos_nuevos={"pago_automatico_activo": False},
    )
    db.commit()
    return {"success": True}
