"""
Servicio: Subsidios
app/services/subsidios_service.py

Catálogo de subsidios (id del decreto) y su historial de altas y bajas
por cliente. El subsidio vigente de un cliente es su última alta.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from app.models import Cliente
from app.models_gestion import EstadoSubsidio, Subsidio, SubsidioHistorial, TipoMovimientoSubsidio
from app.services import auditoria
from app.utils.errores import ErrorConflicto, ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import hoy_chile, iso
from app.utils.moneda import a_decimal, a_float
from app.utils.paginacion import paginar

logger = logging.getLogger(__name__)

CAMPOS = ("limite_m3", "porcentaje", "fecha_inicio", "fecha_termino", "numero_decreto",
          "observaciones", "estado")


def es_vigente(s: Subsidio, hoy: Optional[date] = None) -> bool:
    hoy = hoy or hoy_chile()
    if s.estado != EstadoSubsidio.ACTIVO.value:
        return False
    if s.fecha_inicio and s.fecha_inicio > hoy:
        return False
    return s.fecha_termino is None or s.fecha_termino >= hoy


def serializar(s: Subsidio) -> dict:
    return {
        "id": s.id,
        "limiteM3": s.limite_m3,
        "porcentaje": a_float(s.porcentaje),
        "fechaInicio": iso(s.fecha_inicio),
        "fechaTermino": iso(s.fecha_termino),
        "numeroDecreto": s.numero_decreto,
        "observaciones": s.observaciones,
        "estado": s.estado,
        "esVigente": es_vigente(s),
    }


def serializar_movimiento(h: SubsidioHistorial) -> dict:
    cliente = h.cliente
    return {
        "id": str(h.id),
        "clienteId": str(h.cliente_id),
        "cliente": {
            "id": str(cliente.id),
            "numeroCliente": cliente.numero_cliente,
            "nombre": cliente.nombre_corto,
        } if cliente else None,
        "subsidioId": h.subsidio_id,
        "tipoCambio": h.tipo_cambio,
        "fechaCambio": iso(h.fecha_cambio),
        "detalles": h.detalles,
        "registradoPor": h.registrado_por,
    }


def obtener_subsidio(db: Session, subsidio_id: int) -> Subsidio:
    subsidio = db.query(Subsidio).filter(Subsidio.id == subsidio_id).first()
    if not subsidio:
        raise ErrorNoEncontrado("Subsidio no encontrado")
    return subsidio


def _validar(datos: dict, actual: Optional[Subsidio] = None):
    if "porcentaje" in datos and datos["porcentaje"] is not None:
        porcentaje = a_decimal(datos["porcentaje"])
        if porcentaje < 0 or porcentaje > Decimal("100"):
            raise ErrorValidacion("El porcentaje debe estar entre 0 y 100")
    if "limite_m3" in datos and datos["limite_m3"] is not None and datos["limite_m3"] < 0:
        raise ErrorValidacion("El límite de m³ no puede ser negativo")
    if datos.get("estado") and datos["estado"] not in {e.value for e in EstadoSubsidio}:
        raise ErrorValidacion("Estado de subsidio inválido")

    inicio = datos.get("fecha_inicio", actual.fecha_inicio if actual else None)
    termino = datos.get("fecha_termino", actual.fecha_termino if actual else None)
    if inicio and termino and termino < inicio:
        raise ErrorValidacion("La fecha de término no puede ser anterior a la de inicio")


# ============================================================
# CATÁLOGO
# ============================================================

def listar(db: Session, page: int = 1, limit: int = 50, estado: Optional[str] = None) -> dict:
    query = db.query(Subsidio)
    if estado:
        query = query.filter(Subsidio.estado == estado)
    query = query.order_by(Subsidio.fecha_inicio.desc(), Subsidio.id.desc())
    subsidios, paginacion = paginar(query, page, limit)
    return {"data": [serializar(s) for s in subsidios], "pagination": paginacion}


def activos(db: Session) -> list:
    subsidios = (
        db.query(Subsidio)
        .filter(Subsidio.estado == EstadoSubsidio.ACTIVO.value)
        .order_by(Subsidio.id)
        .all()
    )
    return [serializar(s) for s in subsidios if es_vigente(s)]


def crear(db: Session, datos: dict, admin_email: str) -> dict:
    if db.query(Subsidio.id).filter(Subsidio.id == datos["id"]).first():
        raise ErrorConflicto(f"Ya existe un subsidio con id {datos['id']}")
    _validar(datos)

    subsidio = Subsidio(id=datos["id"], **{k: v for k, v in datos.items() if k in CAMPOS and v is not None})
    db.add(subsidio)
    db.flush()

    auditoria.registrar(
        db, "CREAR_SUBSIDIO", "subsidios", subsidio.id, usuario_email=admin_email,
        datos_nuevos={k: str(v) for k, v in datos.items()},
    )
    db.commit()
    db.refresh(subsidio)
    return serializar(subsidio)


def actualizar(db: Session, subsidio_id: int, datos: dict, admin_email: str) -> dict:
    subsidio = obtener_subsidio(db, subsidio_id)
    if not datos:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")
    _validar(datos, subsidio)

    anteriores = {}
    for campo, valor in datos.items():
        if campo not in CAMPOS:
            continue
        anteriores[campo] = str(getattr(subsidio, campo))
        setattr(subsidio, campo, valor)

    auditoria.registrar(
        db, "EDITAR_SUBSIDIO", "subsidios", subsidio_id, usuario_email=admin_email,
        datos_anteriores=anteriores, datos_nuevos={k: str(v) for k, v in datos.items()},
    )
    db.commit()
    db.refresh(subsidio)
    return serializar(subsidio)


def eliminar(db: Session, subsidio_id: int, admin_email: str) -> dict:
    subsidio = obtener_subsidio(db, subsidio_id)
    movimientos = db.query(SubsidioHistorial).filter(SubsidioHistorial.subsidio_id == subsidio_id).count()
    if movimientos:
        raise ErrorConflicto(f"No se puede eliminar: el subsidio tiene {movimientos} movimientos en su historial")

    auditoria.registrar(
        db, "ELIMINAR_SUBSIDIO", "subsidios", subsidio_id, usuario_email=admin_email,
        datos_anteriores=serializar(subsidio),
    )
    db.delete(subsidio)
    db.commit()
    return {"success": True}


# ============================================================
# HISTORIAL POR CLIENTE
# ============================================================

def listar_historial(
    db: Session,
    page: int = 1,
    limit: int = 50,
    cliente_id: Optional[int] = None,
    subsidio_id: Optional[int] = None,
    tipo_cambio: Optional[str] = None,
) -> dict:
    query = db.query(SubsidioHistorial)
    if cliente_id:
        query = query.filter(SubsidioHistorial.cliente_id == cliente_id)
    if subsidio_id:
        query = query.filter(SubsidioHistorial.subsidio_id == subsidio_id)
    if tipo_cambio:
        query = query.filter(SubsidioHistorial.tipo_cambio == tipo_cambio)
    query = query.order_by(SubsidioHistorial.fecha_cambio.desc(), SubsidioHistorial.id.desc())

    movimientos, paginacion = paginar(query, page, limit)
    return {"data": [serializar_movimiento(h) for h in movimientos], "pagination": paginacion}


def _ultimo_movimiento(db: Session, cliente_id: int) -> Optional[SubsidioHistorial]:
    return (
        db.query(SubsidioHistorial)
        .filter(SubsidioHistorial.cliente_id == cliente_id)
        .order_by(SubsidioHistorial.fecha_cambio.desc(), SubsidioHistorial.id.desc())
        .first()
    )


def subsidio_actual(db: Session, cliente_id: int) -> Optional[dict]:
    ultimo = _ultimo_movimiento(db, cliente_id)
    if not ultimo or ultimo.tipo_cambio != TipoMovimientoSubsidio.ALTA.value:
        return None
    return {**serializar(ultimo.subsidio), "asignadoEn": iso(ultimo.fecha_cambio)}


def asignar(db: Session, cliente_id: int, subsidio_id: int, detalles: Optional[str], admin_email: str) -> dict:
    if not db.query(Cliente.id).filter(Cliente.id == cliente_id).first():
        raise ErrorNoEncontrado("Cliente no encontrado")
    subsidio = obtener_subsidio(db, subsidio_id)
    if subsidio.estado != EstadoSubsidio.ACTIVO.value:
        raise ErrorValidacion("El subsidio no está activo")

    ultimo = _ultimo_movimiento(db, cliente_id)
    if ultimo and ultimo.tipo_cambio == TipoMovimientoSubsidio.ALTA.value and ultimo.subsidio_id == subsidio_id:
        raise ErrorConflicto("El cliente ya tiene asignado este subsidio")

    movimiento = SubsidioHistorial(
        cliente_id=cliente_id,
        subsidio_id=subsidio_id,
        tipo_cambio=TipoMovimientoSubsidio.ALTA.value,
        detalles=detalles,
        registrado_por=admin_email,
    )
    db.add(movimiento)
    db.flush()

    auditoria.registrar(
        db, "ASIGNAR_SUBSIDIO", "subsidio_historial", movimiento.id, usuario_email=admin_email,
        datos_nuevos={"cliente_id": cliente_id, "subsidio_id": subsidio_id},
    )
    db.commit()
    db.refresh(movimiento)

    logger.info(f"Subsidio {subsidio_id} asignado a cliente {cliente_id} por {admin_email}")
    return serializar_movimiento(movimiento)


def retirar(db: Session, cliente_id: int, detalles: Optional[str], admin_email: str) -> dict:
    ultimo = _ultimo_movimiento(db, cliente_id)
    if not ultimo or ultimo.tipo_cambio != TipoMovimientoSubsidio.ALTA.value:
        raise ErrorValidacion("El cliente no tiene un subsidio asignado")

    movimiento = SubsidioHistorial(
        cliente_id=cliente_id,
        subsidio_id=ultimo.subsidio_id,
        tipo_cambio=TipoMovimientoSubsidio.BAJA.value,
        detalles=detalles,
        registrado_por=admin_email,
    )
    db.add(movimiento)
    db.flush()

    auditoria.registrar(
        db, "RETIRAR_SUBSIDIO", "subsidio_historial", movimiento.id, usuario_email=admin_email,
        datos_nuevos={"cliente_id": cliente_id, "subsidio_id": ultimo.subsidio_id},
    )
    db.commit()
    db.refresh(movimiento)

    logger.info(f"Subsidio {ultimo.subsidio_id} retirado al cliente {cliente_id} por {admin_email}")
    return serializar_movimiento(movimiento)
