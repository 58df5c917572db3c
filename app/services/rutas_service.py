"""
Servicio: Rutas de Lectura
app/services/rutas_service.py

Cada ruta agrupa direcciones en un orden de visita (orden_ruta).
"""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import Direccion, Medidor, Ruta
from app.services import auditoria
from app.utils.errores import ErrorConflicto, ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import iso

logger = logging.getLogger(__name__)


def _serializar(r: Ruta, total_direcciones: int = 0) -> dict:
    return {
        "id": str(r.id),
        "nombre": r.nombre,
        "descripcion": r.descripcion,
        "totalDirecciones": total_direcciones,
        "creadoEn": iso(r.creado_en),
    }


def _serializar_direccion(d: Direccion) -> dict:
    cliente = d.cliente
    medidor = next((m for m in d.medidores if m.fecha_retiro is None), None)
    return {
        "id": str(d.id),
        "ordenRuta": d.orden_ruta,
        "direccion": d.texto,
        "cliente": {
            "id": str(cliente.id),
            "numeroCliente": cliente.numero_cliente,
            "nombre": cliente.nombre_corto,
        } if cliente else None,
        "medidor": {
            "id": str(medidor.id),
            "numeroSerie": medidor.numero_serie,
            "mostrarEnRuta": medidor.mostrar_en_ruta,
        } if medidor else None,
    }


def obtener_ruta(db: Session, ruta_id: int) -> Ruta:
    ruta = db.query(Ruta).filter(Ruta.id == ruta_id).first()
    if not ruta:
        raise ErrorNoEncontrado("Ruta no encontrada")
    return ruta


def _contar_direcciones(db: Session, ruta_id: int) -> int:
    return db.query(Direccion).filter(Direccion.ruta_id == ruta_id).count()


def _validar_nombre(db: Session, nombre: Optional[str], ruta_id: Optional[int] = None) -> str:
    nombre = (nombre or "").strip()
    if not nombre:
        raise ErrorValidacion("El nombre de la ruta es obligatorio")
    query = db.query(Ruta.id).filter(func.lower(Ruta.nombre) == nombre.lower())
    if ruta_id:
        query = query.filter(Ruta.id != ruta_id)
    if query.first():
        raise ErrorConflicto(f"Ya existe una ruta con el nombre '{nombre}'")
    return nombre


# ============================================================
# CRUD
# ============================================================

def listar(db: Session) -> list:
    conteos = dict(
        db.query(Direccion.ruta_id, func.count(Direccion.id))
        .filter(Direccion.ruta_id != None)
        .group_by(Direccion.ruta_id)
        .all()
    )
    rutas = db.query(Ruta).order_by(Ruta.nombre).all()
    return [_serializar(r, conteos.get(r.id, 0)) for r in rutas]


def detalle(db: Session, ruta_id: int) -> dict:
    ruta = obtener_ruta(db, ruta_id)
    return {
        **_serializar(ruta, _contar_direcciones(db, ruta_id)),
        "direcciones": direcciones_de_ruta(db, ruta_id),
    }


def crear(db: Session, nombre: str, descripcion: Optional[str], admin_email: str) -> dict:
    ruta = Ruta(nombre=_validar_nombre(db, nombre), descripcion=descripcion)
    db.add(ruta)
    db.flush()

    auditoria.registrar(
        db, "CREAR_RUTA", "rutas", ruta.id, usuario_email=admin_email,
        datos_nuevos={"nombre": ruta.nombre, "descripcion": descripcion},
    )
    db.commit()
    db.refresh(ruta)
    return _serializar(ruta)


def actualizar(db: Session, ruta_id: int, datos: dict, admin_email: str) -> dict:
    ruta = obtener_ruta(db, ruta_id)
    if not datos:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")

    anteriores = {"nombre": ruta.nombre, "descripcion": ruta.descripcion}
    if "nombre" in datos:
        ruta.nombre = _validar_nombre(db, datos["nombre"], ruta_id)
    if "descripcion" in datos:
        ruta.descripcion = datos["descripcion"]

    auditoria.registrar(
        db, "EDITAR_RUTA", "rutas", ruta_id, usuario_email=admin_email,
        datos_anteriores=anteriores,
        datos_nuevos={"nombre": ruta.nombre, "descripcion": ruta.descripcion},
    )
    db.commit()
    db.refresh(ruta)
    return _serializar(ruta, _contar_direcciones(db, ruta_id))


def eliminar(db: Session, ruta_id: int, admin_email: str) -> dict:
    ruta = obtener_ruta(db, ruta_id)
    asignadas = _contar_direcciones(db, ruta_id)
    if asignadas:
        raise ErrorConflicto(f"No se puede eliminar: la ruta tiene {asignadas} direcciones asignadas")

    auditoria.registrar(
        db, "ELIMINAR_RUTA", "rutas", ruta_id, usuario_email=admin_email,
        datos_anteriores={"nombre": ruta.nombre},
    )
    db.delete(ruta)
    db.commit()
    return {"success": True}


# ============================================================
# DIRECCIONES DE LA RUTA
# ============================================================

def direcciones_de_ruta(db: Session, ruta_id: int) -> list:
    direcciones = (
        db.query(Direccion)
        .filter(Direccion.ruta_id == ruta_id)
        .order_by(Direccion.orden_ruta.is_(None), Direccion.orden_ruta, Direccion.id)
        .all()
    )
    return [_serializar_direccion(d) for d in direcciones]


def reasignar_direcciones(db: Session, ruta_destino_id: int, direccion_ids: list, admin_email: str) -> dict:
    """Mueve direcciones a otra ruta, agregándolas al final de su recorrido."""
    obtener_ruta(db, ruta_destino_id)
    if not direccion_ids:
        raise ErrorValidacion("Debe indicar al menos una dirección")

    direcciones = db.query(Direccion).filter(Direccion.id.in_(direccion_ids)).all()
    encontradas = {d.id for d in direcciones}
    faltantes = [i for i in direccion_ids if i not in encontradas]
    if faltantes:
        raise ErrorNoEncontrado(f"Direcciones no encontradas: {', '.join(str(i) for i in faltantes)}")

    maximo = (
        db.query(func.max(Direccion.orden_ruta))
        .filter(Direccion.ruta_id == ruta_destino_id)
        .scalar()
    ) or 0

    # Respeta el orden en que vienen los ids
    por_id = {d.id: d for d in direcciones}
    for posicion, direccion_id in enumerate(direccion_ids, start=1):
        direccion = por_id[direccion_id]
        direccion.ruta_id = ruta_destino_id
        direccion.orden_ruta = maximo + posicion

    auditoria.registrar(
        db, "REASIGNAR_DIRECCIONES", "rutas", ruta_destino_id, usuario_email=admin_email,
        datos_nuevos={"direcciones": [str(i) for i in direccion_ids]},
    )
    db.commit()

    logger.info(f"{len(direccion_ids)} direcciones reasignadas a ruta {ruta_destino_id}")
    return {"success": True, "reasignadas": len(direccion_ids)}


def actualizar_orden(db: Session, direccion_id: int, orden: int, admin_email: str) -> dict:
    direccion = db.query(Direccion).filter(Direccion.id == direccion_id).first()
    if not direccion:
        raise ErrorNoEncontrado("Dirección no encontrada")
    if not direccion.ruta_id:
        raise ErrorValidacion("La dirección no pertenece a ninguna ruta")
    if orden < 1:
        raise ErrorValidacion("El orden debe ser mayor a cero")

    anterior = direccion.orden_ruta
    direccion.orden_ruta = orden
    auditoria.registrar(
        db, "EDITAR_ORDEN_RUTA", "direcciones", direccion_id, usuario_email=admin_email,
        datos_anteriores={"orden_ruta": anterior}, datos_nuevos={"orden_ruta": orden},
    )
    db.commit()
    return {"id": str(direccion.id), "rutaId": str(direccion.ruta_id), "ordenRuta": direccion.orden_ruta}


def medidores_para_lectura(db: Session, ruta_id: int) -> list:
    """Medidores en servicio visibles en la hoja de ruta, en orden de visita."""
    obtener_ruta(db, ruta_id)
    filas = (
        db.query(Medidor, Direccion)
        .join(Direccion, Medidor.direccion_id == Direccion.id)
        .filter(
            Direccion.ruta_id == ruta_id,
            Medidor.fecha_retiro == None,
            Medidor.mostrar_en_ruta == True,
        )
        .order_by(Direccion.orden_ruta.is_(None), Direccion.orden_ruta, Direccion.id)
        .all()
    )
    return [
        {
            "medidorId": str(m.id),
            "numeroSerie": m.numero_serie,
            "ordenRuta": d.orden_ruta,
            "direccion": d.texto,
            "cliente": d.cliente.nombre_corto if d.cliente else None,
        }
        for m, d in filas
    ]
