"""
Servicio: Tarifas
app/services/tarifas_service.py

Valores de cobro del comité. Solo una tarifa es vigente a la vez: la de
fecha_inicio más reciente que ya comenzó y cuya fecha_fin no ha llegado.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models_gestion import Tarifa
from app.services import auditoria
from app.utils.errores import ErrorConflicto, ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import hoy_chile, iso
from app.utils.moneda import a_decimal, a_float
from app.utils.paginacion import paginar

logger = logging.getLogger(__name__)

CAMPOS = ("costo_despacho", "costo_reposicion_1", "costo_reposicion_2", "costo_m3_agua",
          "costo_m3_alcantarillado_tratamiento", "cargo_fijo", "tasa_iva", "fecha_inicio",
          "fecha_fin", "tasa_interes_mensual", "dias_gracia_interes")
ANULABLES = ("fecha_fin", "costo_m3_alcantarillado_tratamiento")

ORDENAMIENTOS = {
    "fechaInicio": Tarifa.fecha_inicio,
    "cargoFijo": Tarifa.cargo_fijo,
    "costoM3": Tarifa.costo_m3_agua,
}


def es_vigente(t: Tarifa, hoy: Optional[date] = None) -> bool:
    hoy = hoy or hoy_chile()
    return t.fecha_inicio <= hoy and (t.fecha_fin is None or t.fecha_fin > hoy)


def serializar(t: Tarifa) -> dict:
    return {
        "id": str(t.id),
        "costoDespacho": a_float(t.costo_despacho),
        "costoReposicion1": a_float(t.costo_reposicion_1),
        "costoReposicion2": a_float(t.costo_reposicion_2),
        "costoM3Agua": a_float(t.costo_m3_agua),
        "costoM3AlcantarilladoTratamiento": (
            a_float(t.costo_m3_alcantarillado_tratamiento)
            if t.costo_m3_alcantarillado_tratamiento is not None else None
        ),
        "cargoFijo": a_float(t.cargo_fijo),
        "tasaIva": a_float(t.tasa_iva),
        "fechaInicio": iso(t.fecha_inicio),
        "fechaFin": iso(t.fecha_fin),
        "tasaInteresMensual": a_float(t.tasa_interes_mensual),
        "diasGraciaInteres": t.dias_gracia_interes if t.dias_gracia_interes is not None else 30,
        "fechaCreacion": iso(t.fecha_creacion),
        "esVigente": es_vigente(t),
    }


def obtener_tarifa(db: Session, tarifa_id: int) -> Tarifa:
    tarifa = db.query(Tarifa).filter(Tarifa.id == tarifa_id).first()
    if not tarifa:
        raise ErrorNoEncontrado("Tarifa no encontrada")
    return tarifa


def tarifa_vigente(db: Session, hoy: Optional[date] = None) -> Optional[Tarifa]:
    hoy = hoy or hoy_chile()
    return (
        db.query(Tarifa)
        .filter(
            Tarifa.fecha_inicio <= hoy,
            or_(Tarifa.fecha_fin == None, Tarifa.fecha_fin > hoy),
        )
        .order_by(Tarifa.fecha_inicio.desc(), Tarifa.id.desc())
        .first()
    )


def listar(
    db: Session,
    page: int = 1,
    limit: int = 50,
    sort_by: str = "fechaInicio",
    sort_direction: str = "desc",
) -> dict:
    columna = ORDENAMIENTOS.get(sort_by, Tarifa.fecha_inicio)
    query = db.query(Tarifa).order_by(
        columna.desc() if sort_direction == "desc" else columna.asc(), Tarifa.id.desc()
    )
    tarifas, paginacion = paginar(query, page, limit)
    return {"tarifas": [serializar(t) for t in tarifas], "pagination": paginacion}


def _validar(datos: dict, actual: Optional[Tarifa] = None):
    tasa_iva = datos.get("tasa_iva")
    if tasa_iva is not None and not (0 <= a_decimal(tasa_iva) <= 1):
        raise ErrorValidacion("La tasa IVA debe estar entre 0 y 1")

    inicio = datos.get("fecha_inicio", actual.fecha_inicio if actual else None)
    fin = datos.get("fecha_fin", actual.fecha_fin if actual else None)
    if inicio and fin and fin <= inicio:
        raise ErrorValidacion("La fecha de fin debe ser posterior a la de inicio")


def crear(db: Session, datos: dict, admin_email: str) -> dict:
    _validar(datos)

    tarifa = Tarifa(**{k: v for k, v in datos.items() if k in CAMPOS and v is not None})
    db.add(tarifa)
    db.flush()

    auditoria.registrar(
        db, "CREAR_TARIFA", "tarifas", tarifa.id, usuario_email=admin_email,
        datos_nuevos={k: str(v) for k, v in datos.items() if v is not None},
    )
    db.commit()
    db.refresh(tarifa)

    logger.info(f"Tarifa {tarifa.id} creada por {admin_email}, vigente desde {tarifa.fecha_inicio}")
    return serializar(tarifa)


def actualizar(db: Session, tarifa_id: int, datos: dict, admin_email: str) -> dict:
    tarifa = obtener_tarifa(db, tarifa_id)
    if not datos:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")
    _validar(datos, tarifa)

    anteriores = serializar(tarifa)
    for campo, valor in datos.items():
        if campo in CAMPOS and (valor is not None or campo in ANULABLES):
            setattr(tarifa, campo, valor)
    db.flush()

    auditoria.registrar(
        db, "EDITAR_TARIFA", "tarifas", tarifa_id, usuario_email=admin_email,
        datos_anteriores=anteriores, datos_nuevos=serializar(tarifa),
    )
    db.commit()
    db.refresh(tarifa)
    return serializar(tarifa)


def eliminar(db: Session, tarifa_id: int, admin_email: str) -> dict:
    tarifa = obtener_tarifa(db, tarifa_id)
    vigente = tarifa_vigente(db)
    if vigente and vigente.id == tarifa.id:
        raise ErrorConflicto("No se puede eliminar la tarifa vigente")

    auditoria.registrar(
        db, "ELIMINAR_TARIFA", "tarifas", tarifa_id, usuario_email=admin_email,
        datos_anteriores=serializar(tarifa),
    )
    db.delete(tarifa)
    db.commit()
    return {"success": True, "message": "Tarifa eliminada correctamente"}
