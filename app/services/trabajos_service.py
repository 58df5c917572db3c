"""
Servicio: Trabajos de generación de PDFs
app/services/trabajos_service.py

Registro de progreso de los trabajos en segundo plano. El frontend
consulta el estado cada pocos segundos; la cancelación es cooperativa:
el proceso relee el estado del trabajo antes de cada boleta.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.models import EstadoTrabajo, TrabajoPdf
from app.utils import almacenamiento
from app.utils.fechas import ahora_utc, iso

logger = logging.getLogger(__name__)

DIAS_RETENCION = 7
ESTADOS_FINALES = (EstadoTrabajo.COMPLETADO.value, EstadoTrabajo.ERROR.value, EstadoTrabajo.CANCELADO.value)


def _porcentaje(t: TrabajoPdf) -> int:
    if not t.total:
        return 0
    return round((t.procesados or 0) * 100 / t.total)


def _tiempo_estimado(t: TrabajoPdf) -> Optional[int]:
    """Segundos restantes según el ritmo observado desde el inicio."""
    if t.estado != EstadoTrabajo.PROCESANDO.value or not t.procesados or not t.iniciado_en:
        return None
    transcurrido = (ahora_utc() - t.iniciado_en).total_seconds()
    if transcurrido <= 0:
        return None
    ritmo = t.procesados / transcurrido
    restantes = max(0, (t.total or 0) - t.procesados)
    return round(restantes / ritmo)


def serializar(t: TrabajoPdf, con_estimacion: bool = True) -> dict:
    return {
        "id": t.id,
        "periodo": t.periodo,
        "estado": t.estado,
        "total": t.total or 0,
        "procesados": t.procesados or 0,
        "exitosos": t.exitosos or 0,
        "fallidos": t.fallidos or 0,
        "omitidos": t.omitidos or 0,
        "regenerar": bool(t.regenerar),
        "generarZip": bool(t.generar_zip),
        "zipPath": t.zip_path,
        "errores": list(t.errores or []),
        "creadoEn": iso(t.creado_en),
        "iniciadoEn": iso(t.iniciado_en),
        "completadoEn": iso(t.completado_en),
        "adminEmail": t.admin_email,
        "porcentaje": _porcentaje(t),
        "tiempoEstimado": _tiempo_estimado(t) if con_estimacion else None,
    }


# ============================================================
# CICLO DE VIDA
# ============================================================

def crear(db: Session, periodo: str, regenerar: bool, admin_email: str, total: int, generar_zip: bool = False) -> TrabajoPdf:
    trabajo = TrabajoPdf(
        periodo=periodo,
        regenerar=regenerar,
        generar_zip=generar_zip,
        admin_email=admin_email,
        total=total,
        estado=EstadoTrabajo.PENDIENTE.value,
        errores=[],
    )
    db.add(trabajo)
    db.commit()
    db.refresh(trabajo)
    return trabajo


def iniciar(db: Session, trabajo_id: str) -> bool:
    """Pasa a procesando solo si sigue pendiente (pudo cancelarse antes de partir)."""
    filas = db.query(TrabajoPdf).filter(
        TrabajoPdf.id == trabajo_id,
        TrabajoPdf.estado == EstadoTrabajo.PENDIENTE.value,
    ).update(
        {"estado": EstadoTrabajo.PROCESANDO.value, "iniciado_en": ahora_utc()},
        synchronize_session=False,
    )
    db.commit()
    return filas > 0


def actualizar_progreso(
    db: Session,
    trabajo_id: str,
    procesados: int,
    exitosos: int,
    fallidos: int,
    omitidos: int,
    errores: list,
):
    db.query(TrabajoPdf).filter(TrabajoPdf.id == trabajo_id).update(
        {
            "procesados": procesados,
            "exitosos": exitosos,
            "fallidos": fallidos,
            "omitidos": omitidos,
            "errores": list(errores),
        },
        synchronize_session=False,
    )
    db.commit()


def completar(db: Session, trabajo_id: str, zip_path: Optional[str]) -> bool:
    """Solo si sigue procesando; un trabajo cancelado mientras armaba el ZIP queda cancelado."""
    filas = db.query(TrabajoPdf).filter(
        TrabajoPdf.id == trabajo_id,
        TrabajoPdf.estado == EstadoTrabajo.PROCESANDO.value,
    ).update(
        {
            "estado": EstadoTrabajo.COMPLETADO.value,
            "zip_path": zip_path,
            "completado_en": ahora_utc(),
        },
        synchronize_session=False,
    )
    db.commit()
    return filas > 0


def fallar(db: Session, trabajo_id: str, error: str):
    trabajo = db.query(TrabajoPdf).filter(TrabajoPdf.id == trabajo_id).first()
    if not trabajo:
        return
    trabajo.errores = list(trabajo.errores or []) + [error]
    if trabajo.estado not in ESTADOS_FINALES:
        trabajo.estado = EstadoTrabajo.ERROR.value
        trabajo.completado_en = ahora_utc()
    db.commit()


def cancelar(db: Session, trabajo_id: str) -> bool:
    """False si no existe o ya terminó."""
    trabajo = db.query(TrabajoPdf).filter(TrabajoPdf.id == trabajo_id).first()
    if not trabajo or trabajo.estado in ESTADOS_FINALES:
        return False

    trabajo.estado = EstadoTrabajo.CANCELADO.value
    trabajo.completado_en = ahora_utc()
    db.commit()
    return True


# ============================================================
# CONSULTAS
# ============================================================

def obtener(db: Session, trabajo_id: str) -> Optional[dict]:
    trabajo = db.query(TrabajoPdf).filter(TrabajoPdf.id == trabajo_id).first()
    return serializar(trabajo) if trabajo else None


def recientes(db: Session, admin_email: str, limit: int = 10) -> list:
    trabajos = (
        db.query(TrabajoPdf)
        .filter(TrabajoPdf.admin_email == admin_email)
        .order_by(TrabajoPdf.creado_en.desc())
        .limit(limit)
        .all()
    )
    return [serializar(t, con_estimacion=False) for t in trabajos]


def esta_cancelado(db: Session, trabajo_id: str) -> bool:
    estado = db.query(TrabajoPdf.estado).filter(TrabajoPdf.id == trabajo_id).scalar()
    return estado == EstadoTrabajo.CANCELADO.value


def limpiar_trabajos_antiguos(db: Session, dias: int = DIAS_RETENCION) -> int:
    """Borra trabajos terminados hace más de `dias` días junto con su ZIP."""
    limite = ahora_utc() - timedelta(days=dias)
    antiguos = db.query(TrabajoPdf).filter(
        TrabajoPdf.completado_en != None,
        TrabajoPdf.completado_en < limite,
    ).all()

    for trabajo in antiguos:
        if trabajo.zip_path:
            try:
                almacenamiento.eliminar(trabajo.zip_path)
            except almacenamiento.ErrorAlmacenamiento as e:
                logger.warning(f"No se pudo eliminar ZIP {trabajo.zip_path}: {e}")
        db.delete(trabajo)

    db.commit()
    if antiguos:
        logger.info(f"{len(antiguos)} trabajos de PDF eliminados (más de {dias} días)")
    return len(antiguos)
