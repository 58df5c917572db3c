"""
Servicio: Generación de PDFs de boletas (individual y por lote)
app/services/pdf_lote_service.py

El lote corre como BackgroundTask con su propia sesión de BD. Procesa las
boletas del periodo de a una; antes de cada una relee el estado del
trabajo para respetar una cancelación pedida desde otro request.
"""

import io
import logging
import zipfile
from typing import Callable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import Boleta, Cliente, TrabajoPdf
from app.services import auditoria, trabajos_service
from app.services.lecturas_service import lecturas_para_boleta
from app.services.pdf_boleta import generar_pdf_boleta
from app.utils import almacenamiento
from app.utils.errores import ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import nombre_periodo, parsear_periodo
from app.utils.moneda import a_float, formatear_pesos
from app.utils.rut import limpiar_rut

logger = logging.getLogger(__name__)

CADA_N_BOLETAS = 5


def validar_periodo(periodo: str):
    try:
        return parsear_periodo(periodo)
    except ValueError as e:
        raise ErrorValidacion(str(e))


def ruta_pdf(boleta: Boleta) -> str:
    d = boleta.periodo_desde
    return f"{d.year}/{d.month:02d}/{boleta.cliente_id}_{boleta.folio}.pdf"


def ruta_zip(periodo: str) -> str:
    return f"exports/{periodo[:4]}/{periodo[5:7]}/boletas_{periodo}.zip"


def _boletas_periodo(db: Session, periodo: str):
    inicio, fin = validar_periodo(periodo)
    return (
        db.query(Boleta)
        .join(Cliente, Boleta.cliente_id == Cliente.id)
        .filter(Boleta.periodo_desde >= inicio, Boleta.periodo_desde < fin)
    )


def contar_boletas_periodo(db: Session, periodo: str) -> int:
    return _boletas_periodo(db, periodo).count()


def estadisticas_periodo(db: Session, periodo: str) -> dict:
    total = contar_boletas_periodo(db, periodo)
    con_pdf = _boletas_periodo(db, periodo).filter(Boleta.pdf_path != None).count()
    inicio, _ = validar_periodo(periodo)
    return {
        "periodo": periodo,
        "periodoLabel": nombre_periodo(inicio),
        "total": total,
        "conPdf": con_pdf,
        "sinPdf": total - con_pdf,
    }


# ============================================================
# BOLETA INDIVIDUAL
# ============================================================

def _obtener_boleta(db: Session, boleta_id: int) -> Boleta:
    boleta = db.query(Boleta).filter(Boleta.id == boleta_id).first()
    if not boleta:
        raise ErrorNoEncontrado("Boleta no encontrada")
    return boleta


def generar_y_guardar(db: Session, boleta: Boleta) -> str:
    """Renderiza la boleta, la guarda y deja pdf_path en la BD."""
    d = boleta.periodo_desde
    lecturas = lecturas_para_boleta(db, boleta.cliente_id, d.year, d.month)
    contenido = generar_pdf_boleta(boleta, boleta.cliente, lecturas)

    path = almacenamiento.guardar(ruta_pdf(boleta), contenido)
    boleta.pdf_path = path
    db.commit()
    return path


def obtener_pdf(db: Session, boleta_id: int) -> tuple[bytes, str]:
    """PDF guardado; si no existe se genera en el momento."""
    boleta = _obtener_boleta(db, boleta_id)
    contenido = almacenamiento.leer(boleta.pdf_path) if boleta.pdf_path else None
    if contenido is None:
        generar_y_guardar(db, boleta)
        contenido = almacenamiento.leer(boleta.pdf_path)
    return contenido, f"boleta_{boleta.folio}.pdf"


def regenerar_pdf(db: Session, boleta_id: int, admin_email: str) -> dict:
    boleta = _obtener_boleta(db, boleta_id)
    anterior = boleta.pdf_path
    path = generar_y_guardar(db, boleta)

    auditoria.registrar(
        db, "regenerar_pdf", "boleta", boleta.id,
        usuario_email=admin_email,
        datos_anteriores={"pdfPath": anterior},
        datos_nuevos={"pdfPath": path},
    )
    db.commit()
    return {"success": True, "boletaId": str(boleta.id), "pdfPath": path}


def buscar_cliente_boleta(db: Session, q: str, periodo: str) -> list:
    """Hasta 10 clientes que calzan con q y su boleta del periodo."""
    inicio, fin = validar_periodo(periodo)
    q = (q or "").strip()
    if len(q) < 2:
        raise ErrorValidacion("La búsqueda requiere al menos 2 caracteres")

    termino = f"%{q}%"
    filtros = [
        Cliente.numero_cliente.ilike(termino),
        Cliente.primer_nombre.ilike(termino),
        Cliente.primer_apellido.ilike(termino),
        Cliente.segundo_apellido.ilike(termino),
    ]
    rut = limpiar_rut(q)
    if any(ch.isdigit() for ch in rut):
        filtros.append(Cliente.rut.ilike(f"%{rut}%"))

    clientes = (
        db.query(Cliente)
        .filter(or_(*filtros))
        .order_by(Cliente.primer_apellido, Cliente.primer_nombre)
        .limit(10)
        .all()
    )

    resultados = []
    for c in clientes:
        boleta = (
            db.query(Boleta)
            .filter(
                Boleta.cliente_id == c.id,
                Boleta.periodo_desde >= inicio,
                Boleta.periodo_desde < fin,
            )
            .order_by(Boleta.id.desc())
            .first()
        )
        resultados.append({
            "cliente": {
                "id": str(c.id),
                "numeroCliente": c.numero_cliente,
                "nombre": c.nombre_completo,
                "rut": c.rut,
            },
            "boleta": {
                "id": str(boleta.id),
                "folio": boleta.folio,
                "montoTotal": a_float(boleta.monto_total),
                "montoFormateado": formatear_pesos(boleta.monto_total),
                "estado": boleta.estado,
                "tienePdf": bool(boleta.pdf_path),
            } if boleta else None,
        })
    return resultados


# ============================================================
# LOTE
# ============================================================

def iniciar_generacion(
    db: Session,
    periodo: str,
    regenerar: bool,
    generar_zip: bool,
    admin_email: str,
) -> TrabajoPdf:
    total = contar_boletas_periodo(db, periodo)
    trabajo = trabajos_service.crear(db, periodo, regenerar, admin_email, total, generar_zip)

    auditoria.registrar(
        db, "generar_pdfs", "trabajo_pdf", trabajo.id,
        usuario_email=admin_email,
        datos_nuevos={"periodo": periodo, "regenerar": regenerar, "total": total},
    )
    db.commit()
    logger.info(f"Trabajo {trabajo.id} creado: {total} boletas de {periodo} ({admin_email})")
    return trabajo


def _armar_zip(db: Session, periodo: str) -> Optional[str]:
    """ZIP con todos los PDFs disponibles del periodo. None si no hay ninguno."""
    buffer = io.BytesIO()
    agregados = 0
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for boleta in _boletas_periodo(db, periodo).filter(Boleta.pdf_path != None).order_by(Boleta.id):
            contenido = almacenamiento.leer(boleta.pdf_path)
            if contenido is None:
                continue
            zf.writestr(boleta.pdf_path.rsplit("/", 1)[-1], contenido)
            agregados += 1

    if not agregados:
        return None
    return almacenamiento.guardar(ruta_zip(periodo), buffer.getvalue(), content_type="application/zip")


def procesar_trabajo(trabajo_id: str, fabrica_sesion: Callable[[], Session]):
    """
    Cuerpo del BackgroundTask.

    procesados cuenta también las omitidas, así el porcentaje llega a 100.
    """
    db = fabrica_sesion()
    try:
        if not trabajos_service.iniciar(db, trabajo_id):
            logger.info(f"Trabajo {trabajo_id} no está pendiente; no se procesa")
            return

        trabajo = db.query(TrabajoPdf).filter(TrabajoPdf.id == trabajo_id).first()
        periodo, regenerar, generar_zip = trabajo.periodo, trabajo.regenerar, trabajo.generar_zip

        query = _boletas_periodo(db, periodo)
        if not regenerar:
            query = query.filter(Boleta.pdf_path == None)
        ids = [b_id for (b_id,) in query.with_entities(Boleta.id).order_by(Boleta.id).all()]

        total = contar_boletas_periodo(db, periodo)
        omitidos = max(0, total - len(ids))
        exitosos = fallidos = 0
        errores = []
        logger.info(f"Trabajo {trabajo_id}: {len(ids)} boletas por generar, {omitidos} omitidas")

        for i, boleta_id in enumerate(ids, 1):
            if trabajos_service.esta_cancelado(db, trabajo_id):
                trabajos_service.actualizar_progreso(
                    db, trabajo_id, omitidos + exitosos + fallidos, exitosos, fallidos, omitidos, errores
                )
                logger.info(f"Trabajo {trabajo_id} cancelado tras {exitosos + fallidos} boletas")
                return

            boleta = db.query(Boleta).filter(Boleta.id == boleta_id).first()
            folio = boleta.folio
            try:
                generar_y_guardar(db, boleta)
                exitosos += 1
            except Exception as e:
                db.rollback()
                fallidos += 1
                errores.append(f"Boleta {folio}: {e}")
                logger.warning(f"Trabajo {trabajo_id}: error en boleta {folio}: {e}")

            if i % CADA_N_BOLETAS == 0 or i == len(ids):
                trabajos_service.actualizar_progreso(
                    db, trabajo_id, omitidos + i, exitosos, fallidos, omitidos, errores
                )

        if not ids:
            trabajos_service.actualizar_progreso(db, trabajo_id, omitidos, 0, 0, omitidos, errores)

        if trabajos_service.esta_cancelado(db, trabajo_id):
            return

        zip_path = _armar_zip(db, periodo) if generar_zip else None
        if not trabajos_service.completar(db, trabajo_id, zip_path):
            logger.info(f"Trabajo {trabajo_id} cancelado mientras se armaba el ZIP")
            return
        logger.info(
            f"Trabajo {trabajo_id} completado: {exitosos} ok, {fallidos} con error, {omitidos} omitidas"
        )

    except Exception as e:
        db.rollback()
        logger.error(f"Error en trabajo {trabajo_id}: {e}", exc_info=True)
        trabajos_service.fallar(db, trabajo_id, str(e))

    finally:
        db.close()
