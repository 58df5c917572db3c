"""
Módulo: PDFs de Boletas
app/routers/admin_boletas.py

Generación masiva en segundo plano (con polling y cancelación),
descarga del ZIP del lote y PDF de una boleta puntual.
"""

import io
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session, sessionmaker

from app.database import get_db
from app.middleware.autorizacion import requiere_permiso, requiere_rol
from app.models import EstadoTrabajo, Perfil
from app.services import pdf_lote_service, trabajos_service
from app.utils import almacenamiento
from app.utils.errores import ErrorAPI, ErrorNoEncontrado

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin Boletas PDF"])


class GenerarPdfsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    periodo: str = Field(..., description="YYYY-MM")
    regenerar: bool = False
    generar_zip: bool = Field(False, alias="generarZip")


# ============================================================
# LOTE
# ============================================================
@router.post("/boletas/generar-pdfs")
async def generar_pdfs(
    data: GenerarPdfsRequest,
    background_tasks: BackgroundTasks,
    admin: Perfil = Depends(requiere_permiso("boletas", "create")),
    db: Session = Depends(get_db),
):
    trabajo = pdf_lote_service.iniciar_generacion(
        db, data.periodo, data.regenerar, data.generar_zip, admin.email
    )

    # La tarea abre su propia sesión sobre el mismo engine del request
    fabrica = sessionmaker(bind=db.get_bind(), autocommit=False, autoflush=False)
    background_tasks.add_task(pdf_lote_service.procesar_trabajo, trabajo.id, fabrica)

    return {
        "success": True,
        "jobId": trabajo.id,
        "periodo": data.periodo,
        "total": trabajo.total,
        "mensaje": f"Generación iniciada para {trabajo.total} boletas",
    }


@router.get("/jobs")
async def mis_trabajos(
    admin: Perfil = Depends(requiere_permiso("boletas", "view")),
    db: Session = Depends(get_db),
):
    return {"jobs": trabajos_service.recientes(db, admin.email)}


@router.post("/jobs/limpiar")
async def limpiar_trabajos(
    admin: Perfil = Depends(requiere_rol("admin")),
    db: Session = Depends(get_db),
):
    eliminados = trabajos_service.limpiar_trabajos_antiguos(db)
    return {"success": True, "eliminados": eliminados}


@router.get("/jobs/{job_id}")
async def estado_trabajo(
    job_id: str,
    admin: Perfil = Depends(requiere_permiso("boletas", "view")),
    db: Session = Depends(get_db),
):
    trabajo = trabajos_service.obtener(db, job_id)
    if not trabajo:
        raise ErrorNoEncontrado("Trabajo no encontrado")
    return trabajo


@router.post("/jobs/{job_id}/cancel")
async def cancelar_trabajo(
    job_id: str,
    admin: Perfil = Depends(requiere_permiso("boletas", "create")),
    db: Session = Depends(get_db),
):
    if not trabajos_service.cancelar(db, job_id):
        raise ErrorAPI(
            "No se pudo cancelar: el trabajo no existe o ya terminó",
            codigo="CANCEL_FAILED",
            status_code=400,
        )
    logger.info(f"Trabajo {job_id} cancelado por {admin.email}")
    return {"success": True, "mensaje": "Trabajo cancelado"}


@router.get("/jobs/{job_id}/download")
async def descargar_zip(
    job_id: str,
    admin: Perfil = Depends(requiere_permiso("boletas", "view")),
    db: Session = Depends(get_db),
):
    trabajo = trabajos_service.obtener(db, job_id)
    if not trabajo:
        raise ErrorNoEncontrado("Trabajo no encontrado")
    if trabajo["estado"] != EstadoTrabajo.COMPLETADO.value:
        raise ErrorAPI("El trabajo aún no termina", codigo="JOB_NOT_COMPLETE", status_code=400)

    zip_path = trabajo["zipPath"]
    if not zip_path or not almacenamiento.existe(zip_path):
        raise ErrorAPI("El trabajo no generó ZIP", codigo="NO_ZIP", status_code=404)

    url = almacenamiento.generar_signed_url(zip_path)
    if url:
        return {"url": url}

    return StreamingResponse(
        io.BytesIO(almacenamiento.leer(zip_path)),
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="boletas_{trabajo["periodo"]}.zip"'
        },
    )


# ============================================================
# BOLETAS
# ============================================================
@router.get("/boletas/periodo-stats")
async def estadisticas_periodo(
    periodo: str = Query(..., description="YYYY-MM"),
    admin: Perfil = Depends(requiere_permiso("boletas", "view")),
    db: Session = Depends(get_db),
):
    return pdf_lote_service.estadisticas_periodo(db, periodo)


@router.get("/boletas/{boleta_id}/pdf")
async def pdf_boleta(
    boleta_id: int,
    admin: Perfil = Depends(requiere_permiso("boletas", "view")),
    db: Session = Depends(get_db),
):
    contenido, nombre = pdf_lote_service.obtener_pdf(db, boleta_id)
    return StreamingResponse(
        io.BytesIO(contenido),
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{nombre}"'},
    )


@router.post("/boletas/{boleta_id}/regenerar-pdf")
async def regenerar_pdf(
    boleta_id: int,
    admin: Perfil = Depends(requiere_permiso("boletas", "create")),
    db: Session = Depends(get_db),
):
    return pdf_lote_service.regenerar_pdf(db, boleta_id, admin.email)


@router.get("/clientes/buscar-boleta")
async def buscar_cliente_boleta(
    q: str = Query(..., min_length=2),
    periodo: str = Query(..., description="YYYY-MM"),
    admin: Perfil = Depends(requiere_permiso("boletas", "view")),
    db: Session = Depends(get_db),
):
    return {"resultados": pdf_lote_service.buscar_cliente_boleta(db, q, periodo)}
