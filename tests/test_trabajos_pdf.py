import io
import zipfile
from datetime import timedelta

import pytest

from app.models import Boleta, LogAuditoria, TrabajoPdf
from app.services import pdf_lote_service, trabajos_service
from app.services.pdf_boleta import texto_qr_pago
from app.utils.fechas import ahora_utc

from conftest import crear_boleta, crear_cliente, crear_direccion, crear_medidor, headers_admin


@pytest.fixture
def boletas_marzo(db, cliente):
    otro = crear_cliente(db, numero="2002", rut="111111111", password=None, primer_apellido="Soto")
    crear_medidor(db, crear_direccion(db, cliente))
    return [crear_boleta(db, cliente, 12000), crear_boleta(db, otro, 8500)]


def _nuevo_trabajo(db, periodo="2025-03", **kwargs):
    return pdf_lote_service.iniciar_generacion(
        db, periodo, kwargs.get("regenerar", False), kwargs.get("generar_zip", False), "admin@coab.cl"
    )


def test_qr_de_pago():
    assert texto_qr_pago("1001", 15300.4) == "COAB:1001:15300"


def test_pdf_de_una_boleta(client, db, boletas_marzo, cajero):
    boleta = boletas_marzo[0]

    resp = client.get(f"/admin/boletas/{boleta.id}/pdf", headers=headers_admin(cajero))

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.content.startswith(b"%PDF")
    db.expire_all()
    assert db.get(Boleta, boleta.id).pdf_path == f"2025/03/{boleta.cliente_id}_B-{boleta.id}.pdf"


def test_pdf_de_boleta_inexistente(client, cajero):
    assert client.get("/admin/boletas/999/pdf", headers=headers_admin(cajero)).status_code == 404


def test_regenerar_pdf_queda_auditado(client, db, boletas_marzo, supervisor):
    boleta = boletas_marzo[1]

    data = client.post(f"/admin/boletas/{boleta.id}/regenerar-pdf", headers=headers_admin(supervisor)).json()

    assert data["success"] is True
    assert data["pdfPath"].endswith(f"_B-{boleta.id}.pdf")
    assert db.query(LogAuditoria).filter(LogAuditoria.accion == "regenerar_pdf").count() == 1


def test_generacion_completa_con_zip(client, db, boletas_marzo, supervisor):
    h = headers_admin(supervisor)

    resp = client.post("/admin/boletas/generar-pdfs", json={"periodo": "2025-03", "generarZip": True}, headers=h)
    assert resp.status_code == 200
    inicio = resp.json()
    assert inicio["total"] == 2

    # TestClient ejecuta la tarea en segundo plano antes de responder
    trabajo = client.get(f"/admin/jobs/{inicio['jobId']}", headers=h).json()
    assert trabajo["estado"] == "completado"
    assert trabajo["exitosos"] == 2
    assert trabajo["procesados"] == 2
    assert trabajo["porcentaje"] == 100
    assert trabajo["zipPath"] == "exports/2025/03/boletas_2025-03.zip"

    resp = client.get(f"/admin/jobs/{inicio['jobId']}/download", headers=h)
    assert resp.headers["content-type"] == "application/zip"
    with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
        assert len(zf.namelist()) == 2

    assert [j["id"] for j in client.get("/admin/jobs", headers=h).json()["jobs"]] == [inicio["jobId"]]


def test_sin_regenerar_omite_las_que_tienen_pdf(db, fabrica, boletas_marzo):
    pdf_lote_service.generar_y_guardar(db, boletas_marzo[0])
    trabajo = _nuevo_trabajo(db)

    pdf_lote_service.procesar_trabajo(trabajo.id, fabrica)

    db.expire_all()
    t = db.get(TrabajoPdf, trabajo.id)
    assert (t.estado, t.exitosos, t.omitidos, t.procesados) == ("completado", 1, 1, 2)


def test_cancelado_antes_de_partir_no_procesa(db, fabrica, boletas_marzo):
    trabajo = _nuevo_trabajo(db)
    assert trabajos_service.cancelar(db, trabajo.id) is True

    pdf_lote_service.procesar_trabajo(trabajo.id, fabrica)

    db.expire_all()
    t = db.get(TrabajoPdf, trabajo.id)
    assert t.estado == "cancelado"
    assert t.exitosos == 0
    assert db.query(Boleta).filter(Boleta.pdf_path != None).count() == 0


def test_cancelacion_durante_el_proceso(db, fabrica, boletas_marzo, monkeypatch):
    trabajo = _nuevo_trabajo(db)
    original = pdf_lote_service.generar_y_guardar

    def generar_y_cancelar(sesion, boleta):
        path = original(sesion, boleta)
        trabajos_service.cancelar(sesion, trabajo.id)
        return path

    monkeypatch.setattr(pdf_lote_service, "generar_y_guardar", generar_y_cancelar)

    pdf_lote_service.procesar_trabajo(trabajo.id, fabrica)

    db.expire_all()
    t = db.get(TrabajoPdf, trabajo.id)
    assert t.estado == "cancelado"
    assert t.exitosos == 1
    assert t.procesados == 1


def test_cancelado_mientras_arma_el_zip_queda_cancelado(db, fabrica, boletas_marzo, monkeypatch):
    trabajo = _nuevo_trabajo(db, generar_zip=True)
    original = pdf_lote_service._armar_zip

    def cancelar_y_armar(sesion, periodo):
        trabajos_service.cancelar(sesion, trabajo.id)
        return original(sesion, periodo)

    monkeypatch.setattr(pdf_lote_service, "_armar_zip", cancelar_y_armar)

    pdf_lote_service.procesar_trabajo(trabajo.id, fabrica)

    db.expire_all()
    t = db.get(TrabajoPdf, trabajo.id)
    assert t.estado == "cancelado"
    assert t.zip_path is None
    assert t.exitosos == 2


def test_trabajo_cancelado_no_pasa_a_error_ni_se_cancela_dos_veces(db, boletas_marzo):
    trabajo = _nuevo_trabajo(db)
    assert trabajos_service.cancelar(db, trabajo.id) is True

    trabajos_service.fallar(db, trabajo.id, "falla tardía")

    db.expire_all()
    t = db.get(TrabajoPdf, trabajo.id)
    assert t.estado == "cancelado"
    assert t.errores == ["falla tardía"]
    assert trabajos_service.cancelar(db, trabajo.id) is False


def test_error_en_una_boleta_no_detiene_el_lote(db, fabrica, boletas_marzo, monkeypatch):
    trabajo = _nuevo_trabajo(db)
    original = pdf_lote_service.generar_y_guardar
    mala = boletas_marzo[0].id

    def generar(sesion, boleta):
        if boleta.id == mala:
            raise RuntimeError("sin lectura")
        return original(sesion, boleta)

    monkeypatch.setattr(pdf_lote_service, "generar_y_guardar", generar)

    pdf_lote_service.procesar_trabajo(trabajo.id, fabrica)

    db.expire_all()
    t = db.get(TrabajoPdf, trabajo.id)
    assert t.estado == "completado"
    assert (t.exitosos, t.fallidos) == (1, 1)
    assert t.errores == [f"Boleta B-{mala}: sin lectura"]


def test_cancelar_trabajo_terminado(client, db, boletas_marzo, supervisor):
    h = headers_admin(supervisor)
    job_id = client.post("/admin/boletas/generar-pdfs", json={"periodo": "2025-03"}, headers=h).json()["jobId"]

    resp = client.post(f"/admin/jobs/{job_id}/cancel", headers=h)

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "CANCEL_FAILED"
    # Sin ZIP pedido no hay nada que descargar
    assert client.get(f"/admin/jobs/{job_id}/download", headers=h).json()["error"]["code"] == "NO_ZIP"


def test_descarga_de_trabajo_pendiente(client, db, supervisor):
    trabajo = _nuevo_trabajo(db)

    resp = client.get(f"/admin/jobs/{trabajo.id}/download", headers=headers_admin(supervisor))

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "JOB_NOT_COMPLETE"


def test_trabajo_inexistente(client, supervisor):
    assert client.get("/admin/jobs/no-existe", headers=headers_admin(supervisor)).status_code == 404


def test_periodo_invalido(client, supervisor):
    resp = client.post("/admin/boletas/generar-pdfs", json={"periodo": "2025-13"}, headers=headers_admin(supervisor))

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_cajero_no_genera_lotes(client, cajero):
    resp = client.post("/admin/boletas/generar-pdfs", json={"periodo": "2025-03"}, headers=headers_admin(cajero))
    assert resp.status_code == 403


def test_estadisticas_del_periodo(client, db, boletas_marzo, cajero):
    pdf_lote_service.generar_y_guardar(db, boletas_marzo[0])

    data = client.get("/admin/boletas/periodo-stats", params={"periodo": "2025-03"}, headers=headers_admin(cajero)).json()

    assert data == {"periodo": "2025-03", "periodoLabel": "Marzo 2025", "total": 2, "conPdf": 1, "sinPdf": 1}


def test_buscar_cliente_con_su_boleta(client, db, boletas_marzo, cajero):
    h = headers_admin(cajero)

    data = client.get("/admin/clientes/buscar-boleta", params={"q": "soto", "periodo": "2025-03"}, headers=h).json()
    assert len(data["resultados"]) == 1
    assert data["resultados"][0]["boleta"]["montoFormateado"] == "$8.500"

    data = client.get("/admin/clientes/buscar-boleta", params={"q": "soto", "periodo": "2025-04"}, headers=h).json()
    assert data["resultados"][0]["boleta"] is None

    resp = client.get("/admin/clientes/buscar-boleta", params={"q": "s", "periodo": "2025-03"}, headers=h)
    assert resp.status_code == 400


def test_limpiar_trabajos_antiguos(client, db, supervisor, admin):
    viejo = _nuevo_trabajo(db)
    reciente = _nuevo_trabajo(db)
    viejo.estado = reciente.estado = "completado"
    viejo.completado_en = ahora_utc() - timedelta(days=8)
    reciente.completado_en = ahora_utc() - timedelta(days=1)
    db.commit()

    assert client.post("/admin/jobs/limpiar", headers=headers_admin(supervisor)).status_code == 403

    resp = client.post("/admin/jobs/limpiar", headers=headers_admin(admin))

    assert resp.json() == {"success": True, "eliminados": 1}
    db.expire_all()
    assert [t.id for t in db.query(TrabajoPdf).all()] == [reciente.id]
