from app.models import LogAuditoria

from conftest import crear_cliente, headers_admin


# ── Multas ──

def test_crear_multa(client, db, cliente, cajero):
    resp = client.post(
        "/admin/multas",
        json={"clienteId": cliente.id, "monto": 15000, "motivo": "Conexión irregular"},
        headers=headers_admin(cajero),
    )

    assert resp.status_code == 201
    data = resp.json()
    assert data["estado"] == "activa"
    assert data["afectoIva"] is True
    assert data["montoFormateado"] == "$15.000"
    assert data["aplicadaPor"] == "billing_clerk@coab.cl"
    assert data["fechaAplicacion"] is not None
    assert db.query(LogAuditoria).filter(LogAuditoria.accion == "CREAR_MULTA").count() == 1


def test_crear_multa_cliente_inexistente(client, cajero):
    resp = client.post(
        "/admin/multas",
        json={"clienteId": 999, "monto": 1000, "motivo": "x"},
        headers=headers_admin(cajero),
    )
    assert resp.status_code == 404


def test_monto_debe_ser_positivo(client, cliente, cajero):
    resp = client.post(
        "/admin/multas",
        json={"clienteId": cliente.id, "monto": 0, "motivo": "x"},
        headers=headers_admin(cajero),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_cancelar_multa_solo_una_vez(client, cliente, cajero, admin):
    multa = client.post(
        "/admin/multas",
        json={"clienteId": cliente.id, "monto": 5000, "motivo": "Atraso"},
        headers=headers_admin(cajero),
    ).json()
    url = f"/admin/multas/{multa['id']}"

    # Cancelar es solo de admin
    assert client.post(f"{url}/cancelar", json={"motivo": "Error"}, headers=headers_admin(cajero)).status_code == 403

    resp = client.post(f"{url}/cancelar", json={"motivo": "Error de digitación"}, headers=headers_admin(admin))
    assert resp.status_code == 200
    assert resp.json()["estado"] == "cancelada"
    assert resp.json()["motivoCancelacion"] == "Error de digitación"

    resp = client.post(f"{url}/cancelar", json={"motivo": "otra vez"}, headers=headers_admin(admin))
    assert resp.status_code == 400

    # Una multa cancelada ya no se edita
    assert client.patch(url, json={"monto": 100}, headers=headers_admin(admin)).status_code == 400


def test_listar_multas_por_estado(client, db, cliente, admin):
    h = headers_admin(admin)
    for monto in (1000, 2000):
        client.post("/admin/multas", json={"clienteId": cliente.id, "monto": monto, "motivo": "Atraso"}, headers=h)
    primera = client.get("/admin/multas", headers=h).json()["data"][-1]
    client.post(f"/admin/multas/{primera['id']}/cancelar", json={"motivo": "x"}, headers=h)

    activas = client.get("/admin/multas", params={"estado": "activa"}, headers=h).json()
    canceladas = client.get("/admin/multas", params={"estado": "cancelada"}, headers=h).json()

    assert activas["pagination"]["total"] == 1
    assert canceladas["pagination"]["total"] == 1
    assert client.get("/admin/multas", params={"search": "1001"}, headers=h).json()["pagination"]["total"] == 2


# ── Subsidios ──

SUBSIDIO = {"id": 1, "limiteM3": 15, "porcentaje": 50, "fechaInicio": "2024-01-01", "numeroDecreto": "D-123"}


def test_crud_subsidio(client, admin):
    h = headers_admin(admin)

    resp = client.post("/admin/subsidios", json=SUBSIDIO, headers=h)
    assert resp.status_code == 201
    assert resp.json()["esVigente"] is True

    assert client.post("/admin/subsidios", json=SUBSIDIO, headers=h).status_code == 409

    resp = client.patch("/admin/subsidios/1", json={"porcentaje": 60}, headers=h)
    assert resp.json()["porcentaje"] == 60

    assert len(client.get("/admin/subsidios/activos", headers=h).json()["subsidios"]) == 1

    assert client.delete("/admin/subsidios/1", headers=h).status_code == 200
    assert client.get("/admin/subsidios/1", headers=h).status_code == 404


def test_porcentaje_fuera_de_rango(client, admin):
    resp = client.post("/admin/subsidios", json={**SUBSIDIO, "porcentaje": 120}, headers=headers_admin(admin))
    assert resp.status_code == 400


def test_solo_admin_crea_subsidios(client, supervisor):
    assert client.post("/admin/subsidios", json=SUBSIDIO, headers=headers_admin(supervisor)).status_code == 403


def test_asignar_y_retirar_subsidio(client, db, cliente, admin):
    h = headers_admin(admin)
    client.post("/admin/subsidios", json=SUBSIDIO, headers=h)

    resp = client.post("/admin/subsidios/historial/asignar", json={"clienteId": cliente.id, "subsidioId": 1}, headers=h)
    assert resp.status_code == 201
    assert resp.json()["tipoCambio"] == "alta"

    actual = client.get(f"/admin/subsidios/cliente/{cliente.id}", headers=h).json()
    assert actual["subsidio"]["id"] == 1

    resp = client.post("/admin/subsidios/historial/asignar", json={"clienteId": cliente.id, "subsidioId": 1}, headers=h)
    assert resp.status_code == 409

    resp = client.post("/admin/subsidios/historial/retirar", json={"clienteId": cliente.id}, headers=h)
    assert resp.status_code == 201
    assert resp.json()["tipoCambio"] == "baja"
    assert client.get(f"/admin/subsidios/cliente/{cliente.id}", headers=h).json()["subsidio"] is None

    # Sin subsidio vigente no hay nada que retirar
    resp = client.post("/admin/subsidios/historial/retirar", json={"clienteId": cliente.id}, headers=h)
    assert resp.status_code == 400

    # Con historial ya no se puede borrar
    assert client.delete("/admin/subsidios/1", headers=h).status_code == 409

    historial = client.get("/admin/subsidios/historial", params={"clienteId": cliente.id}, headers=h).json()
    assert historial["pagination"]["total"] == 2


def test_asignar_a_cliente_inexistente(client, admin):
    h = headers_admin(admin)
    client.post("/admin/subsidios", json=SUBSIDIO, headers=h)

    resp = client.post("/admin/subsidios/historial/asignar", json={"clienteId": 404, "subsidioId": 1}, headers=h)
    assert resp.status_code == 404


def test_otro_cliente_no_hereda_subsidio(client, db, cliente, admin):
    h = headers_admin(admin)
    otro = crear_cliente(db, numero="2002", rut="111111111", password=None)
    client.post("/admin/subsidios", json=SUBSIDIO, headers=h)
    client.post("/admin/subsidios/historial/asignar", json={"clienteId": cliente.id, "subsidioId": 1}, headers=h)

    assert client.get(f"/admin/subsidios/cliente/{otro.id}", headers=h).json()["subsidio"] is None
