from datetime import date, timedelta
from decimal import Decimal

import httpx

from app import config
from app.models import Boleta, Cliente, LogAuditoria, Pago
from app.services import whatsapp_service
from app.utils.fechas import ahora_utc

from conftest import crear_boleta, crear_cliente, crear_direccion, headers_admin


def test_buscar_por_nombre_y_rut(client, db, cajero):
    crear_cliente(db, numero="1001", rut="123456785")
    crear_cliente(db, numero="1002", rut="111111111", primer_nombre="María", primer_apellido="Soto")
    h = headers_admin(cajero)

    por_nombre = client.get("/admin/clientes", params={"q": "soto"}, headers=h).json()
    por_rut = client.get("/admin/clientes", params={"q": "12.345.678"}, headers=h).json()

    assert [c["numeroCliente"] for c in por_nombre["data"]] == ["1002"]
    assert [c["rut"] for c in por_rut["data"]] == ["12.345.678-5"]


def test_ficha_con_saldo(client, db, cliente, cajero):
    crear_direccion(db, cliente)
    crear_boleta(db, cliente, 7000)

    data = client.get(f"/admin/clientes/{cliente.id}", headers=headers_admin(cajero)).json()

    assert data["saldo"] == 7000
    assert data["saldoFormateado"] == "$7.000"
    assert data["estadoCuenta"] == "MOROSO"
    assert data["boletasPendientes"] == 1
    assert data["tieneContrasena"] is True
    assert len(data["direcciones"]) == 1


def test_ficha_inexistente(client, cajero):
    resp = client.get("/admin/clientes/999", headers=headers_admin(cajero))
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


def test_desbloquear(client, db, cliente, cajero):
    cliente.estado_cuenta = "bloqueada"
    cliente.intentos_fallidos = 5
    cliente.bloqueado_hasta = ahora_utc() + timedelta(minutes=20)
    db.commit()

    resp = client.post(f"/admin/clientes/{cliente.id}/desbloquear", headers=headers_admin(cajero))

    assert resp.json()["success"] is True
    db.expire_all()
    c = db.get(Cliente, cliente.id)
    assert c.intentos_fallidos == 0
    assert c.bloqueado_hasta is None
    assert c.estado_cuenta == "activa"
    assert db.query(LogAuditoria).filter(LogAuditoria.accion == "DESBLOQUEAR_CUENTA").count() == 1


def test_enviar_setup_sin_telefono_devuelve_el_enlace(client, db, admin):
    cliente = crear_cliente(db, password=None)

    resp = client.post(f"/admin/clientes/{cliente.id}/enviar-setup", headers=headers_admin(admin))

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "NO_PHONE"
    assert "/setup/" in error["setupUrl"]


def test_enviar_setup_por_whatsapp(client, db, admin, monkeypatch):
    cliente = crear_cliente(db, password=None, telefono="9 1234 5678")
    monkeypatch.setattr(config, "TWILIO_ACCOUNT_SID", "AC123")
    monkeypatch.setattr(config, "TWILIO_AUTH_TOKEN", "secreto")
    monkeypatch.setattr(config, "TWILIO_WHATSAPP_FROM", "+14155238886")
    enviados = []

    def falso_post(url, **kwargs):
        enviados.append(kwargs["data"])
        return httpx.Response(201, json={"sid": "SM42"})

    monkeypatch.setattr(whatsapp_service.httpx, "post", falso_post)

    data = client.post(f"/admin/clientes/{cliente.id}/enviar-setup", headers=headers_admin(admin)).json()

    assert data["enviado"] is True
    assert data["messageId"] == "SM42"
    assert enviados[0]["To"] == "whatsapp:+56912345678"
    assert data["setupUrl"] in enviados[0]["Body"]


def test_enviar_setup_sin_twilio_no_falla(client, db, admin, monkeypatch):
    cliente = crear_cliente(db, password=None, telefono="+56912345678")
    monkeypatch.setattr(config, "TWILIO_ACCOUNT_SID", None)

    data = client.post(f"/admin/clientes/{cliente.id}/enviar-setup", headers=headers_admin(admin)).json()

    assert data["enviado"] is False
    assert data["errorEnvio"] == "WhatsApp no configurado"


def test_cajero_edita_contacto_pero_no_rut(client, cliente, cajero, supervisor):
    resp = client.patch(
        f"/admin/clientes/{cliente.id}/contacto", json={"correo": "NUEVO@coab.cl"}, headers=headers_admin(cajero)
    )
    assert resp.status_code == 200
    assert resp.json()["correo"] == "nuevo@coab.cl"

    resp = client.patch(f"/admin/clientes/{cliente.id}", json={"rut": "11.111.111-1"}, headers=headers_admin(cajero))
    assert resp.status_code == 403

    resp = client.patch(f"/admin/clientes/{cliente.id}", json={"rut": "11.111.111-1"}, headers=headers_admin(supervisor))
    assert resp.status_code == 200
    assert resp.json()["rut"] == "11.111.111-1"


def test_editar_con_rut_invalido_o_duplicado(client, db, cliente, supervisor):
    crear_cliente(db, numero="2002", rut="111111111", password=None)
    h = headers_admin(supervisor)

    assert client.patch(f"/admin/clientes/{cliente.id}", json={"rut": "11.111.111-2"}, headers=h).status_code == 400
    assert client.patch(f"/admin/clientes/{cliente.id}", json={"rut": "11.111.111-1"}, headers=h).status_code == 409
    assert client.patch(f"/admin/clientes/{cliente.id}", json={"numeroCliente": "2002"}, headers=h).status_code == 409


def test_editar_direccion_crea_la_principal(client, cliente, cajero):
    resp = client.patch(
        f"/admin/clientes/{cliente.id}/direccion",
        json={"direccionCalle": "Pasaje Uno", "direccionNumero": "45"},
        headers=headers_admin(cajero),
    )

    assert resp.status_code == 200
    assert client.get(f"/admin/clientes/{cliente.id}/editar", headers=headers_admin(cajero)).json()[
        "direccion"]["texto"] == "Pasaje Uno 45"


# ── Pagos en oficina ──

def test_registrar_pago_actualiza_boletas(client, db, cliente, cajero):
    enero = crear_boleta(db, cliente, 10000, periodo=date(2025, 1, 1))
    febrero = crear_boleta(db, cliente, 15000, periodo=date(2025, 2, 1))

    resp = client.post(
        "/admin/pagos", json={"clienteId": cliente.id, "monto": 12000}, headers=headers_admin(cajero)
    )

    assert resp.status_code == 201
    data = resp.json()
    assert data["saldoNuevo"] == 13000
    assert data["saldoNuevoFormateado"] == "$13.000"
    assert data["boletasPagadas"] == 1
    assert data["pago"]["montoFormateado"] == "$12.000"

    db.expire_all()
    assert db.get(Boleta, enero.id).estado == "pagada"
    assert db.get(Boleta, febrero.id).estado == "parcial"


def test_pago_en_exceso_queda_como_credito(client, db, cliente, cajero):
    crear_boleta(db, cliente, 5000)

    data = client.post(
        "/admin/pagos", json={"clienteId": cliente.id, "monto": 8000}, headers=headers_admin(cajero)
    ).json()

    assert data["saldoNuevo"] == 0
    assert data["creditoDisponible"] == 3000
    pago = db.query(Pago).one()
    assert "[Saldo a favor: $3.000]" in pago.observaciones


def test_pago_de_cliente_inexistente(client, cajero):
    resp = client.post("/admin/pagos", json={"clienteId": 404, "monto": 1000}, headers=headers_admin(cajero))
    assert resp.status_code == 404


def test_listar_pagos_por_cliente(client, db, cliente, cajero):
    db.add(Pago(cliente_id=cliente.id, monto=Decimal("2500"), registrado_por="caja@coab.cl"))
    db.commit()

    data = client.get("/admin/pagos", params={"clienteId": cliente.id}, headers=headers_admin(cajero)).json()

    assert data["pagination"]["total"] == 1
    assert data["data"][0]["registradoPor"] == "caja@coab.cl"
