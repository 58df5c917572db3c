from datetime import timedelta

from app.models import Cliente, TokenConfiguracion
from app.utils.fechas import ahora_utc

from conftest import PASSWORD, crear_cliente, crear_perfil, headers_admin


def test_login_cliente_por_rut_con_formato(client, cliente):
    resp = client.post("/auth/login", json={"rut": "12.345.678-5", "password": PASSWORD})

    assert resp.status_code == 200
    data = resp.json()
    assert data["accessToken"]
    assert data["refreshToken"]
    assert data["user"]["rut"] == "12.345.678-5"
    assert data["user"]["tipo"] == "cliente"


def test_login_rut_invalido_no_revela_nada(client, cliente):
    resp = client.post("/auth/login", json={"rut": "12.345.678-9", "password": PASSWORD})

    assert resp.status_code == 401
    assert resp.json() == {"error": {"code": "INVALID_CREDENTIALS", "message": "RUT o contraseña incorrectos"}}


def test_login_sin_contrasena_configurada(client, db):
    crear_cliente(db, password=None)

    resp = client.post("/auth/login", json={"rut": "123456785", "password": "cualquiera"})

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "ACCOUNT_NOT_SETUP"


def test_bloqueo_tras_cinco_intentos(client, db, cliente):
    for _ in range(4):
        resp = client.post("/auth/login", json={"rut": "123456785", "password": "Mala1234"})
        assert resp.status_code == 401

    resp = client.post("/auth/login", json={"rut": "123456785", "password": "Mala1234"})
    assert resp.status_code == 423
    assert resp.json()["error"]["code"] == "ACCOUNT_LOCKED"

    # Ni siquiera con la contraseña correcta mientras dure el bloqueo
    resp = client.post("/auth/login", json={"rut": "123456785", "password": PASSWORD})
    assert resp.status_code == 423

    db.expire_all()
    assert db.get(Cliente, cliente.id).estado_cuenta == "bloqueada"


def test_bloqueo_vencido_permite_entrar(client, db, cliente):
    cliente.estado_cuenta = "bloqueada"
    cliente.intentos_fallidos = 5
    cliente.bloqueado_hasta = ahora_utc() - timedelta(minutes=1)
    db.commit()

    resp = client.post("/auth/login", json={"rut": "123456785", "password": PASSWORD})

    assert resp.status_code == 200
    db.expire_all()
    assert db.get(Cliente, cliente.id).intentos_fallidos == 0


def test_refresh_rota_el_token(client, cliente):
    login = client.post("/auth/login", json={"rut": "123456785", "password": PASSWORD}).json()

    resp = client.post("/auth/refresh", json={"refreshToken": login["refreshToken"]})
    assert resp.status_code == 200
    nuevo = resp.json()["refreshToken"]
    assert nuevo != login["refreshToken"]

    # El refresh usado ya no sirve
    resp = client.post("/auth/refresh", json={"refreshToken": login["refreshToken"]})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "INVALID_TOKEN"


def test_logout_invalida_refresh(client, cliente):
    login = client.post("/auth/login", json={"rut": "123456785", "password": PASSWORD}).json()

    assert client.post("/auth/logout", json={"refreshToken": login["refreshToken"]}).status_code == 200
    assert client.post("/auth/refresh", json={"refreshToken": login["refreshToken"]}).status_code == 401


def test_login_admin(client, db):
    crear_perfil(db, "supervisor", email="super@coab.cl")

    resp = client.post("/auth/admin/login", json={"email": "Super@coab.cl", "password": PASSWORD})

    assert resp.status_code == 200
    assert resp.json()["user"]["rol"] == "supervisor"

    resp = client.post("/auth/admin/login", json={"email": "super@coab.cl", "password": "otra"})
    assert resp.status_code == 401


def test_flujo_enlace_de_configuracion(client, db, admin):
    cliente = crear_cliente(db, password=None)

    resp = client.post(f"/admin/clientes/{cliente.id}/generar-setup", headers=headers_admin(admin))
    assert resp.status_code == 200
    token = resp.json()["setupUrl"].rsplit("/", 1)[-1]

    validacion = client.get(f"/auth/setup/{token}").json()
    assert validacion["valid"] is True
    assert validacion["cliente"]["rut"] == "12.345.678-5"

    # Contraseña débil
    resp = client.post(f"/auth/setup/{token}", json={"password": "corta"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    resp = client.post(f"/auth/setup/{token}", json={"password": "NuevaClave1"})
    assert resp.status_code == 200

    # Un solo uso
    assert client.get(f"/auth/setup/{token}").json() == {"valid": False}
    resp = client.post("/auth/login", json={"rut": "123456785", "password": "NuevaClave1"})
    assert resp.status_code == 200


def test_nuevo_enlace_invalida_el_anterior(client, db, admin):
    cliente = crear_cliente(db, password=None)
    h = headers_admin(admin)

    primero = client.post(f"/admin/clientes/{cliente.id}/generar-setup", headers=h).json()["setupUrl"]
    client.post(f"/admin/clientes/{cliente.id}/generar-setup", headers=h)

    token = primero.rsplit("/", 1)[-1]
    assert client.get(f"/auth/setup/{token}").json() == {"valid": False}
    assert db.query(TokenConfiguracion).count() == 2
