from datetime import date
from decimal import Decimal

import pytest

from app.models import Lectura, Ruta
from app.services.lecturas_service import lecturas_para_boleta

from conftest import crear_cliente, crear_direccion, crear_medidor, headers_admin


def _lectura(db, medidor, ano, mes, valor):
    lectura = Lectura(
        medidor_id=medidor.id,
        valor_lectura=Decimal(str(valor)),
        periodo_ano=ano,
        periodo_mes=mes,
        fecha_lectura=date(ano, mes, 28),
    )
    db.add(lectura)
    db.commit()
    db.refresh(lectura)
    return lectura


# ── Medidores ──

def test_crear_medidor(client, db, cliente, supervisor):
    direccion = crear_direccion(db, cliente)

    resp = client.post(
        "/admin/medidores",
        json={"direccionId": direccion.id, "numeroSerie": "ABC-1", "marca": "Elster"},
        headers=headers_admin(supervisor),
    )

    assert resp.status_code == 201
    assert resp.json()["enServicio"] is True
    assert resp.json()["cliente"]["numeroCliente"] == "1001"


def test_crear_medidor_en_direccion_inexistente(client, supervisor):
    resp = client.post("/admin/medidores", json={"direccionId": 77}, headers=headers_admin(supervisor))
    assert resp.status_code == 404


def test_cajero_no_crea_medidores(client, db, cliente, cajero):
    direccion = crear_direccion(db, cliente)
    resp = client.post("/admin/medidores", json={"direccionId": direccion.id}, headers=headers_admin(cajero))
    assert resp.status_code == 403


def test_listar_por_estado_de_servicio(client, db, cliente, cajero):
    direccion = crear_direccion(db, cliente)
    crear_medidor(db, direccion, serie="A-1")
    retirado = crear_medidor(db, direccion, serie="A-2")
    retirado.fecha_retiro = date(2024, 6, 1)
    db.commit()
    h = headers_admin(cajero)

    en_servicio = client.get("/admin/medidores", params={"estado": "en_servicio"}, headers=h).json()
    retirados = client.get("/admin/medidores", params={"estado": "retirado"}, headers=h).json()

    assert [m["numeroSerie"] for m in en_servicio["data"]] == ["A-1"]
    assert [m["numeroSerie"] for m in retirados["data"]] == ["A-2"]


def test_toggle_ruta_y_detalle(client, db, cliente, supervisor):
    medidor = crear_medidor(db, crear_direccion(db, cliente))
    _lectura(db, medidor, 2025, 1, 100)
    h = headers_admin(supervisor)

    assert client.post(f"/admin/medidores/{medidor.id}/toggle-ruta", headers=h).json()["mostrarEnRuta"] is False

    detalle = client.get(f"/admin/medidores/{medidor.id}", headers=h).json()
    assert detalle["mostrarEnRuta"] is False
    assert len(detalle["lecturas"]) == 1


def test_no_se_elimina_medidor_con_lecturas(client, db, cliente, admin):
    medidor = crear_medidor(db, crear_direccion(db, cliente))
    _lectura(db, medidor, 2025, 1, 100)

    resp = client.delete(f"/admin/medidores/{medidor.id}", headers=headers_admin(admin))
    assert resp.status_code == 409


# ── Lecturas ──

@pytest.fixture
def medidor(db, cliente):
    return crear_medidor(db, crear_direccion(db, cliente), serie="M-77")


def test_contexto_de_lectura(client, db, medidor, cajero):
    _lectura(db, medidor, 2024, 11, 100)
    _lectura(db, medidor, 2024, 12, 110)
    _lectura(db, medidor, 2025, 1, 130)
    actual = _lectura(db, medidor, 2025, 2, 145)

    data = client.get(f"/admin/lecturas/{actual.id}/contexto", headers=headers_admin(cajero)).json()

    assert data["lecturaAnterior"]["valor"] == 130
    assert data["consumoActual"] == 15
    # Consumos previos: 20 (ene) y 10 (dic)
    assert data["promedioConsumo"] == 15
    assert data["mesesEnPromedio"] == 2


def test_editar_lectura_la_confirma(client, db, medidor, cajero):
    lectura = _lectura(db, medidor, 2025, 1, 100)

    resp = client.patch(
        f"/admin/lecturas/{lectura.id}", json={"valorLectura": 105, "observaciones": "Releída"},
        headers=headers_admin(cajero),
    )

    assert resp.status_code == 200
    assert resp.json()["valorLectura"] == 105
    assert resp.json()["confirmada"] is True


def test_correccion_se_crea_y_luego_se_actualiza(client, db, medidor, cajero):
    lectura = _lectura(db, medidor, 2025, 1, 100)
    url = f"/admin/lecturas/{lectura.id}/correccion"
    h = headers_admin(cajero)

    primera = client.post(url, json={"valorCorregido": 98, "motivoCorreccion": "Error de lectura"}, headers=h).json()
    segunda = client.post(url, json={"valorCorregido": 97, "motivoCorreccion": "Revisión"}, headers=h).json()

    assert primera["message"] == "Corrección registrada correctamente"
    assert segunda["message"] == "Corrección actualizada correctamente"
    assert segunda["correccion"]["id"] == primera["correccion"]["id"]
    assert segunda["correccion"]["valorOriginal"] == 100

    listado = client.get("/admin/lecturas", params={"conCorreccion": True}, headers=h).json()
    assert listado["pagination"]["total"] == 1
    assert listado["data"][0]["valorCorregido"] == 97


def test_lecturas_para_boleta_usa_valor_corregido(client, db, medidor, cajero):
    _lectura(db, medidor, 2024, 12, 90)
    lectura = _lectura(db, medidor, 2025, 1, 100)
    client.post(
        f"/admin/lecturas/{lectura.id}/correccion",
        json={"valorCorregido": 95, "motivoCorreccion": "Error"},
        headers=headers_admin(cajero),
    )
    db.expire_all()

    datos = lecturas_para_boleta(db, medidor.direccion.cliente_id, 2025, 1)

    assert datos == {"actual": Decimal("95"), "anterior": Decimal("90"), "numeroSerie": "M-77"}


# ── Rutas ──

def test_crud_ruta(client, db, admin):
    h = headers_admin(admin)

    resp = client.post("/admin/rutas", json={"nombre": "Sector Norte"}, headers=h)
    assert resp.status_code == 201
    ruta_id = resp.json()["id"]

    # Nombre único sin importar mayúsculas
    assert client.post("/admin/rutas", json={"nombre": "sector norte"}, headers=h).status_code == 409

    resp = client.patch(f"/admin/rutas/{ruta_id}", json={"descripcion": "Calles altas"}, headers=h)
    assert resp.json()["descripcion"] == "Calles altas"

    assert client.get("/admin/rutas", headers=h).json()["rutas"][0]["nombre"] == "Sector Norte"
    assert client.delete(f"/admin/rutas/{ruta_id}", headers=h).status_code == 200


def test_reasignar_agrega_al_final(client, db, admin):
    h = headers_admin(admin)
    norte = Ruta(nombre="Norte")
    sur = Ruta(nombre="Sur")
    db.add_all([norte, sur])
    db.commit()

    c1 = crear_cliente(db, numero="1", rut="123456785", password=None)
    c2 = crear_cliente(db, numero="2", rut="111111111", password=None)
    existente = crear_direccion(db, c1, calle="Uno", ruta_id=sur.id, orden=4)
    movida = crear_direccion(db, c2, calle="Dos", ruta_id=norte.id, orden=1)
    crear_medidor(db, existente, serie="S-1")
    crear_medidor(db, movida, serie="S-2")

    resp = client.post(f"/admin/rutas/{sur.id}/reasignar", json={"direccionIds": [movida.id]}, headers=h)
    assert resp.json() == {"success": True, "reasignadas": 1}

    direcciones = client.get(f"/admin/rutas/{sur.id}/direcciones", headers=h).json()["direcciones"]
    assert [(d["direccion"], d["ordenRuta"]) for d in direcciones] == [("Uno 123", 4), ("Dos 123", 5)]

    hoja = client.get(f"/admin/rutas/{sur.id}/medidores", headers=h).json()["medidores"]
    assert [m["numeroSerie"] for m in hoja] == ["S-1", "S-2"]

    # Con direcciones asignadas no se borra
    assert client.delete(f"/admin/rutas/{sur.id}", headers=h).status_code == 409


def test_actualizar_orden(client, db, cliente, admin):
    ruta = Ruta(nombre="Centro")
    db.add(ruta)
    db.commit()
    direccion = crear_direccion(db, cliente, ruta_id=ruta.id, orden=1)

    resp = client.patch(f"/admin/rutas/direcciones/{direccion.id}/orden", json={"orden": 3}, headers=headers_admin(admin))

    assert resp.json()["ordenRuta"] == 3


def test_cajero_solo_ve_rutas(client, cajero):
    h = headers_admin(cajero)
    assert client.get("/admin/rutas", headers=h).status_code == 200
    assert client.post("/admin/rutas", json={"nombre": "X"}, headers=h).status_code == 403
