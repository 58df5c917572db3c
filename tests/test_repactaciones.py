from decimal import Decimal

import pytest

from app.models import Boleta
from app.models_gestion import Repactacion, SolicitudRepactacion
from app.services.repactaciones_service import calcular_cuotas
from app.utils.errores import ErrorValidacion

from conftest import crear_boleta, headers_admin


@pytest.mark.parametrize("monto, cuotas, inicial, base", [
    (100000, 3, Decimal("33334"), Decimal("33333")),
    (1000, 7, Decimal("148"), Decimal("142")),
    (560, 48, Decimal("43"), Decimal("11")),
    (100, 48, Decimal("6"), Decimal("2")),
    (50000, 1, Decimal("50000"), Decimal("50000")),
])
def test_calcular_cuotas_suma_el_total(monto, cuotas, inicial, base):
    assert calcular_cuotas(monto, cuotas) == (inicial, base)
    assert inicial + base * (cuotas - 1) == monto
    assert inicial >= base >= 0


def test_calcular_cuotas_invalido():
    with pytest.raises(ErrorValidacion):
        calcular_cuotas(1000, 0)
    with pytest.raises(ErrorValidacion):
        calcular_cuotas(0, 3)


@pytest.fixture
def convenio(client, cliente, supervisor):
    resp = client.post(
        "/admin/repactaciones",
        json={"numeroCliente": "1001", "montoDeudaInicial": 100000, "totalCuotas": 3},
        headers=headers_admin(supervisor),
    )
    assert resp.status_code == 201
    return resp.json()


def test_crear_repactacion(convenio):
    assert convenio["estado"] == "activo"
    assert convenio["numeroConvenio"] == "1"
    assert convenio["montoCuotaInicial"] == 33334
    assert convenio["montoCuotaBase"] == 33333


def test_numero_convenio_correlativo(client, db, cliente, convenio, supervisor):
    resp = client.post(
        "/admin/repactaciones",
        json={"numeroCliente": "1001", "montoDeudaInicial": 5000, "totalCuotas": 2},
        headers=headers_admin(supervisor),
    )
    assert resp.json()["numeroConvenio"] == "2"


def test_crear_cliente_inexistente(client, supervisor):
    resp = client.post(
        "/admin/repactaciones",
        json={"numeroCliente": "9999", "montoDeudaInicial": 5000, "totalCuotas": 2},
        headers=headers_admin(supervisor),
    )
    assert resp.status_code == 404


def test_cajero_no_puede_crear(client, cliente, cajero):
    resp = client.post(
        "/admin/repactaciones",
        json={"numeroCliente": "1001", "montoDeudaInicial": 5000, "totalCuotas": 2},
        headers=headers_admin(cajero),
    )
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"
    assert resp.json()["error"]["rolActual"] == "billing_clerk"


def test_crear_con_cuotas_fijadas_a_mano(client, cliente, supervisor):
    resp = client.post(
        "/admin/repactaciones",
        json={
            "numeroCliente": "1001",
            "montoDeudaInicial": 90000,
            "totalCuotas": 3,
            "montoCuotaInicial": 40000,
            "montoCuotaBase": 25000,
        },
        headers=headers_admin(supervisor),
    )

    assert resp.status_code == 201
    assert resp.json()["montoCuotaInicial"] == 40000
    assert resp.json()["montoCuotaBase"] == 25000


def test_editar_recalcula_cuotas(client, convenio, supervisor):
    resp = client.patch(
        f"/admin/repactaciones/{convenio['id']}",
        json={"totalCuotas": 4},
        headers=headers_admin(supervisor),
    )

    assert resp.status_code == 200
    assert resp.json()["montoCuotaBase"] == 25000
    assert resp.json()["montoCuotaInicial"] == 25000


def test_transiciones_de_estado(client, convenio, supervisor, admin):
    url = f"/admin/repactaciones/{convenio['id']}"

    # Supervisor no puede cancelar
    assert client.post(f"{url}/cancelar", headers=headers_admin(supervisor)).status_code == 403

    resp = client.post(f"{url}/completar", headers=headers_admin(supervisor))
    assert resp.status_code == 200

    detalle = client.get(url, headers=headers_admin(admin)).json()
    assert detalle["estado"] == "completado"
    assert detalle["fechaTerminoReal"] is not None

    # Terminal: no vuelve a activo ni se cancela
    resp = client.patch(url, json={"estado": "activo"}, headers=headers_admin(admin))
    assert resp.status_code == 400
    resp = client.post(f"{url}/cancelar", headers=headers_admin(admin))
    assert resp.status_code == 400
    resp = client.post(f"{url}/completar", headers=headers_admin(admin))
    assert resp.status_code == 409


def test_eliminar_desliga_boletas(client, db, cliente, convenio, admin):
    boleta = crear_boleta(db, cliente, 5000, repactacion_id=int(convenio["id"]))

    resp = client.delete(f"/admin/repactaciones/{convenio['id']}", headers=headers_admin(admin))

    assert resp.status_code == 200
    db.expire_all()
    assert db.get(Boleta, boleta.id).repactacion_id is None
    assert db.query(Repactacion).count() == 0


def test_listar_ordenado(client, convenio, cajero):
    data = client.get("/admin/repactaciones", params={"sortBy": "monto"}, headers=headers_admin(cajero)).json()

    assert data["pagination"]["total"] == 1
    assert data["repactaciones"][0]["cliente"]["numeroCliente"] == "1001"


# ── Solicitudes ──

@pytest.fixture
def solicitud(db, cliente):
    s = SolicitudRepactacion(
        cliente_id=cliente.id,
        monto_deuda_estimado=Decimal("30000"),
        cuotas_solicitadas=6,
        motivo="Cesantía",
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    return s


def test_aprobar_solicitud_crea_repactacion_activa(client, db, solicitud, supervisor):
    resp = client.post(
        f"/admin/solicitudes-repactacion/{solicitud.id}/aprobar", headers=headers_admin(supervisor)
    )

    assert resp.status_code == 200
    repactacion = db.get(Repactacion, int(resp.json()["repactacionId"]))
    assert repactacion.estado == "activo"
    assert repactacion.total_cuotas == 6
    assert repactacion.monto_cuota_base == Decimal("5000")
    assert repactacion.observaciones == f"Aprobada desde solicitud {solicitud.id}. Motivo cliente: Cesantía"

    db.expire_all()
    actualizada = db.get(SolicitudRepactacion, solicitud.id)
    assert actualizada.estado == "aprobada"
    assert actualizada.repactacion_id == repactacion.id

    # Solo desde pendiente
    resp = client.post(
        f"/admin/solicitudes-repactacion/{solicitud.id}/rechazar",
        json={"motivoRechazo": "tarde"},
        headers=headers_admin(supervisor),
    )
    assert resp.status_code == 409


def test_rechazar_solicitud(client, db, solicitud, supervisor):
    resp = client.post(
        f"/admin/solicitudes-repactacion/{solicitud.id}/rechazar",
        json={"motivoRechazo": "Deuda menor al mínimo"},
        headers=headers_admin(supervisor),
    )

    assert resp.status_code == 200
    db.expire_all()
    s = db.get(SolicitudRepactacion, solicitud.id)
    assert s.estado == "rechazada"
    assert s.motivo_rechazo == "Deuda menor al mínimo"
    assert db.query(Repactacion).count() == 0


def test_cajero_no_aprueba(client, solicitud, cajero):
    resp = client.post(f"/admin/solicitudes-repactacion/{solicitud.id}/aprobar", headers=headers_admin(cajero))
    assert resp.status_code == 403


def test_listar_solicitudes_pendientes(client, solicitud, cajero):
    data = client.get(
        "/admin/solicitudes-repactacion", params={"estado": "pendiente"}, headers=headers_admin(cajero)
    ).json()

    assert data["pagination"]["total"] == 1
    assert data["solicitudes"][0]["numeroCliente"] == "1001"
