from datetime import timedelta

from app.models import LogAuditoria, Ruta
from app.models_gestion import DescuentoAplicado
from app.utils.fechas import hoy_chile

from conftest import crear_boleta, crear_cliente, crear_direccion, headers_admin


def _tarifa(**extra):
    datos = {
        "costoDespacho": 2500,
        "costoReposicion1": 8000,
        "costoReposicion2": 12000,
        "costoM3Agua": 650,
        "cargoFijo": 3200,
        "tasaIva": 0.19,
        "fechaInicio": (hoy_chile() - timedelta(days=10)).isoformat(),
    }
    datos.update(extra)
    return datos


# ── Tarifas ──

def test_crear_y_consultar_tarifa_vigente(client, db, admin):
    h = headers_admin(admin)
    antigua = client.post(
        "/admin/tarifas",
        json=_tarifa(
            fechaInicio=(hoy_chile() - timedelta(days=400)).isoformat(),
            fechaFin=(hoy_chile() - timedelta(days=10)).isoformat(),
            cargoFijo=2900,
        ),
        headers=h,
    )
    assert antigua.status_code == 201
    assert antigua.json()["esVigente"] is False

    nueva = client.post("/admin/tarifas", json=_tarifa(), headers=h)
    assert nueva.status_code == 201
    assert nueva.json()["diasGraciaInteres"] == 30

    vigente = client.get("/admin/tarifas/vigente", headers=h).json()
    assert vigente["id"] == nueva.json()["id"]
    assert vigente["cargoFijo"] == 3200
    assert vigente["esVigente"] is True

    listado = client.get("/admin/tarifas", headers=h).json()
    assert listado["pagination"]["total"] == 2
    assert db.query(LogAuditoria).filter(LogAuditoria.accion == "CREAR_TARIFA").count() == 2


def test_sin_tarifa_vigente_es_404(client, admin):
    assert client.get("/admin/tarifas/vigente", headers=headers_admin(admin)).status_code == 404


def test_tarifa_fecha_fin_antes_del_inicio(client, admin):
    resp = client.post(
        "/admin/tarifas",
        json=_tarifa(fechaFin=(hoy_chile() - timedelta(days=20)).isoformat()),
        headers=headers_admin(admin),
    )
    assert resp.status_code == 400


def test_editar_y_cerrar_tarifa(client, admin):
    h = headers_admin(admin)
    tarifa = client.post(
        "/admin/tarifas",
        json=_tarifa(fechaFin=(hoy_chile() + timedelta(days=30)).isoformat()),
        headers=h,
    ).json()

    resp = client.patch(f"/admin/tarifas/{tarifa['id']}", json={"costoM3Agua": 700, "fechaFin": None}, headers=h)

    assert resp.status_code == 200
    assert resp.json()["costoM3Agua"] == 700
    assert resp.json()["fechaFin"] is None
    assert resp.json()["cargoFijo"] == 3200


def test_no_se_elimina_la_tarifa_vigente(client, admin):
    h = headers_admin(admin)
    antigua = client.post(
        "/admin/tarifas",
        json=_tarifa(
            fechaInicio=(hoy_chile() - timedelta(days=400)).isoformat(),
            fechaFin=(hoy_chile() - timedelta(days=10)).isoformat(),
        ),
        headers=h,
    ).json()
    vigente = client.post("/admin/tarifas", json=_tarifa(), headers=h).json()

    assert client.delete(f"/admin/tarifas/{vigente['id']}", headers=h).status_code == 409
    assert client.delete(f"/admin/tarifas/{antigua['id']}", headers=h).status_code == 200
    assert client.get(f"/admin/tarifas/{antigua['id']}", headers=h).status_code == 404


def test_supervisor_ve_tarifas_pero_no_las_crea(client, supervisor):
    h = headers_admin(supervisor)
    assert client.get("/admin/tarifas", headers=h).status_code == 200
    assert client.post("/admin/tarifas", json=_tarifa(), headers=h).status_code == 403


# ── Cortes y reposiciones ──

def test_cajero_registra_corte(client, db, cliente, cajero):
    resp = client.post(
        "/admin/cortes",
        json={"numeroCliente": "1001", "motivoCorte": "Deuda vencida", "montoCobrado": 8000},
        headers=headers_admin(cajero),
    )

    assert resp.status_code == 201
    data = resp.json()
    assert data["estado"] == "cortado"
    assert data["clienteId"] == str(cliente.id)
    assert data["autorizadoCortePor"] == "billing_clerk@coab.cl"
    assert data["fechaCorte"] == hoy_chile().isoformat()
    assert db.query(LogAuditoria).filter(LogAuditoria.accion == "CREAR_CORTE").count() == 1


def test_corte_cliente_inexistente(client, cajero):
    resp = client.post(
        "/admin/cortes",
        json={"numeroCliente": "9999", "motivoCorte": "Deuda"},
        headers=headers_admin(cajero),
    )
    assert resp.status_code == 404


def test_reposiciones_se_numeran_por_cliente(client, cliente, cajero, supervisor):
    h = headers_admin(supervisor)
    primero = client.post(
        "/admin/cortes", json={"numeroCliente": "1001", "motivoCorte": "Deuda"}, headers=headers_admin(cajero)
    ).json()

    # Reponer es de supervisor o admin
    url = f"/admin/cortes/{primero['id']}/reposicion"
    assert client.post(url, headers=headers_admin(cajero)).status_code == 403

    resp = client.post(url, headers=h)
    assert resp.status_code == 200
    assert resp.json()["estado"] == "repuesto"
    assert resp.json()["numeroReposicion"] == 1
    assert resp.json()["autorizadoReposicionPor"] == "supervisor@coab.cl"

    assert client.post(url, headers=h).status_code == 409

    segundo = client.post("/admin/cortes", json={"numeroCliente": "1001", "motivoCorte": "Deuda"}, headers=h).json()
    resp = client.post(f"/admin/cortes/{segundo['id']}/reposicion", headers=h)
    assert resp.json()["numeroReposicion"] == 2

    cortes = client.get(f"/admin/cortes/cliente/{cliente.id}", headers=h).json()["cortes"]
    assert len(cortes) == 2


def test_info_reposicion_usa_tarifa_vigente(client, cliente, admin):
    h = headers_admin(admin)
    client.post("/admin/tarifas", json=_tarifa(), headers=h)

    info = client.get(f"/admin/cortes/cliente/{cliente.id}/reposicion-info", headers=h).json()

    assert info == {
        "reposicionesPrevias": 0,
        "siguienteNumeroReposicion": 1,
        "tarifaReposicion1": 8000,
        "tarifaReposicion2": 12000,
    }
    assert client.get("/admin/cortes/cliente/999/reposicion-info", headers=h).status_code == 404


def test_listar_cortes_por_estado(client, cliente, admin):
    h = headers_admin(admin)
    corte = client.post("/admin/cortes", json={"numeroCliente": "1001", "motivoCorte": "Deuda"}, headers=h).json()
    client.post("/admin/cortes", json={"numeroCliente": "1001", "motivoCorte": "Fuga"}, headers=h)
    client.post(f"/admin/cortes/{corte['id']}/reposicion", headers=h)

    cortados = client.get("/admin/cortes", params={"estado": "cortado"}, headers=h).json()
    assert [c["motivoCorte"] for c in cortados["cortes"]] == ["Fuga"]
    assert cortados["pagination"]["total"] == 1


# ── Descuentos ──

def test_crear_plantilla_de_descuento(client, admin):
    h = headers_admin(admin)
    resp = client.post(
        "/admin/descuentos",
        json={"nombre": "Adulto mayor", "tipoDescuento": "porcentaje", "valor": 20},
        headers=h,
    )

    assert resp.status_code == 201
    data = resp.json()
    assert data["esVigente"] is True
    assert data["fechaInicio"] == hoy_chile().isoformat()
    assert data["creadoPor"] == "admin@coab.cl"

    resp = client.patch(f"/admin/descuentos/{data['id']}", json={"activo": False}, headers=h)
    assert resp.json()["esVigente"] is False


def test_porcentaje_no_supera_cien(client, admin):
    resp = client.post(
        "/admin/descuentos",
        json={"nombre": "Excesivo", "tipoDescuento": "porcentaje", "valor": 150},
        headers=headers_admin(admin),
    )
    assert resp.status_code == 400


def test_cajero_no_crea_plantillas(client, cajero):
    resp = client.post(
        "/admin/descuentos",
        json={"nombre": "x", "tipoDescuento": "monto_fijo", "valor": 1000},
        headers=headers_admin(cajero),
    )
    assert resp.status_code == 403


def test_descuento_individual(client, db, cliente, admin):
    resp = client.post(
        "/admin/descuentos-aplicados/individual",
        json={"clienteId": cliente.id, "tipo": "monto_fijo", "valor": 3000, "motivo": "Compensación por corte"},
        headers=headers_admin(admin),
    )

    assert resp.status_code == 201
    data = resp.json()
    assert data["esPuntual"] is True
    assert data["estado"] == "pendiente"
    assert data["montoAplicado"] == 3000
    assert data["motivo"] == "Compensación por corte"

    detalle = client.get(f"/admin/descuentos-aplicados/{data['id']}", headers=headers_admin(admin)).json()
    assert detalle["clienteRut"] == cliente.rut
    assert detalle["descuentoDetalle"] is None


def test_masivo_a_todos_omite_los_que_ya_lo_tienen(client, db, cliente, admin):
    h = headers_admin(admin)
    otro = crear_cliente(db, numero="1002", rut="111111111", password=None)
    crear_cliente(db, numero="1003", rut="222222222", password=None, es_cliente_actual=False)

    conteo = client.get("/admin/descuentos-aplicados/preview-count", params={"filter": "todos"}, headers=h).json()
    assert conteo == {"count": 2}

    plantilla = client.post(
        "/admin/descuentos", json={"nombre": "Invierno", "tipoDescuento": "monto_fijo", "valor": 1500}, headers=h
    ).json()
    client.post(
        "/admin/descuentos-aplicados/masivo",
        json={"descuentoId": plantilla["id"], "recipientFilter": "manual", "clienteIds": [otro.id]},
        headers=h,
    )

    resp = client.post(
        "/admin/descuentos-aplicados/masivo",
        json={"descuentoId": plantilla["id"], "recipientFilter": "todos"},
        headers=h,
    )

    assert resp.status_code == 201
    assert resp.json()["clientesAplicados"] == 1
    assert resp.json()["clientesOmitidos"] == 1
    assert db.query(DescuentoAplicado).count() == 2

    # Ya lo tienen todos
    resp = client.post(
        "/admin/descuentos-aplicados/masivo",
        json={"descuentoId": plantilla["id"], "recipientFilter": "todos"},
        headers=h,
    )
    assert resp.status_code == 409


def test_masivo_por_ruta_con_plantilla_nueva(client, db, cliente, admin):
    h = headers_admin(admin)
    ruta = Ruta(nombre="Norte")
    db.add(ruta)
    db.commit()
    crear_direccion(db, cliente, ruta_id=ruta.id, orden=1)
    crear_cliente(db, numero="1002", rut="111111111", password=None)

    resp = client.post(
        "/admin/descuentos-aplicados/masivo",
        json={
            "plantilla": {"nombre": "Sector Norte", "tipo": "porcentaje", "valor": 10},
            "recipientFilter": "ruta",
            "rutaId": ruta.id,
        },
        headers=h,
    )

    assert resp.status_code == 201
    assert resp.json()["clientesAplicados"] == 1
    assert resp.json()["descuentoTipo"] == "porcentaje"

    aplicados = client.get("/admin/descuentos-aplicados", params={"rutaId": ruta.id}, headers=h).json()
    assert [a["clienteNumero"] for a in aplicados["descuentosAplicados"]] == ["1001"]
    assert aplicados["descuentosAplicados"][0]["descuentoNombre"] == "Sector Norte"


def test_masivo_manual_con_cliente_inexistente(client, cliente, admin):
    h = headers_admin(admin)
    plantilla = client.post(
        "/admin/descuentos", json={"nombre": "Promo", "tipoDescuento": "monto_fijo", "valor": 500}, headers=h
    ).json()

    resp = client.post(
        "/admin/descuentos-aplicados/masivo",
        json={"descuentoId": plantilla["id"], "recipientFilter": "manual", "clienteIds": [cliente.id, 999]},
        headers=h,
    )
    assert resp.status_code == 404


def test_masivo_sin_plantilla_ni_descuento(client, cliente, admin):
    resp = client.post(
        "/admin/descuentos-aplicados/masivo",
        json={"recipientFilter": "todos"},
        headers=headers_admin(admin),
    )
    assert resp.status_code == 400


def test_no_se_elimina_descuento_ya_imputado(client, db, cliente, admin):
    h = headers_admin(admin)
    aplicado = client.post(
        "/admin/descuentos-aplicados/individual",
        json={"clienteId": cliente.id, "tipo": "monto_fijo", "valor": 1000, "motivo": "Ajuste"},
        headers=h,
    ).json()
    boleta = crear_boleta(db, cliente, 10000)
    fila = db.query(DescuentoAplicado).filter(DescuentoAplicado.id == int(aplicado["id"])).one()
    fila.boleta_id = boleta.id
    db.commit()

    resp = client.delete(f"/admin/descuentos-aplicados/{aplicado['id']}", headers=h)
    assert resp.status_code == 400

    detalle = client.get(f"/admin/descuentos-aplicados/{aplicado['id']}", headers=h).json()
    assert detalle["estado"] == "aplicado"
    assert detalle["boletaMontoTotal"] == 10000


def test_plantilla_con_pendientes_no_se_elimina(client, db, cliente, admin):
    h = headers_admin(admin)
    plantilla = client.post(
        "/admin/descuentos", json={"nombre": "Temporal", "tipoDescuento": "monto_fijo", "valor": 700}, headers=h
    ).json()
    client.post(
        "/admin/descuentos-aplicados/masivo",
        json={"descuentoId": plantilla["id"], "recipientFilter": "manual", "clienteIds": [cliente.id]},
        headers=h,
    )

    assert client.delete(f"/admin/descuentos/{plantilla['id']}", headers=h).status_code == 409

    pendiente = db.query(DescuentoAplicado).one()
    assert client.delete(f"/admin/descuentos-aplicados/{pendiente.id}", headers=h).status_code == 200
    assert client.delete(f"/admin/descuentos/{plantilla['id']}", headers=h).status_code == 200
