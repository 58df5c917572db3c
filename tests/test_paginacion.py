import pytest

from app.models import Pago
from app.utils.errores import ErrorValidacion
from app.utils.paginacion import paginar, paginar_por_cursor

from conftest import crear_cliente


@pytest.fixture
def pagos(db):
    cliente = crear_cliente(db, password=None)
    for monto in range(1, 8):
        db.add(Pago(cliente_id=cliente.id, monto=monto * 1000))
    db.commit()
    return db.query(Pago).order_by(Pago.id.desc()).all()


def test_cursor_no_devuelve_mas_que_limit(db, pagos):
    filas, pag = paginar_por_cursor(db.query(Pago), Pago.id, limit=3)

    assert [p.id for p in filas] == [p.id for p in pagos[:3]]
    assert pag == {"hasNextPage": True, "nextCursor": str(pagos[2].id)}


def test_cursor_recorre_hasta_la_ultima_pagina(db, pagos):
    vistos = []
    cursor = None
    while True:
        filas, pag = paginar_por_cursor(db.query(Pago), Pago.id, cursor=cursor, limit=3)
        assert len(filas) <= 3
        vistos.extend(p.id for p in filas)
        if not pag["hasNextPage"]:
            assert pag["nextCursor"] is None
            break
        cursor = pag["nextCursor"]

    assert vistos == [p.id for p in pagos]


def test_cursor_pagina_exacta_no_tiene_siguiente(db, pagos):
    filas, pag = paginar_por_cursor(db.query(Pago), Pago.id, limit=7)
    assert len(filas) == 7
    assert pag["hasNextPage"] is False


def test_cursor_invalido(db, pagos):
    with pytest.raises(ErrorValidacion):
        paginar_por_cursor(db.query(Pago), Pago.id, cursor="abc")


def test_paginar_por_pagina(db, pagos):
    filas, pag = paginar(db.query(Pago).order_by(Pago.id), page=3, limit=3)

    assert len(filas) == 1
    assert pag == {"total": 7, "page": 3, "limit": 3, "totalPages": 3}


def test_limit_se_acota_a_100(db, pagos):
    _, pag = paginar(db.query(Pago), page=1, limit=500)
    assert pag["limit"] == 100
