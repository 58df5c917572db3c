"""
Servicio: Lecturas de Medidores
app/services/lecturas_service.py

Las lecturas se pueden editar directamente antes de generar la boleta.
Después, el valor original se conserva y se registra una corrección.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import Cliente, Direccion, Lectura, LecturaCorreccion, Medidor
from app.services import auditoria
from app.utils.errores import ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import ahora_utc, iso, mes_anterior
from app.utils.moneda import a_decimal, a_float
from app.utils.paginacion import paginar

logger = logging.getLogger(__name__)

MESES_PROMEDIO = 6


def _serializar(l: Lectura) -> dict:
    medidor = l.medidor
    direccion = medidor.direccion if medidor else None
    cliente = direccion.cliente if direccion else None
    correccion = l.correccion
    return {
        "id": str(l.id),
        "medidorId": str(l.medidor_id),
        "valorLectura": a_float(l.valor_lectura),
        "valorCorregido": a_float(correccion.valor_corregido) if correccion else None,
        "fechaLectura": iso(l.fecha_lectura),
        "periodoAno": l.periodo_ano,
        "periodoMes": l.periodo_mes,
        "tipoLectura": l.tipo_lectura,
        "confirmada": l.confirmada,
        "observaciones": l.observaciones,
        "tieneCorreccion": bool(l.tiene_correccion or correccion),
        "medidor": {
            "id": str(medidor.id),
            "numeroSerie": medidor.numero_serie,
            "direccion": direccion.texto if direccion else None,
            "cliente": {
                "id": str(cliente.id),
                "numeroCliente": cliente.numero_cliente,
                "nombre": cliente.nombre_corto,
            } if cliente else None,
        } if medidor else None,
        "correccion": {
            "id": str(correccion.id),
            "valorOriginal": a_float(l.valor_lectura),
            "valorCorregido": a_float(correccion.valor_corregido),
            "motivoCorreccion": correccion.motivo_correccion,
            "corregidoPor": correccion.corregido_por,
            "fechaCorreccion": iso(correccion.fecha_correccion),
        } if correccion else None,
    }


def obtener_lectura(db: Session, lectura_id: int) -> Lectura:
    lectura = db.query(Lectura).filter(Lectura.id == lectura_id).first()
    if not lectura:
        raise ErrorNoEncontrado("Lectura no encontrada")
    return lectura


def listar(
    db: Session,
    page: int = 1,
    limit: int = 50,
    medidor_id: Optional[int] = None,
    cliente_id: Optional[int] = None,
    periodo_ano: Optional[int] = None,
    periodo_mes: Optional[int] = None,
    con_correccion: Optional[bool] = None,
    search: Optional[str] = None,
) -> dict:
    query = (
        db.query(Lectura)
        .join(Medidor, Lectura.medidor_id == Medidor.id)
        .join(Direccion, Medidor.direccion_id == Direccion.id)
        .join(Cliente, Direccion.cliente_id == Cliente.id)
    )

    if medidor_id:
        query = query.filter(Lectura.medidor_id == medidor_id)
    if cliente_id:
        query = query.filter(Direccion.cliente_id == cliente_id)
    if periodo_ano:
        query = query.filter(Lectura.periodo_ano == periodo_ano)
    if periodo_mes:
        query = query.filter(Lectura.periodo_mes == periodo_mes)
    if con_correccion is True:
        query = query.filter(Lectura.correccion.has())
    elif con_correccion is False:
        query = query.filter(~Lectura.correccion.has())
    if search:
        termino = f"%{search.strip()}%"
        query = query.filter(or_(
            Medidor.numero_serie.ilike(termino),
            Cliente.primer_nombre.ilike(termino),
            Cliente.primer_apellido.ilike(termino),
            Cliente.numero_cliente.ilike(termino),
        ))

    query = query.order_by(Lectura.periodo_ano.desc(), Lectura.periodo_mes.desc(), Lectura.id.desc())
    lecturas, paginacion = paginar(query, page, limit)
    return {"data": [_serializar(l) for l in lecturas], "pagination": paginacion}


def detalle(db: Session, lectura_id: int) -> dict:
    return _serializar(obtener_lectura(db, lectura_id))


def _lectura_de(db: Session, medidor_id: int, ano: int, mes: int) -> Optional[Lectura]:
    return db.query(Lectura).filter(
        Lectura.medidor_id == medidor_id,
        Lectura.periodo_ano == ano,
        Lectura.periodo_mes == mes,
    ).first()


def contexto(db: Session, lectura_id: int) -> dict:
    """Lectura anterior, consumo del mes y promedio de consumo de los meses previos."""
    lectura = obtener_lectura(db, lectura_id)

    ano, mes = mes_anterior(lectura.periodo_ano, lectura.periodo_mes)
    anterior = _lectura_de(db, lectura.medidor_id, ano, mes)

    consumo_actual = None
    if anterior:
        consumo_actual = a_decimal(lectura.valor_final) - a_decimal(anterior.valor_final)

    # Consumos de los meses previos: diferencia entre lecturas consecutivas
    consumos = []
    actual = anterior
    for _ in range(MESES_PROMEDIO):
        if not actual:
            break
        ano, mes = mes_anterior(actual.periodo_ano, actual.periodo_mes)
        previa = _lectura_de(db, lectura.medidor_id, ano, mes)
        if not previa:
            break
        consumos.append(a_decimal(actual.valor_final) - a_decimal(previa.valor_final))
        actual = previa

    promedio = None
    if consumos:
        promedio = (sum(consumos, Decimal("0")) / len(consumos)).quantize(Decimal("0.1"))

    return {
        "lecturaAnterior": {
            "id": str(anterior.id),
            "valor": a_float(anterior.valor_final),
            "periodoAno": anterior.periodo_ano,
            "periodoMes": anterior.periodo_mes,
        } if anterior else None,
        "consumoActual": a_float(consumo_actual) if consumo_actual is not None else None,
        "promedioConsumo": a_float(promedio) if promedio is not None else None,
        "mesesEnPromedio": len(consumos),
    }


def actualizar(db: Session, lectura_id: int, valor, observaciones: Optional[str], admin_email: str) -> dict:
    lectura = obtener_lectura(db, lectura_id)
    valor = a_decimal(valor)
    if valor < 0:
        raise ErrorValidacion("La lectura no puede ser negativa")

    anteriores = {"valorLectura": str(lectura.valor_lectura), "observaciones": lectura.observaciones}
    lectura.valor_lectura = valor
    if observaciones is not None:
        lectura.observaciones = observaciones
    lectura.confirmada = True

    auditoria.registrar(
        db, "EDITAR_LECTURA", "lecturas", lectura_id, usuario_email=admin_email,
        datos_anteriores=anteriores,
        datos_nuevos={"valorLectura": str(valor), "observaciones": lectura.observaciones},
    )
    db.commit()
    db.refresh(lectura)
    return _serializar(lectura)


def registrar_correccion(db: Session, lectura_id: int, valor_corregido, motivo: str, admin_email: str) -> dict:
    """Crea la corrección o la actualiza si ya existe (una por lectura)."""
    lectura = obtener_lectura(db, lectura_id)
    valor_corregido = a_decimal(valor_corregido)
    if valor_corregido < 0:
        raise ErrorValidacion("La lectura no puede ser negativa")
    if not motivo or not motivo.strip():
        raise ErrorValidacion("Debe indicar el motivo de la corrección")

    correccion = lectura.correccion
    existia = correccion is not None
    if correccion:
        correccion.valor_corregido = valor_corregido
        correccion.motivo_correccion = motivo
        correccion.corregido_por = admin_email
        correccion.fecha_correccion = ahora_utc()
    else:
        correccion = LecturaCorreccion(
            lectura_original_id=lectura_id,
            valor_corregido=valor_corregido,
            motivo_correccion=motivo,
            corregido_por=admin_email,
        )
        db.add(correccion)
    lectura.tiene_correccion = True
    db.flush()

    auditoria.registrar(
        db, "EDITAR_CORRECCION_LECTURA" if existia else "CREAR_CORRECCION_LECTURA",
        "lectura_correcciones", correccion.id, usuario_email=admin_email,
        datos_nuevos={
            "lecturaId": str(lectura_id),
            "valorOriginal": str(lectura.valor_lectura),
            "valorCorregido": str(valor_corregido),
            "motivo": motivo,
        },
    )
    db.commit()
    db.refresh(correccion)

    return {
        "success": True,
        "message": "Corrección actualizada correctamente" if existia else "Corrección registrada correctamente",
        "correccion": {
            "id": str(correccion.id),
            "valorOriginal": a_float(lectura.valor_lectura),
            "valorCorregido": a_float(correccion.valor_corregido),
            "motivo": correccion.motivo_correccion,
            "corregidoPor": correccion.corregido_por,
            "fecha": iso(correccion.fecha_correccion),
        },
    }


def lecturas_cliente(db: Session, cliente_id: int, limit: int = 24) -> list:
    lecturas = (
        db.query(Lectura)
        .join(Medidor, Lectura.medidor_id == Medidor.id)
        .join(Direccion, Medidor.direccion_id == Direccion.id)
        .filter(Direccion.cliente_id == cliente_id)
        .order_by(Lectura.periodo_ano.desc(), Lectura.periodo_mes.desc())
        .limit(limit)
        .all()
    )
    return [_serializar(l) for l in lecturas]


def lecturas_para_boleta(db: Session, cliente_id: int, ano: int, mes: int) -> dict:
    """Lectura del periodo y del mes anterior del medidor en servicio del cliente."""
    medidor = (
        db.query(Medidor)
        .join(Direccion, Medidor.direccion_id == Direccion.id)
        .filter(Direccion.cliente_id == cliente_id, Medidor.fecha_retiro == None)
        .order_by(Medidor.id.desc())
        .first()
    )
    if not medidor:
        return {"actual": None, "anterior": None, "numeroSerie": None}

    actual = _lectura_de(db, medidor.id, ano, mes)
    ano_ant, mes_ant = mes_anterior(ano, mes)
    anterior = _lectura_de(db, medidor.id, ano_ant, mes_ant)
    return {
        "actual": a_decimal(actual.valor_final) if actual else None,
        "anterior": a_decimal(anterior.valor_final) if anterior else None,
        "numeroSerie": medidor.numero_serie,
    }
