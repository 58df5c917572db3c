"""
Servicio: Medidores
app/services/medidores_service.py
"""

import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import Cliente, Direccion, EstadoMedidor, Lectura, Medidor
from app.services import auditoria
from app.utils.errores import ErrorConflicto, ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import iso
from app.utils.moneda import a_float
from app.utils.paginacion import paginar

logger = logging.getLogger(__name__)

ORDENAMIENTOS = {
    "numeroSerie": Medidor.numero_serie,
    "fechaInstalacion": Medidor.fecha_instalacion,
    "estado": Medidor.estado,
    "cliente": Cliente.primer_apellido,
}

CAMPOS = ("direccion_id", "numero_serie", "marca", "modelo", "fecha_instalacion",
          "fecha_retiro", "estado", "lectura_inicial", "mostrar_en_ruta")


def _serializar(m: Medidor, detalle: bool = False) -> dict:
    direccion = m.direccion
    cliente = direccion.cliente if direccion else None
    datos = {
        "id": str(m.id),
        "direccionId": str(m.direccion_id),
        "numeroSerie": m.numero_serie,
        "marca": m.marca,
        "modelo": m.modelo,
        "fechaInstalacion": iso(m.fecha_instalacion),
        "fechaRetiro": iso(m.fecha_retiro),
        "estado": m.estado,
        "enServicio": m.fecha_retiro is None,
        "lecturaInicial": a_float(m.lectura_inicial),
        "mostrarEnRuta": m.mostrar_en_ruta,
        "direccion": direccion.texto if direccion else None,
        "cliente": {
            "id": str(cliente.id),
            "numeroCliente": cliente.numero_cliente,
            "nombre": cliente.nombre_corto,
        } if cliente else None,
    }

    if detalle:
        lecturas = sorted(m.lecturas, key=lambda l: (l.periodo_ano, l.periodo_mes), reverse=True)[:12]
        datos["lecturas"] = [
            {
                "id": str(l.id),
                "periodoAno": l.periodo_ano,
                "periodoMes": l.periodo_mes,
                "valorLectura": a_float(l.valor_final),
                "fechaLectura": iso(l.fecha_lectura),
                "tieneCorreccion": l.correccion is not None,
            }
            for l in lecturas
        ]
        ruta = direccion.ruta if direccion else None
        datos["ruta"] = {"id": str(ruta.id), "nombre": ruta.nombre} if ruta else None
    return datos


def obtener_medidor(db: Session, medidor_id: int) -> Medidor:
    medidor = db.query(Medidor).filter(Medidor.id == medidor_id).first()
    if not medidor:
        raise ErrorNoEncontrado("Medidor no encontrado")
    return medidor


def listar(
    db: Session,
    page: int = 1,
    limit: int = 50,
    estado: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "numeroSerie",
    sort_direction: str = "asc",
) -> dict:
    query = (
        db.query(Medidor)
        .join(Direccion, Medidor.direccion_id == Direccion.id)
        .join(Cliente, Direccion.cliente_id == Cliente.id)
    )

    # 'retirado' y 'en_servicio' se deducen de fecha_retiro
    if estado == "retirado":
        query = query.filter(Medidor.fecha_retiro != None)
    elif estado == "en_servicio":
        query = query.filter(Medidor.fecha_retiro == None)
    elif estado:
        query = query.filter(Medidor.estado == estado)

    if search:
        termino = f"%{search.strip()}%"
        query = query.filter(or_(
            Medidor.numero_serie.ilike(termino),
            Cliente.numero_cliente.ilike(termino),
            Cliente.primer_nombre.ilike(termino),
            Cliente.primer_apellido.ilike(termino),
            Direccion.direccion_calle.ilike(termino),
        ))

    columna = ORDENAMIENTOS.get(sort_by, Medidor.numero_serie)
    query = query.order_by(columna.desc() if sort_direction == "desc" else columna.asc(), Medidor.id)

    medidores, paginacion = paginar(query, page, limit)
    return {"data": [_serializar(m) for m in medidores], "pagination": paginacion}


def detalle(db: Session, medidor_id: int) -> dict:
    return _serializar(obtener_medidor(db, medidor_id), detalle=True)


def _validar(db: Session, datos: dict):
    if "direccion_id" in datos:
        if not db.query(Direccion.id).filter(Direccion.id == datos["direccion_id"]).first():
            raise ErrorNoEncontrado("Dirección no encontrada")
    if datos.get("estado") and datos["estado"] not in {e.value for e in EstadoMedidor}:
        raise ErrorValidacion("Estado de medidor inválido")
    if datos.get("fecha_retiro") and datos.get("fecha_instalacion") and datos["fecha_retiro"] < datos["fecha_instalacion"]:
        raise ErrorValidacion("La fecha de retiro no puede ser anterior a la instalación")


def crear(db: Session, datos: dict, admin_email: str) -> dict:
    if not datos.get("direccion_id"):
        raise ErrorValidacion("La dirección es obligatoria")
    _validar(db, datos)

    medidor = Medidor(**{k: v for k, v in datos.items() if k in CAMPOS})
    if medidor.fecha_retiro and not datos.get("estado"):
        medidor.estado = EstadoMedidor.RETIRADO.value
    db.add(medidor)
    db.flush()

    auditoria.registrar(
        db, "CREAR_MEDIDOR", "medidores", medidor.id, usuario_email=admin_email,
        datos_nuevos={k: str(v) for k, v in datos.items()},
    )
    db.commit()
    db.refresh(medidor)
    logger.info(f"Medidor {medidor.id} creado por {admin_email}")
    return _serializar(medidor)


def actualizar(db: Session, medidor_id: int, datos: dict, admin_email: str) -> dict:
    medidor = obtener_medidor(db, medidor_id)
    if not datos:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")
    _validar(db, datos)

    anteriores = {}
    for campo, valor in datos.items():
        if campo not in CAMPOS:
            continue
        anteriores[campo] = str(getattr(medidor, campo))
        setattr(medidor, campo, valor)

    auditoria.registrar(
        db, "EDITAR_MEDIDOR", "medidores", medidor_id, usuario_email=admin_email,
        datos_anteriores=anteriores, datos_nuevos={k: str(v) for k, v in datos.items()},
    )
    db.commit()
    db.refresh(medidor)
    return _serializar(medidor)


def alternar_mostrar_en_ruta(db: Session, medidor_id: int, admin_email: str) -> dict:
    medidor = obtener_medidor(db, medidor_id)
    medidor.mostrar_en_ruta = not medidor.mostrar_en_ruta
    auditoria.registrar(
        db, "ALTERNAR_MOSTRAR_EN_RUTA", "medidores", medidor_id, usuario_email=admin_email,
        datos_nuevos={"mostrar_en_ruta": medidor.mostrar_en_ruta},
    )
    db.commit()
    return {"id": str(medidor.id), "mostrarEnRuta": medidor.mostrar_en_ruta}


def eliminar(db: Session, medidor_id: int, admin_email: str) -> dict:
    medidor = obtener_medidor(db, medidor_id)
    lecturas = db.query(Lectura).filter(Lectura.medidor_id == medidor_id).count()
    if lecturas:
        raise ErrorConflicto(f"No se puede eliminar: el medidor tiene {lecturas} lecturas registradas")

    auditoria.registrar(
        db, "ELIMINAR_MEDIDOR", "medidores", medidor_id, usuario_email=admin_email,
        datos_anteriores={"numero_serie": medidor.numero_serie, "direccion_id": medidor.direccion_id},
    )
    db.delete(medidor)
    db.commit()
    return {"success": True}
