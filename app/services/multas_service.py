"""
Servicio: Multas
app/services/multas_service.py
"""

import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import Cliente
from app.models_gestion import Multa
from app.services import auditoria
from app.utils.errores import ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import ahora_utc, hoy_chile, iso
from app.utils.moneda import a_decimal, a_float, formatear_pesos
from app.utils.paginacion import paginar

logger = logging.getLogger(__name__)

CAMPOS = ("monto", "motivo", "descripcion", "fecha_aplicacion", "periodo_desde",
          "periodo_hasta", "afecto_iva")


def serializar(m: Multa) -> dict:
    cliente = m.cliente
    return {
        "id": str(m.id),
        "clienteId": str(m.cliente_id),
        "cliente": {
            "id": str(cliente.id),
            "numeroCliente": cliente.numero_cliente,
            "nombre": cliente.nombre_corto,
        } if cliente else None,
        "monto": a_float(m.monto),
        "montoFormateado": formatear_pesos(m.monto),
        "motivo": m.motivo,
        "descripcion": m.descripcion,
        "fechaAplicacion": iso(m.fecha_aplicacion),
        "periodoDesde": iso(m.periodo_desde),
        "periodoHasta": iso(m.periodo_hasta),
        "afectoIva": m.afecto_iva,
        "estado": m.estado,
        "aplicadaPor": m.aplicada_por,
        "boletaAplicadaId": str(m.boleta_aplicada_id) if m.boleta_aplicada_id else None,
        "canceladaPor": m.cancelada_por,
        "fechaCancelacion": iso(m.fecha_cancelacion),
        "motivoCancelacion": m.motivo_cancelacion,
        "creadoEn": iso(m.creado_en),
    }


def obtener_multa(db: Session, multa_id: int) -> Multa:
    multa = db.query(Multa).filter(Multa.id == multa_id).first()
    if not multa:
        raise ErrorNoEncontrado("Multa no encontrada")
    return multa


def listar(
    db: Session,
    page: int = 1,
    limit: int = 50,
    estado: Optional[str] = None,
    cliente_id: Optional[int] = None,
    search: Optional[str] = None,
) -> dict:
    query = db.query(Multa).join(Cliente, Multa.cliente_id == Cliente.id)

    if estado == "cancelada":
        query = query.filter(Multa.cancelada_por != None)
    elif estado == "activa":
        query = query.filter(Multa.cancelada_por == None)
    if cliente_id:
        query = query.filter(Multa.cliente_id == cliente_id)
    if search:
        termino = f"%{search.strip()}%"
        query = query.filter(or_(
            Multa.motivo.ilike(termino),
            Cliente.numero_cliente.ilike(termino),
            Cliente.primer_nombre.ilike(termino),
            Cliente.primer_apellido.ilike(termino),
        ))

    query = query.order_by(Multa.fecha_aplicacion.desc(), Multa.id.desc())
    multas, paginacion = paginar(query, page, limit)
    return {"data": [serializar(m) for m in multas], "pagination": paginacion}


def _validar_periodo(datos: dict):
    desde, hasta = datos.get("periodo_desde"), datos.get("periodo_hasta")
    if desde and hasta and hasta < desde:
        raise ErrorValidacion("El periodo hasta no puede ser anterior al periodo desde")


def crear(db: Session, datos: dict, admin_email: str) -> dict:
    if not db.query(Cliente.id).filter(Cliente.id == datos.get("cliente_id")).first():
        raise ErrorNoEncontrado("Cliente no encontrado")
    if a_decimal(datos.get("monto")) <= 0:
        raise ErrorValidacion("El monto debe ser mayor a cero")
    _validar_periodo(datos)

    multa = Multa(
        cliente_id=datos["cliente_id"],
        aplicada_por=admin_email,
        **{k: v for k, v in datos.items() if k in CAMPOS and v is not None},
    )
    if multa.fecha_aplicacion is None:
        multa.fecha_aplicacion = hoy_chile()
    if multa.afecto_iva is None:
        multa.afecto_iva = True
    db.add(multa)
    db.flush()

    auditoria.registrar(
        db, "CREAR_MULTA", "multas", multa.id, usuario_email=admin_email,
        datos_nuevos={"cliente_id": multa.cliente_id, "monto": str(multa.monto), "motivo": multa.motivo},
    )
    db.commit()
    db.refresh(multa)

    logger.info(f"Multa {multa.id} de {formatear_pesos(multa.monto)} aplicada a cliente {multa.cliente_id}")
    return serializar(multa)


def actualizar(db: Session, multa_id: int, datos: dict, admin_email: str) -> dict:
    multa = obtener_multa(db, multa_id)
    if multa.cancelada_por:
        raise ErrorValidacion("No se puede editar una multa cancelada")
    if not datos:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")
    if "monto" in datos and a_decimal(datos["monto"]) <= 0:
        raise ErrorValidacion("El monto debe ser mayor a cero")
    _validar_periodo({
        "periodo_desde": datos.get("periodo_desde", multa.periodo_desde),
        "periodo_hasta": datos.get("periodo_hasta", multa.periodo_hasta),
    })

    anteriores = {}
    for campo, valor in datos.items():
        if campo not in CAMPOS:
            continue
        anteriores[campo] = str(getattr(multa, campo))
        setattr(multa, campo, valor)

    auditoria.registrar(
        db, "EDITAR_MULTA", "multas", multa_id, usuario_email=admin_email,
        datos_anteriores=anteriores, datos_nuevos={k: str(v) for k, v in datos.items()},
    )
    db.commit()
    db.refresh(multa)
    return serializar(multa)


def cancelar(db: Session, multa_id: int, motivo: str, admin_email: str) -> dict:
    multa = obtener_multa(db, multa_id)
    if multa.cancelada_por:
        raise ErrorValidacion("La multa ya está cancelada")

    multa.cancelada_por = admin_email
    multa.fecha_cancelacion = ahora_utc()
    multa.motivo_cancelacion = motivo

    auditoria.registrar(
        db, "CANCELAR_MULTA", "multas", multa_id, usuario_email=admin_email,
        datos_nuevos={"motivo_cancelacion": motivo},
    )
    db.commit()
    db.refresh(multa)

    logger.info(f"Multa {multa_id} cancelada por {admin_email}")
    return serializar(multa)
