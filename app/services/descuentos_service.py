"""
Servicio: Descuentos
app/services/descuentos_service.py

Plantillas de descuento y su asignación a clientes. Un descuento asignado
queda pendiente hasta que la facturación lo imputa a una boleta; solo los
pendientes se pueden eliminar.

Asignación masiva: a todos los clientes actuales, a los de una ruta o a
una lista manual. Los clientes que ya tienen pendiente la misma plantilla
se omiten.
"""

import logging
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import Cliente, Direccion
from app.models_gestion import Descuento, DescuentoAplicado, TipoDescuento
from app.services import auditoria
from app.utils.errores import ErrorConflicto, ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import hoy_chile, iso
from app.utils.moneda import a_decimal, a_float
from app.utils.paginacion import paginar

logger = logging.getLogger(__name__)

CAMPOS = ("nombre", "descripcion", "tipo_descuento", "valor", "fecha_inicio", "fecha_fin",
          "activo", "aplica_cargo_fijo", "aplica_consumo", "consumo_minimo", "consumo_maximo")
ANULABLES = ("descripcion", "fecha_fin", "consumo_minimo", "consumo_maximo")

ORDENAMIENTOS = {
    "nombre": Descuento.nombre,
    "tipo": Descuento.tipo_descuento,
    "valor": Descuento.valor,
    "fechaCreacion": Descuento.fecha_creacion,
}

ORDENAMIENTOS_APLICADOS = {
    "cliente": Cliente.primer_apellido,
    "monto": DescuentoAplicado.monto_aplicado,
    "fecha": DescuentoAplicado.fecha_aplicacion,
    "estado": DescuentoAplicado.boleta_id,
}


def es_vigente(d: Descuento, hoy: Optional[date] = None) -> bool:
    hoy = hoy or hoy_chile()
    return bool(d.activo) and (d.fecha_fin is None or d.fecha_fin > hoy)


def serializar(d: Descuento) -> dict:
    return {
        "id": str(d.id),
        "nombre": d.nombre,
        "descripcion": d.descripcion,
        "tipoDescuento": d.tipo_descuento,
        "valor": a_float(d.valor),
        "fechaInicio": iso(d.fecha_inicio),
        "fechaFin": iso(d.fecha_fin),
        "activo": d.activo,
        "aplicaCargoFijo": d.aplica_cargo_fijo,
        "aplicaConsumo": d.aplica_consumo,
        "consumoMinimo": a_float(d.consumo_minimo) if d.consumo_minimo is not None else None,
        "consumoMaximo": a_float(d.consumo_maximo) if d.consumo_maximo is not None else None,
        "creadoPor": d.creado_por,
        "fechaCreacion": iso(d.fecha_creacion),
        "esVigente": es_vigente(d),
    }


def serializar_aplicado(da: DescuentoAplicado) -> dict:
    cliente, descuento, boleta = da.cliente, da.descuento, da.boleta
    return {
        "id": str(da.id),
        "clienteId": str(da.cliente_id),
        "clienteNombre": cliente.nombre_corto if cliente else None,
        "clienteNumero": cliente.numero_cliente if cliente else None,
        "boletaId": str(da.boleta_id) if da.boleta_id else None,
        "boletaPeriodo": (
            f"{boleta.periodo_desde.month}/{boleta.periodo_desde.year}"
            if boleta and boleta.periodo_desde else None
        ),
        "descuentoId": str(da.descuento_id) if da.descuento_id else None,
        "descuentoNombre": descuento.nombre if descuento else None,
        "tipoDescuento": descuento.tipo_descuento if descuento else (da.tipo_puntual or TipoDescuento.MONTO_FIJO.value),
        "valorDescuento": a_float(descuento.valor) if descuento else None,
        "montoAplicado": a_float(da.monto_aplicado),
        "motivo": da.motivo_puntual,
        "fechaAplicacion": iso(da.fecha_aplicacion),
        "estado": da.estado,
        "esPuntual": da.descuento_id is None,
    }


def obtener_descuento(db: Session, descuento_id: int) -> Descuento:
    descuento = db.query(Descuento).filter(Descuento.id == descuento_id).first()
    if not descuento:
        raise ErrorNoEncontrado("Descuento no encontrado")
    return descuento


def obtener_aplicado(db: Session, aplicado_id: int) -> DescuentoAplicado:
    aplicado = db.query(DescuentoAplicado).filter(DescuentoAplicado.id == aplicado_id).first()
    if not aplicado:
        raise ErrorNoEncontrado("Descuento aplicado no encontrado")
    return aplicado


# ============================================================
# PLANTILLAS
# ============================================================

def listar(
    db: Session,
    page: int = 1,
    limit: int = 50,
    sort_by: str = "fechaCreacion",
    sort_direction: str = "desc",
) -> dict:
    columna = ORDENAMIENTOS.get(sort_by, Descuento.fecha_creacion)
    query = db.query(Descuento).order_by(
        columna.desc() if sort_direction == "desc" else columna.asc(), Descuento.id.desc()
    )
    descuentos, paginacion = paginar(query, page, limit)
    return {"descuentos": [serializar(d) for d in descuentos], "pagination": paginacion}


def _validar(datos: dict, actual: Optional[Descuento] = None):
    tipo = datos.get("tipo_descuento") or (actual.tipo_descuento if actual else TipoDescuento.PORCENTAJE.value)
    valor = datos.get("valor", actual.valor if actual else None)
    if valor is not None:
        valor = a_decimal(valor)
        if valor <= 0:
            raise ErrorValidacion("El valor debe ser mayor a 0")
        if tipo == TipoDescuento.PORCENTAJE.value and valor > 100:
            raise ErrorValidacion("Un descuento porcentual no puede superar el 100%")

    inicio = datos.get("fecha_inicio", actual.fecha_inicio if actual else None)
    fin = datos.get("fecha_fin", actual.fecha_fin if actual else None)
    if inicio and fin and fin < inicio:
        raise ErrorValidacion("La fecha de fin no puede ser anterior a la de inicio")

    minimo = datos.get("consumo_minimo", actual.consumo_minimo if actual else None)
    maximo = datos.get("consumo_maximo", actual.consumo_maximo if actual else None)
    if minimo is not None and maximo is not None and a_decimal(maximo) < a_decimal(minimo):
        raise ErrorValidacion("El consumo máximo no puede ser menor que el mínimo")


def crear(db: Session, datos: dict, admin_email: str) -> dict:
    _validar(datos)

    descuento = Descuento(
        creado_por=admin_email,
        **{k: v for k, v in datos.items() if k in CAMPOS and v is not None},
    )
    if descuento.fecha_inicio is None:
        descuento.fecha_inicio = hoy_chile()
    db.add(descuento)
    db.flush()

    auditoria.registrar(
        db, "CREAR_DESCUENTO", "descuentos", descuento.id, usuario_email=admin_email,
        datos_nuevos={k: str(v) for k, v in datos.items() if v is not None},
    )
    db.commit()
    db.refresh(descuento)
    return serializar(descuento)


def actualizar(db: Session, descuento_id: int, datos: dict, admin_email: str) -> dict:
    descuento = obtener_descuento(db, descuento_id)
    if not datos:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")
    _validar(datos, descuento)

    anteriores = serializar(descuento)
    for campo, valor in datos.items():
        if campo in CAMPOS and (valor is not None or campo in ANULABLES):
            setattr(descuento, campo, valor)
    db.flush()

    auditoria.registrar(
        db, "EDITAR_DESCUENTO", "descuentos", descuento_id, usuario_email=admin_email,
        datos_anteriores=anteriores, datos_nuevos=serializar(descuento),
    )
    db.commit()
    db.refresh(descuento)
    return serializar(descuento)


def eliminar(db: Session, descuento_id: int, admin_email: str) -> dict:
    """Las aplicaciones ya imputadas a boletas se conservan sin plantilla."""
    descuento = obtener_descuento(db, descuento_id)
    pendientes = db.query(DescuentoAplicado).filter(
        DescuentoAplicado.descuento_id == descuento_id,
        DescuentoAplicado.boleta_id == None,
    ).count()
    if pendientes:
        raise ErrorConflicto(f"No se puede eliminar: el descuento tiene {pendientes} aplicaciones pendientes")

    db.query(DescuentoAplicado).filter(DescuentoAplicado.descuento_id == descuento_id).update(
        {"descuento_id": None}, synchronize_session=False
    )
    auditoria.registrar(
        db, "ELIMINAR_DESCUENTO", "descuentos", descuento_id, usuario_email=admin_email,
        datos_anteriores=serializar(descuento),
    )
    db.delete(descuento)
    db.commit()
    return {"success": True, "message": "Descuento eliminado"}


# ============================================================
# DESCUENTOS ASIGNADOS A CLIENTES
# ============================================================

def listar_aplicados(
    db: Session,
    page: int = 1,
    limit: int = 50,
    cliente_id: Optional[int] = None,
    ruta_id: Optional[int] = None,
    descuento_id: Optional[int] = None,
    solo_plantilla: bool = False,
    solo_puntuales: bool = False,
    solo_pendientes: bool = False,
    fecha_desde: Optional[date] = None,
    fecha_hasta: Optional[date] = None,
    search: Optional[str] = None,
    sort_by: str = "fecha",
    sort_direction: str = "desc",
) -> dict:
    query = db.query(DescuentoAplicado).join(Cliente, DescuentoAplicado.cliente_id == Cliente.id)

    if cliente_id:
        query = query.filter(DescuentoAplicado.cliente_id == cliente_id)
    if descuento_id:
        query = query.filter(DescuentoAplicado.descuento_id == descuento_id)
    if solo_plantilla:
        query = query.filter(DescuentoAplicado.descuento_id != None)
    if solo_puntuales:
        query = query.filter(DescuentoAplicado.descuento_id == None)
    if solo_pendientes:
        query = query.filter(DescuentoAplicado.boleta_id == None)
    if fecha_desde:
        query = query.filter(DescuentoAplicado.fecha_aplicacion >= datetime.combine(fecha_desde, time.min))
    if fecha_hasta:
        query = query.filter(DescuentoAplicado.fecha_aplicacion <= datetime.combine(fecha_hasta, time.max))
    if ruta_id:
        query = query.filter(Cliente.direcciones.any(Direccion.ruta_id == ruta_id))
    if search:
        termino = f"%{search.strip()}%"
        query = query.filter(or_(
            Cliente.primer_nombre.ilike(termino),
            Cliente.primer_apellido.ilike(termino),
            Cliente.numero_cliente.ilike(termino),
        ))

    columna = ORDENAMIENTOS_APLICADOS.get(sort_by, DescuentoAplicado.fecha_aplicacion)
    query = query.order_by(
        columna.desc() if sort_direction == "desc" else columna.asc(), DescuentoAplicado.id.desc()
    )
    aplicados, paginacion = paginar(query, page, limit)
    return {"descuentosAplicados": [serializar_aplicado(a) for a in aplicados], "pagination": paginacion}


def detalle_aplicado(db: Session, aplicado_id: int) -> dict:
    aplicado = obtener_aplicado(db, aplicado_id)
    return {
        **serializar_aplicado(aplicado),
        "clienteRut": aplicado.cliente.rut if aplicado.cliente else None,
        "descuentoDetalle": serializar(aplicado.descuento) if aplicado.descuento else None,
        "boletaMontoTotal": a_float(aplicado.boleta.monto_total) if aplicado.boleta else None,
    }


def crear_individual(db: Session, datos: dict, admin_email: str) -> dict:
    """Descuento puntual para la próxima boleta de un cliente."""
    cliente = db.query(Cliente).filter(Cliente.id == datos["cliente_id"]).first()
    if not cliente:
        raise ErrorNoEncontrado("Cliente no encontrado")
    _validar({"tipo_descuento": datos["tipo"], "valor": datos["valor"]})

    aplicado = DescuentoAplicado(
        cliente_id=cliente.id,
        monto_aplicado=a_decimal(datos["valor"]),
        tipo_puntual=datos["tipo"],
        motivo_puntual=datos["motivo"],
        aplicado_por=admin_email,
    )
    db.add(aplicado)
    db.flush()

    auditoria.registrar(
        db, "CREAR_DESCUENTO_PUNTUAL", "descuentos_aplicados", aplicado.id, usuario_email=admin_email,
        datos_nuevos={
            "clienteId": str(cliente.id),
            "tipo": datos["tipo"],
            "valor": str(datos["valor"]),
            "motivo": datos["motivo"],
        },
    )
    db.commit()
    db.refresh(aplicado)

    logger.info(f"Descuento puntual {aplicado.id} para cliente {cliente.numero_cliente} por {admin_email}")
    return serializar_aplicado(aplicado)


def _clientes_destino(db: Session, filtro: str, ruta_id: Optional[int], cliente_ids: Optional[list]) -> list[int]:
    if filtro == "manual":
        if not cliente_ids:
            raise ErrorValidacion("Debe seleccionar al menos un cliente")
        return list(dict.fromkeys(cliente_ids))

    query = db.query(Cliente.id).filter(Cliente.es_cliente_actual == True)
    if filtro == "ruta":
        if not ruta_id:
            raise ErrorValidacion("Debe especificar una ruta")
        query = query.filter(Cliente.direcciones.any(Direccion.ruta_id == ruta_id))
    return [c_id for (c_id,) in query.order_by(Cliente.id).all()]


def contar_destinatarios(
    db: Session, filtro: str, ruta_id: Optional[int] = None, cliente_ids: Optional[list] = None
) -> int:
    if filtro == "manual":
        return len(set(cliente_ids or []))
    if filtro == "ruta" and not ruta_id:
        return 0
    return len(_clientes_destino(db, filtro, ruta_id, cliente_ids))


def crear_masivo(db: Session, datos: dict, admin_email: str) -> dict:
    """Usa una plantilla existente o crea una nueva con los datos recibidos."""
    if datos.get("descuento_id"):
        descuento = obtener_descuento(db, datos["descuento_id"])
    elif datos.get("plantilla"):
        plantilla = datos["plantilla"]
        _validar({"tipo_descuento": plantilla["tipo"], "valor": plantilla["valor"]})
        descuento = Descuento(
            nombre=plantilla["nombre"],
            descripcion=plantilla.get("descripcion"),
            tipo_descuento=plantilla["tipo"],
            valor=a_decimal(plantilla["valor"]),
            fecha_inicio=hoy_chile(),
            activo=True,
            creado_por=admin_email,
        )
        db.add(descuento)
        db.flush()
        auditoria.registrar(
            db, "CREAR_DESCUENTO", "descuentos", descuento.id, usuario_email=admin_email,
            datos_nuevos={k: str(v) for k, v in plantilla.items() if v is not None},
        )
    else:
        raise ErrorValidacion("Debe proporcionar un descuento existente o los datos de la plantilla")

    destino = _clientes_destino(db, datos["filtro"], datos.get("ruta_id"), datos.get("cliente_ids"))
    if not destino:
        raise ErrorValidacion("No se encontraron clientes para aplicar el descuento")

    existentes = {
        c_id for (c_id,) in db.query(DescuentoAplicado.cliente_id).filter(
            DescuentoAplicado.descuento_id == descuento.id,
            DescuentoAplicado.boleta_id == None,
            DescuentoAplicado.cliente_id.in_(destino),
        )
    }
    nuevos = [c_id for c_id in destino if c_id not in existentes]
    if not nuevos:
        raise ErrorConflicto("Todos los clientes seleccionados ya tienen este descuento pendiente")

    encontrados = {c_id for (c_id,) in db.query(Cliente.id).filter(Cliente.id.in_(nuevos))}
    faltantes = [c_id for c_id in nuevos if c_id not in encontrados]
    if faltantes:
        raise ErrorNoEncontrado(f"Clientes no encontrados: {', '.join(str(c) for c in faltantes)}")

    for cliente_id in nuevos:
        db.add(DescuentoAplicado(
            cliente_id=cliente_id,
            descuento_id=descuento.id,
            monto_aplicado=descuento.valor,
            aplicado_por=admin_email,
        ))

    auditoria.registrar(
        db, "CREAR_DESCUENTO_MASIVO", "descuentos_aplicados", descuento.id, usuario_email=admin_email,
        datos_nuevos={
            "descuentoId": str(descuento.id),
            "descuentoNombre": descuento.nombre,
            "filtro": datos["filtro"],
            "rutaId": datos.get("ruta_id"),
            "totalClientes": len(nuevos),
            "clientesOmitidos": len(existentes),
        },
    )
    db.commit()

    logger.info(
        f"Descuento '{descuento.nombre}' asignado a {len(nuevos)} clientes "
        f"({len(existentes)} omitidos) por {admin_email}"
    )
    return {
        "success": True,
        "descuentoId": str(descuento.id),
        "descuentoNombre": descuento.nombre,
        "descuentoTipo": descuento.tipo_descuento,
        "descuentoValor": a_float(descuento.valor),
        "clientesAplicados": len(nuevos),
        "clientesOmitidos": len(existentes),
        "mensaje": f'Descuento "{descuento.nombre}" aplicado a {len(nuevos)} cliente(s)',
    }


def eliminar_aplicado(db: Session, aplicado_id: int, admin_email: str) -> dict:
    aplicado = obtener_aplicado(db, aplicado_id)
    if aplicado.boleta_id:
        raise ErrorValidacion("No se puede eliminar un descuento que ya fue aplicado a una boleta")

    auditoria.registrar(
        db, "ELIMINAR_DESCUENTO_APLICADO", "descuentos_aplicados", aplicado_id, usuario_email=admin_email,
        datos_anteriores={
            "clienteNumero": aplicado.cliente.numero_cliente if aplicado.cliente else None,
            "descuentoNombre": aplicado.descuento.nombre if aplicado.descuento else "Puntual",
            "montoAplicado": str(aplicado.monto_aplicado),
        },
    )
    db.delete(aplicado)
    db.commit()
    return {"success": True, "message": "Descuento pendiente eliminado"}
