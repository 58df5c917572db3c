"""
Servicio: Administración de Clientes
app/services/admin_clientes_service.py

Búsqueda, perfil administrativo, desbloqueo de cuentas y edición de
datos del cliente.
"""

import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import ESTADOS_IMPAGOS, Boleta, Cliente, Direccion, EstadoCuentaUsuario, Medidor, Ruta
from app.models_gestion import Multa, Repactacion
from app.services import auditoria, cliente_service, saldo_service
from app.utils.errores import ErrorConflicto, ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import ahora_utc, iso
from app.utils.moneda import a_float, formatear_pesos
from app.utils.paginacion import paginar_por_cursor
from app.utils.rut import formatear_rut, limpiar_rut, validar_rut

logger = logging.getLogger(__name__)


def obtener_cliente(db: Session, cliente_id: int) -> Cliente:
    cliente = db.query(Cliente).filter(Cliente.id == cliente_id).first()
    if not cliente:
        raise ErrorNoEncontrado("Cliente no encontrado")
    return cliente


def _esta_bloqueado(cliente: Cliente) -> bool:
    if cliente.bloqueado_hasta and cliente.bloqueado_hasta > ahora_utc():
        return True
    return cliente.estado_cuenta == EstadoCuentaUsuario.BLOQUEADA.value and cliente.bloqueado_hasta is None


# ============================================================
# BÚSQUEDA Y PERFIL
# ============================================================

def buscar_clientes(db: Session, q: Optional[str] = None, cursor=None, limit: Optional[int] = None) -> dict:
    query = db.query(Cliente)
    if q and q.strip():
        termino = q.strip()
        filtros = [
            Cliente.numero_cliente.ilike(f"%{termino}%"),
            Cliente.primer_nombre.ilike(f"%{termino}%"),
            Cliente.primer_apellido.ilike(f"%{termino}%"),
            Cliente.segundo_apellido.ilike(f"%{termino}%"),
        ]
        rut = limpiar_rut(termino)
        if rut:
            filtros.append(Cliente.rut.like(f"%{rut}%"))
        query = query.filter(or_(*filtros))

    clientes, paginacion = paginar_por_cursor(query, Cliente.id, cursor, limit)

    datos = []
    for c in clientes:
        saldo = saldo_service.obtener_saldo_actual(db, c.id)
        direccion = c.direccion_principal
        datos.append({
            "id": str(c.id),
            "rut": formatear_rut(c.rut) if c.rut else None,
            "numeroCliente": c.numero_cliente,
            "nombre": c.nombre_completo,
            "direccion": direccion.texto if direccion else None,
            "telefono": c.telefono,
            "correo": c.correo,
            "saldo": a_float(saldo),
            "estadoCuenta": saldo_service.estado_cuenta(saldo),
            "estaBloqueado": _esta_bloqueado(c),
        })

    return {"data": datos, "pagination": paginacion}


def perfil_admin(db: Session, cliente_id: int) -> dict:
    cliente = obtener_cliente(db, cliente_id)
    resumen = saldo_service.resumen_saldo(db, cliente_id)
    boletas_pendientes = db.query(Boleta).filter(
        Boleta.cliente_id == cliente_id,
        Boleta.estado.in_(ESTADOS_IMPAGOS),
    ).count()

    perfil = cliente_service.perfil_cliente(cliente)
    perfil.update({
        "esClienteActual": cliente.es_cliente_actual,
        "estadoCuentaUsuario": cliente.estado_cuenta,
        "estaBloqueado": _esta_bloqueado(cliente),
        "bloqueadoHasta": iso(cliente.bloqueado_hasta),
        "intentosFallidos": cliente.intentos_fallidos or 0,
        "tieneContrasena": bool(cliente.hash_contrasena),
        "ultimoInicioSesion": iso(cliente.ultimo_inicio_sesion),
        "saldo": a_float(resumen["saldo"]),
        "saldoFormateado": formatear_pesos(resumen["saldo"]),
        "estadoCuenta": resumen["estado_cuenta"],
        "fechaVencimiento": iso(resumen["fecha_vencimiento"]),
        "boletasPendientes": boletas_pendientes,
        "direcciones": [_serializar_direccion(d) for d in cliente.direcciones],
    })
    return perfil


def _serializar_direccion(d: Direccion) -> dict:
    return {
        "id": str(d.id),
        "direccionCalle": d.direccion_calle,
        "direccionNumero": d.direccion_numero,
        "poblacion": d.poblacion,
        "comuna": d.comuna,
        "rutaId": str(d.ruta_id) if d.ruta_id else None,
        "ordenRuta": d.orden_ruta,
        "texto": d.texto,
    }


def pagos_cliente(db: Session, cliente_id: int, cursor=None, limit: Optional[int] = None) -> dict:
    obtener_cliente(db, cliente_id)
    return cliente_service.pagos_cliente(db, cliente_id, cursor, limit)


def boletas_cliente(db: Session, cliente_id: int, cursor=None, limit: Optional[int] = None) -> dict:
    obtener_cliente(db, cliente_id)
    return cliente_service.boletas_cliente(db, cliente_id, cursor, limit)


def medidores_cliente(db: Session, cliente_id: int) -> list:
    obtener_cliente(db, cliente_id)
    medidores = (
        db.query(Medidor)
        .join(Direccion, Medidor.direccion_id == Direccion.id)
        .filter(Direccion.cliente_id == cliente_id)
        .order_by(Medidor.id)
        .all()
    )
    return [
        {
            "id": str(m.id),
            "numeroSerie": m.numero_serie,
            "marca": m.marca,
            "estado": "retirado" if m.fecha_retiro else m.estado,
            "fechaInstalacion": iso(m.fecha_instalacion),
            "fechaRetiro": iso(m.fecha_retiro),
            "direccion": m.direccion.texto if m.direccion else None,
        }
        for m in medidores
    ]


def multas_cliente(db: Session, cliente_id: int) -> list:
    obtener_cliente(db, cliente_id)
    multas = db.query(Multa).filter(Multa.cliente_id == cliente_id).order_by(Multa.fecha_aplicacion.desc()).all()
    return [
        {
            "id": str(m.id),
            "monto": a_float(m.monto),
            "motivo": m.motivo,
            "fechaAplicacion": iso(m.fecha_aplicacion),
            "estado": m.estado,
        }
        for m in multas
    ]


def repactaciones_cliente(db: Session, cliente_id: int) -> list:
    obtener_cliente(db, cliente_id)
    repactaciones = (
        db.query(Repactacion)
        .filter(Repactacion.cliente_id == cliente_id)
        .order_by(Repactacion.fecha_inicio.desc())
        .all()
    )
    return [
        {
            "id": str(r.id),
            "numeroConvenio": r.numero_convenio,
            "montoDeudaInicial": a_float(r.monto_deuda_inicial),
            "totalCuotas": r.total_cuotas,
            "montoCuotaBase": a_float(r.monto_cuota_base),
            "fechaInicio": iso(r.fecha_inicio),
            "estado": r.estado,
        }
        for r in repactaciones
    ]


# ============================================================
# CUENTA
# ============================================================

def desbloquear_cuenta(db: Session, cliente_id: int, admin_email: str, ip: Optional[str] = None) -> dict:
    cliente = obtener_cliente(db, cliente_id)
    anteriores = {
        "intentos_fallidos": cliente.intentos_fallidos,
        "bloqueado_hasta": iso(cliente.bloqueado_hasta),
        "estado_cuenta": cliente.estado_cuenta,
    }

    cliente.intentos_fallidos = 0
    cliente.bloqueado_hasta = None
    if cliente.estado_cuenta == EstadoCuentaUsuario.BLOQUEADA.value:
        cliente.estado_cuenta = EstadoCuentaUsuario.ACTIVA.value

    auditoria.registrar(
        db, "DESBLOQUEAR_CUENTA", "clientes", cliente_id,
        usuario_email=admin_email, ip_address=ip,
        datos_anteriores=anteriores,
        datos_nuevos={"intentos_fallidos": 0, "bloqueado_hasta": None, "estado_cuenta": cliente.estado_cuenta},
    )
    db.commit()

    logger.info(f"Cuenta del cliente {cliente_id} desbloqueada por {admin_email}")
    return {"success": True, "message": "Cuenta desbloqueada exitosamente"}


# ============================================================
# EDICIÓN
# ============================================================

def cliente_para_editar(db: Session, cliente_id: int) -> dict:
    c = obtener_cliente(db, cliente_id)
    return {
        "id": str(c.id),
        "rut": formatear_rut(c.rut) if c.rut else None,
        "numeroCliente": c.numero_cliente,
        "primerNombre": c.primer_nombre,
        "segundoNombre": c.segundo_nombre,
        "primerApellido": c.primer_apellido,
        "segundoApellido": c.segundo_apellido,
        "correo": c.correo,
        "telefono": c.telefono,
        "esClienteActual": c.es_cliente_actual,
        "direccion": _serializar_direccion(c.direccion_principal) if c.direccion_principal else None,
    }


def actualizar_contacto(db: Session, cliente_id: int, datos: dict, admin_email: str) -> dict:
    """datos: correo y/o telefono (solo las claves presentes)."""
    cliente = obtener_cliente(db, cliente_id)
    if not datos:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")

    anteriores = {"correo": cliente.correo, "telefono": cliente.telefono}
    if "correo" in datos:
        cliente.correo = (datos["correo"] or "").strip().lower() or None
    if "telefono" in datos:
        cliente.telefono = (datos["telefono"] or "").strip() or None

    auditoria.registrar(
        db, "EDITAR_CONTACTO_CLIENTE", "clientes", cliente_id, usuario_email=admin_email,
        datos_anteriores=anteriores,
        datos_nuevos={"correo": cliente.correo, "telefono": cliente.telefono},
    )
    db.commit()
    return cliente_para_editar(db, cliente_id)


CAMPOS_EDITABLES = (
    "numero_cliente", "primer_nombre", "segundo_nombre", "primer_apellido",
    "segundo_apellido", "correo", "telefono", "es_cliente_actual",
)


def actualizar_completo(db: Session, cliente_id: int, datos: dict, admin_email: str) -> dict:
    """Edición total (incluye RUT). datos usa los nombres de columna."""
    cliente = obtener_cliente(db, cliente_id)
    if not datos:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")

    anteriores = {}
    nuevos = {}

    if "rut" in datos:
        rut = limpiar_rut(datos["rut"] or "")
        if not validar_rut(rut):
            raise ErrorValidacion("RUT inválido")
        duplicado = db.query(Cliente.id).filter(Cliente.rut == rut, Cliente.id != cliente_id).first()
        if duplicado:
            raise ErrorConflicto("Ya existe otro cliente con ese RUT")
        anteriores["rut"], nuevos["rut"] = cliente.rut, rut
        cliente.rut = rut

    if datos.get("numero_cliente"):
        duplicado = db.query(Cliente.id).filter(
            Cliente.numero_cliente == datos["numero_cliente"],
            Cliente.id != cliente_id,
        ).first()
        if duplicado:
            raise ErrorConflicto("Ya existe otro cliente con ese número de cliente")

    for campo in CAMPOS_EDITABLES:
        if campo not in datos:
            continue
        valor = datos[campo]
        if campo == "correo" and valor:
            valor = valor.strip().lower()
        if campo in ("primer_nombre", "primer_apellido", "numero_cliente") and not valor:
            raise ErrorValidacion(f"El campo {campo} no puede quedar vacío")
        anteriores[campo] = getattr(cliente, campo)
        nuevos[campo] = valor
        setattr(cliente, campo, valor)

    auditoria.registrar(
        db, "EDITAR_CLIENTE", "clientes", cliente_id, usuario_email=admin_email,
        datos_anteriores=anteriores, datos_nuevos=nuevos,
    )
    db.commit()

    logger.info(f"Cliente {cliente_id} editado por {admin_email}: {', '.join(nuevos)}")
    return cliente_para_editar(db, cliente_id)


def actualizar_direccion(db: Session, cliente_id: int, datos: dict, admin_email: str) -> dict:
    cliente = obtener_cliente(db, cliente_id)
    if not datos:
        raise ErrorValidacion("Debe proporcionar al menos un campo para actualizar")

    direccion = cliente.direccion_principal
    if not direccion:
        if not datos.get("direccion_calle"):
            raise ErrorValidacion("La calle es obligatoria")
        direccion = Direccion(cliente_id=cliente_id, direccion_calle=datos["direccion_calle"])
        db.add(direccion)

    if datos.get("ruta_id") is not None:
        if not db.query(Ruta.id).filter(Ruta.id == datos["ruta_id"]).first():
            raise ErrorNoEncontrado("Ruta no encontrada")

    anteriores = _serializar_direccion(direccion) if direccion.id else None
    for campo in ("direccion_calle", "direccion_numero", "poblacion", "comuna", "ruta_id"):
        if campo in datos:
            setattr(direccion, campo, datos[campo])

    db.flush()
    auditoria.registrar(
        db, "EDITAR_DIRECCION_CLIENTE", "direcciones", direccion.id, usuario_email=admin_email,
        datos_anteriores=anteriores, datos_nuevos={k: datos[k] for k in datos},
    )
    db.commit()
    db.refresh(direccion)
    return _serializar_direccion(direccion)
