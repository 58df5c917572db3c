"""
Servicio: Autenticación
app/services/auth_service.py

- Login de clientes por RUT y de personal por email
- Bloqueo temporal tras intentos fallidos
- Refresh tokens rotativos (solo se guarda su hash SHA-256)
- Enlaces de configuración de contraseña (setup)
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.config import (
    ACCESS_TOKEN_HORAS_ADMIN, ACCESS_TOKEN_HORAS_CLIENTE, FRONTEND_URL,
    MAX_INTENTOS_FALLIDOS, MINUTOS_BLOQUEO, REFRESH_TOKEN_DIAS, SETUP_TOKEN_HORAS
)
from app.models import Cliente, EstadoCuentaUsuario, Perfil, SesionRefresh, TokenConfiguracion
from app.services import auditoria
from app.utils.errores import ErrorAPI, ErrorNoEncontrado, ErrorValidacion
from app.utils.fechas import ahora_utc
from app.utils.rut import formatear_rut, limpiar_rut, validar_rut
from app.utils.security import (
    create_access_token, generar_refresh_token, generar_token_setup,
    get_password_hash, hash_refresh_token, validar_contrasena, verify_password
)

logger = logging.getLogger(__name__)


def _credenciales_invalidas() -> ErrorAPI:
    return ErrorAPI("RUT o contraseña incorrectos", codigo="INVALID_CREDENTIALS", status_code=401)


def _crear_sesion_refresh(db: Session, usuario_tipo: str, usuario_id: int) -> str:
    token = generar_refresh_token()
    db.add(SesionRefresh(
        token_hash=hash_refresh_token(token),
        usuario_tipo=usuario_tipo,
        usuario_id=usuario_id,
        expira_en=ahora_utc() + timedelta(days=REFRESH_TOKEN_DIAS),
    ))
    return token


def _access_token_cliente(cliente: Cliente) -> str:
    return create_access_token(
        {"sub": str(cliente.id), "tipo": "cliente", "rut": cliente.rut},
        timedelta(hours=ACCESS_TOKEN_HORAS_CLIENTE),
    )


def _access_token_admin(perfil: Perfil) -> str:
    return create_access_token(
        {"sub": str(perfil.id), "tipo": "admin", "email": perfil.email, "rol": perfil.rol},
        timedelta(hours=ACCESS_TOKEN_HORAS_ADMIN),
    )


def _validar_nueva_contrasena(password: str):
    ok, mensaje = validar_contrasena(password)
    if not ok:
        raise ErrorValidacion(mensaje)


# ============================================================
# LOGIN CLIENTE
# ============================================================

def login_cliente(db: Session, rut: str, password: str, ip: Optional[str] = None) -> dict:
    rut_limpio = limpiar_rut(rut)
    if not validar_rut(rut_limpio):
        raise _credenciales_invalidas()

    cliente = db.query(Cliente).filter(Cliente.rut == rut_limpio).first()
    if not cliente:
        raise _credenciales_invalidas()

    if not cliente.hash_contrasena:
        raise ErrorAPI(
            "Su cuenta aún no tiene contraseña. Solicite un enlace de configuración",
            codigo="ACCOUNT_NOT_SETUP", status_code=403,
        )

    if cliente.estado_cuenta == EstadoCuentaUsuario.SUSPENDIDA.value:
        raise ErrorAPI("Cuenta suspendida. Contacte a la oficina", codigo="ACCOUNT_SUSPENDED", status_code=403)

    ahora = ahora_utc()
    if cliente.bloqueado_hasta and cliente.bloqueado_hasta > ahora:
        minutos = int((cliente.bloqueado_hasta - ahora).total_seconds() // 60) + 1
        raise ErrorAPI(
            f"Cuenta bloqueada. Intente nuevamente en {minutos} minutos",
            codigo="ACCOUNT_LOCKED", status_code=423,
        )

    if cliente.estado_cuenta == EstadoCuentaUsuario.BLOQUEADA.value:
        if cliente.bloqueado_hasta is None:
            raise ErrorAPI("Cuenta bloqueada. Contacte a la oficina", codigo="ACCOUNT_LOCKED", status_code=423)
        # El bloqueo temporal ya venció
        cliente.estado_cuenta = EstadoCuentaUsuario.ACTIVA.value
        cliente.bloqueado_hasta = None
        cliente.intentos_fallidos = 0

    if not verify_password(password, cliente.hash_contrasena):
        cliente.intentos_fallidos = (cliente.intentos_fallidos or 0) + 1
        if cliente.intentos_fallidos >= MAX_INTENTOS_FALLIDOS:
            cliente.bloqueado_hasta = ahora + timedelta(minutes=MINUTOS_BLOQUEO)
            cliente.estado_cuenta = EstadoCuentaUsuario.BLOQUEADA.value
            db.commit()
            logger.warning(f"Cliente {cliente.id} bloqueado por {MINUTOS_BLOQUEO} minutos tras {cliente.intentos_fallidos} intentos")
            raise ErrorAPI(
                f"Demasiados intentos fallidos. Cuenta bloqueada por {MINUTOS_BLOQUEO} minutos",
                codigo="ACCOUNT_LOCKED", status_code=423,
            )
        db.commit()
        raise _credenciales_invalidas()

    cliente.intentos_fallidos = 0
    cliente.bloqueado_hasta = None
    cliente.ultimo_inicio_sesion = ahora

    refresh = _crear_sesion_refresh(db, "cliente", cliente.id)
    auditoria.registrar(db, "LOGIN_CLIENTE", "clientes", cliente.id, usuario_tipo="cliente", ip_address=ip)
    db.commit()

    logger.info(f"Login cliente {cliente.id}")
    return {
        "accessToken": _access_token_cliente(cliente),
        "refreshToken": refresh,
        "user": {
            "id": str(cliente.id),
            "rut": formatear_rut(cliente.rut),
            "nombre": cliente.nombre_completo,
            "numeroCliente": cliente.numero_cliente,
            "tipo": "cliente",
        },
    }


# ============================================================
# LOGIN ADMIN
# ============================================================

def login_admin(db: Session, email: str, password: str, ip: Optional[str] = None) -> dict:
    perfil = db.query(Perfil).filter(Perfil.email == email.strip().lower()).first()
    if not perfil or not verify_password(password, perfil.hash_contrasena):
        raise ErrorAPI("Email o contraseña incorrectos", codigo="INVALID_CREDENTIALS", status_code=401)

    if not perfil.activo:
        raise ErrorAPI("Cuenta desactivada", codigo="ACCOUNT_SUSPENDED", status_code=403)

    perfil.ultimo_inicio_sesion = ahora_utc()
    refresh = _crear_sesion_refresh(db, "admin", perfil.id)
    auditoria.registrar(db, "LOGIN_ADMIN", "perfiles", perfil.id, usuario_email=perfil.email, ip_address=ip)
    db.commit()

    logger.info(f"Login admin {perfil.email} ({perfil.rol})")
    return {
        "accessToken": _access_token_admin(perfil),
        "refreshToken": refresh,
        "user": {
            "id": str(perfil.id),
            "email": perfil.email,
            "nombre": perfil.nombre,
            "rol": perfil.rol,
            "tipo": "admin",
        },
    }


# ============================================================
# REFRESH / LOGOUT
# ============================================================

def refrescar_token(db: Session, refresh_token: str) -> dict:
    sesion = db.query(SesionRefresh).filter(
        SesionRefresh.token_hash == hash_refresh_token(refresh_token)
    ).first()

    if not sesion or sesion.expira_en <= ahora_utc():
        if sesion:
            db.delete(sesion)
            db.commit()
        raise ErrorAPI("Sesión inválida o expirada", codigo="INVALID_TOKEN", status_code=401)

    if sesion.usuario_tipo == "cliente":
        usuario = db.query(Cliente).filter(Cliente.id == sesion.usuario_id).first()
        crear_access = _access_token_cliente
    else:
        usuario = db.query(Perfil).filter(Perfil.id == sesion.usuario_id, Perfil.activo == True).first()
        crear_access = _access_token_admin

    if not usuario:
        db.delete(sesion)
        db.commit()
        raise ErrorAPI("Sesión inválida o expirada", codigo="INVALID_TOKEN", status_code=401)

    # Rotación: el refresh usado deja de servir
    db.delete(sesion)
    nuevo_refresh = _crear_sesion_refresh(db, sesion.usuario_tipo, usuario.id)
    db.commit()

    return {"accessToken": crear_access(usuario), "refreshToken": nuevo_refresh}


def logout(db: Session, refresh_token: Optional[str]) -> None:
    if not refresh_token:
        return
    db.query(SesionRefresh).filter(
        SesionRefresh.token_hash == hash_refresh_token(refresh_token)
    ).delete(synchronize_session=False)
    db.commit()


# ============================================================
# CONTRASEÑAS
# ============================================================

def cambiar_contrasena(db: Session, cliente: Cliente, actual: str, nueva: str) -> dict:
    if not verify_password(actual, cliente.hash_contrasena):
        raise ErrorAPI("La contraseña actual es incorrecta", codigo="INVALID_CREDENTIALS", status_code=401)
    _validar_nueva_contrasena(nueva)
    if actual == nueva:
        raise ErrorValidacion("La nueva contraseña debe ser distinta a la actual")

    cliente.hash_contrasena = get_password_hash(nueva)
    auditoria.registrar(db, "CAMBIAR_CONTRASENA", "clientes", cliente.id, usuario_tipo="cliente")
    db.commit()
    return {"success": True, "message": "Contraseña actualizada"}


def _token_setup_vigente(db: Session, token: str) -> Optional[TokenConfiguracion]:
    return db.query(TokenConfiguracion).filter(
        TokenConfiguracion.token == token,
        TokenConfiguracion.tipo == "setup",
        TokenConfiguracion.usado == False,
        TokenConfiguracion.expira_en > ahora_utc(),
    ).first()


def validar_token_setup(db: Session, token: str) -> dict:
    registro = _token_setup_vigente(db, token)
    if not registro or not registro.cliente:
        return {"valid": False}
    return {
        "valid": True,
        "cliente": {
            "rut": formatear_rut(registro.cliente.rut),
            "nombre": registro.cliente.nombre_completo,
        },
    }


def configurar_contrasena(db: Session, token: str, password: str, ip: Optional[str] = None) -> dict:
    registro = _token_setup_vigente(db, token)
    if not registro or not registro.cliente:
        raise ErrorAPI("Token inválido o expirado", codigo="INVALID_TOKEN", status_code=400)

    _validar_nueva_contrasena(password)

    cliente = registro.cliente
    cliente.hash_contrasena = get_password_hash(password)
    cliente.estado_cuenta = EstadoCuentaUsuario.ACTIVA.value
    cliente.intentos_fallidos = 0
    cliente.bloqueado_hasta = None

    registro.usado = True
    registro.usado_en = ahora_utc()
    registro.ip_uso = ip

    auditoria.registrar(
        db, "CONFIGURAR_CONTRASENA", "clientes", cliente.id,
        usuario_tipo="cliente", datos_nuevos={"setup_completado": True}, ip_address=ip,
    )
    db.commit()

    logger.info(f"Cliente {cliente.id} configuró su contraseña")
    return {"success": True, "message": "Contraseña configurada exitosamente", "rut": formatear_rut(cliente.rut)}


def generar_enlace_setup(db: Session, cliente_id: int, admin_email: str, ip: Optional[str] = None) -> dict:
    """Crea un token de un solo uso y arma la URL para el cliente."""
    cliente = db.query(Cliente).filter(Cliente.id == cliente_id).first()
    if not cliente:
        raise ErrorNoEncontrado("Cliente no encontrado")

    # Invalida enlaces anteriores sin usar
    db.query(TokenConfiguracion).filter(
        TokenConfiguracion.cliente_id == cliente_id,
        TokenConfiguracion.usado == False,
    ).update({"expira_en": ahora_utc()}, synchronize_session=False)

    token = generar_token_setup()
    expira = ahora_utc() + timedelta(hours=SETUP_TOKEN_HORAS)
    db.add(TokenConfiguracion(
        cliente_id=cliente_id,
        token=token,
        tipo="setup",
        expira_en=expira,
        creado_por=admin_email,
    ))
    auditoria.registrar(
        db, "GENERAR_TOKEN_SETUP", "clientes", cliente_id,
        usuario_email=admin_email, ip_address=ip,
    )
    db.commit()

    return {
        "setupUrl": f"{FRONTEND_URL}/setup/{token}",
        "expiraEn": expira.isoformat(),
        "cliente": {
            "id": str(cliente.id),
            "nombre": cliente.nombre_corto,
            "telefono": cliente.telefono,
        },
    }
