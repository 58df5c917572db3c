"""
Middleware de Autorización
app/middleware/autorizacion.py

Dependencies de FastAPI para autenticar clientes y personal, y para
verificar permisos por rol.

Uso:
    @router.post("/multas")
    async def crear_multa(
        admin: Perfil = Depends(requiere_permiso("multas", "create"))
    ):
        ...
"""

from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.models import Cliente, Perfil
from app.utils.errores import ErrorAPI, ErrorNoAutenticado, ErrorProhibido
from app.utils.security import TokenExpirado, TokenInvalido, decodificar_token


# ═══════════════════════════════════════════════════════════
# MATRIZ DE PERMISOS
# ═══════════════════════════════════════════════════════════

TODOS = ("billing_clerk", "supervisor", "admin")
SUPERVISOR_O_MAS = ("supervisor", "admin")
SOLO_ADMIN = ("admin",)

PERMISOS = {
    "clientes": {
        "view": TODOS,
        "edit_contact": TODOS,          # teléfono, correo, dirección
        "edit_all": SUPERVISOR_O_MAS,   # incluye RUT y nombres
        "delete": SOLO_ADMIN,
    },
    "medidores": {
        "view": TODOS,
        "create": SUPERVISOR_O_MAS,
        "edit": SUPERVISOR_O_MAS,
        "delete": SOLO_ADMIN,
    },
    "lecturas": {
        "view": TODOS,
        "edit_before_boleta": TODOS,
        "create_correction": TODOS,
        "delete": SOLO_ADMIN,
    },
    "repactaciones": {
        "view": TODOS,
        "create": SUPERVISOR_O_MAS,
        "edit": SUPERVISOR_O_MAS,
        "cancel": SOLO_ADMIN,
        "delete": SOLO_ADMIN,
    },
    "solicitudes_repactacion": {
        "view": TODOS,
        "approve_request": SUPERVISOR_O_MAS,
    },
    "subsidios": {
        "view": TODOS,
        "create": SOLO_ADMIN,
        "edit": SOLO_ADMIN,
        "delete": SOLO_ADMIN,
    },
    "multas": {
        "view": TODOS,
        "create": TODOS,
        "edit": SUPERVISOR_O_MAS,
        "cancel": SOLO_ADMIN,
        "delete": SOLO_ADMIN,
    },
    "rutas": {
        "view": TODOS,
        "create": SOLO_ADMIN,
        "edit": SOLO_ADMIN,
        "delete": SOLO_ADMIN,
    },
    "tarifas": {
        "view": TODOS,
        "create": SOLO_ADMIN,
        "edit": SOLO_ADMIN,
        "delete": SOLO_ADMIN,
    },
    "descuentos": {
        "view": TODOS,
        "create": SOLO_ADMIN,
        "edit": SOLO_ADMIN,
        "delete": SOLO_ADMIN,
    },
    "cortes_servicio": {
        "view": TODOS,
        "create": TODOS,                # el cajero puede iniciar un corte
        "edit": SUPERVISOR_O_MAS,
        "authorize_reposicion": SUPERVISOR_O_MAS,
        "delete": SOLO_ADMIN,
    },
    "pagos": {
        "view": TODOS,
        "create": TODOS,
    },
    "boletas": {
        "view": TODOS,
        "create": SUPERVISOR_O_MAS,     # generar PDFs y regenerar
        "edit": SOLO_ADMIN,
        "delete": SOLO_ADMIN,
    },
}


def tiene_permiso(rol: str, entidad: str, accion: str) -> bool:
    return rol in PERMISOS.get(entidad, {}).get(accion, ())


# ═══════════════════════════════════════════════════════════
# TOKEN
# ═══════════════════════════════════════════════════════════

def _payload_desde_request(request: Request) -> dict:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise ErrorNoAutenticado("Token de acceso requerido")

    token = auth_header.replace("Bearer ", "", 1).strip()
    try:
        return decodificar_token(token)
    except TokenExpirado:
        raise ErrorAPI("Token expirado", codigo="TOKEN_EXPIRED", status_code=401)
    except TokenInvalido:
        raise ErrorAPI("Token inválido", codigo="INVALID_TOKEN", status_code=401)


def _sujeto(payload: dict) -> int:
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        raise ErrorAPI("Token inválido", codigo="INVALID_TOKEN", status_code=401)


async def requiere_cliente(
    request: Request,
    db: Session = Depends(get_db)
) -> Cliente:
    """Cliente autenticado (token tipo 'cliente')."""
    payload = _payload_desde_request(request)
    if payload.get("tipo") != "cliente":
        raise ErrorProhibido("Acceso solo para clientes")

    cliente = db.query(Cliente).filter(Cliente.id == _sujeto(payload)).first()
    if not cliente:
        raise ErrorNoAutenticado("Cliente no encontrado")

    request.state.cliente = cliente
    return cliente


async def requiere_admin(
    request: Request,
    db: Session = Depends(get_db)
) -> Perfil:
    """Personal autenticado (token tipo 'admin') y activo."""
    payload = _payload_desde_request(request)
    if payload.get("tipo") != "admin":
        raise ErrorProhibido("Acceso solo para administradores")

    perfil = db.query(Perfil).filter(
        Perfil.id == _sujeto(payload),
        Perfil.activo == True
    ).first()
    if not perfil:
        raise ErrorProhibido("Usuario sin acceso al sistema")

    request.state.usuario_admin = perfil
    return perfil


def requiere_permiso(entidad: str, accion: str) -> Callable:
    """Verifica permiso específico: requiere_permiso("multas", "cancel")"""
    async def verificar(
        perfil: Perfil = Depends(requiere_admin)
    ) -> Perfil:
        if not tiene_permiso(perfil.rol, entidad, accion):
            raise ErrorProhibido(
                f"Sin permiso para {entidad}.{accion}",
                extra={"rolActual": perfil.rol},
            )
        return perfil
    return verificar


def requiere_rol(*roles_permitidos: str) -> Callable:
    """Verifica rol: requiere_rol("admin", "supervisor")"""
    async def verificar(
        perfil: Perfil = Depends(requiere_admin)
    ) -> Perfil:
        if perfil.rol not in roles_permitidos:
            raise ErrorProhibido(
                f"Requiere rol: {', '.join(roles_permitidos)}",
                extra={"rolActual": perfil.rol},
            )
        return perfil
    return verificar
