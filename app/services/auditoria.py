"""
Registro de auditoría. Cada acción que cambia datos deja una fila en
log_auditoria con el antes y el después.
"""

from typing import Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from app.models import LogAuditoria


def registrar(
    db: Session,
    accion: str,
    entidad: str,
    entidad_id=None,
    usuario_tipo: str = "admin",
    usuario_email: Optional[str] = None,
    datos_anteriores: Optional[dict] = None,
    datos_nuevos: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> LogAuditoria:
    """Agrega la fila a la sesión; el commit lo hace quien llama."""
    # Decimal y fechas no van directo a una columna JSON
    log = LogAuditoria(
        accion=accion,
        entidad=entidad,
        entidad_id=str(entidad_id) if entidad_id is not None else None,
        usuario_tipo=usuario_tipo,
        usuario_email=usuario_email,
        datos_anteriores=jsonable_encoder(datos_anteriores) if datos_anteriores is not None else None,
        datos_nuevos=jsonable_encoder(datos_nuevos) if datos_nuevos is not None else None,
        ip_address=ip_address,
    )
    db.add(log)
    return log
