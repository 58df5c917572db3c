"""
Errores de dominio
app/utils/errores.py

Los servicios lanzan estas excepciones; app/main.py las convierte en
respuestas con la forma {"error": {"code": ..., "message": ...}}.
"""

from typing import Optional


class ErrorAPI(Exception):
    """Error con código HTTP y código de negocio."""

    status_code = 500
    codigo = "INTERNAL_ERROR"

    def __init__(
        self,
        mensaje: str,
        codigo: Optional[str] = None,
        status_code: Optional[int] = None,
        extra: Optional[dict] = None,
    ):
        super().__init__(mensaje)
        self.mensaje = mensaje
        if codigo:
            self.codigo = codigo
        if status_code:
            self.status_code = status_code
        self.extra = extra or {}

    def to_dict(self) -> dict:
        return {"error": {"code": self.codigo, "message": self.mensaje, **self.extra}}


class ErrorValidacion(ErrorAPI):
    status_code = 400
    codigo = "VALIDATION_ERROR"


class ErrorNoAutenticado(ErrorAPI):
    status_code = 401
    codigo = "UNAUTHORIZED"


class ErrorProhibido(ErrorAPI):
    status_code = 403
    codigo = "FORBIDDEN"


class ErrorNoEncontrado(ErrorAPI):
    status_code = 404
    codigo = "NOT_FOUND"


class ErrorConflicto(ErrorAPI):
    status_code = 409
    codigo = "CONFLICT"
