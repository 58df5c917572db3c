"""
Paginación
app/utils/paginacion.py

Dos convenciones:
- Por cursor (portal y búsquedas): se piden limit + 1 filas; la fila extra
  solo indica si hay página siguiente y nunca se devuelve.
- Por página (listados admin): page/limit con total y totalPages.
"""

import math
from typing import Optional

from app.utils.errores import ErrorValidacion

LIMITE_MAXIMO = 100


def normalizar_limite(limit: Optional[int], defecto: int = 20) -> int:
    if limit is None:
        return defecto
    return max(1, min(int(limit), LIMITE_MAXIMO))


def _parsear_cursor(cursor) -> Optional[int]:
    if cursor in (None, ""):
        return None
    try:
        return int(cursor)
    except (TypeError, ValueError):
        raise ErrorValidacion("Cursor inválido")


def paginar_por_cursor(query, columna_id, cursor=None, limit: Optional[int] = None, defecto: int = 20):
    """
    Ordena por id descendente y corta en limit.

    Retorna (filas, pagination) donde pagination es
    {"hasNextPage": bool, "nextCursor": str | None}.
    """
    limite = normalizar_limite(limit, defecto)
    cursor_id = _parsear_cursor(cursor)

    if cursor_id is not None:
        query = query.filter(columna_id < cursor_id)

    filas = query.order_by(columna_id.desc()).limit(limite + 1).all()

    hay_siguiente = len(filas) > limite
    datos = filas[:limite]
    siguiente = str(datos[-1].id) if hay_siguiente and datos else None

    return datos, {"hasNextPage": hay_siguiente, "nextCursor": siguiente}


def normalizar_pagina(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
    pagina = max(1, int(page or 1))
    return pagina, normalizar_limite(limit, defecto=50)


def paginar(query, page: Optional[int] = None, limit: Optional[int] = None):
    """Retorna (filas, pagination) con total, page, limit y totalPages."""
    pagina, limite = normalizar_pagina(page, limit)
    total = query.order_by(None).count()
    filas = query.offset((pagina - 1) * limite).limit(limite).all()
    return filas, {
        "total": total,
        "page": pagina,
        "limit": limite,
        "totalPages": math.ceil(total / limite) if total else 0,
    }
