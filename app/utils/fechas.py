"""
Fechas y periodos de facturación (hora de Chile).
"""

import re
from datetime import date, datetime, timezone
from typing import Optional

from dateutil import tz
from dateutil.relativedelta import relativedelta

from app.config import TZ_CHILE

ZONA_CHILE = tz.gettz(TZ_CHILE)

MESES = [
    "", "Enero", "Febrero", "Marzo", "Abril", "Mayo", "Junio",
    "Julio", "Agosto", "Septiembre", "Octubre", "Noviembre", "Diciembre",
]


def ahora_utc() -> datetime:
    """UTC naive, para comparar con columnas DateTime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hoy_chile() -> date:
    return datetime.now(ZONA_CHILE).date()


def a_hora_chile(dt: Optional[datetime]) -> Optional[datetime]:
    if not dt:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(ZONA_CHILE)


def formatear_fecha(d) -> str:
    if not d:
        return "-"
    if isinstance(d, datetime):
        d = a_hora_chile(d)
    return d.strftime("%d/%m/%Y")


def nombre_periodo(d: Optional[date]) -> str:
    if not d:
        return "-"
    return f"{MESES[d.month]} {d.year}"


def parsear_periodo(periodo: str) -> tuple[date, date]:
    """'2025-03' -> (2025-03-01, 2025-04-01). El fin es exclusivo."""
    if not periodo or not re.fullmatch(r"\d{4}-\d{2}", periodo):
        raise ValueError("Periodo debe tener formato YYYY-MM")
    ano, mes = int(periodo[:4]), int(periodo[5:])
    if mes < 1 or mes > 12:
        raise ValueError("Mes fuera de rango")
    inicio = date(ano, mes, 1)
    return inicio, inicio + relativedelta(months=1)


def mes_anterior(ano: int, mes: int) -> tuple[int, int]:
    anterior = date(ano, mes, 1) - relativedelta(months=1)
    return anterior.year, anterior.month


def iso(d) -> Optional[str]:
    return d.isoformat() if d else None
