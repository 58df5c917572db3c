"""
Pesos chilenos (CLP): sin decimales, punto como separador de miles.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CERO = Decimal("0")


def a_decimal(valor) -> Decimal:
    if valor is None:
        return CERO
    if isinstance(valor, Decimal):
        return valor
    if isinstance(valor, float):
        return Decimal(str(valor))
    try:
        return Decimal(valor)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Monto inválido: {valor!r}")


def redondear_pesos(valor) -> Decimal:
    return a_decimal(valor).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def formatear_numero(valor) -> str:
    """1234567 -> '1.234.567'"""
    entero = int(redondear_pesos(valor))
    return f"{entero:,}".replace(",", ".")


def formatear_pesos(valor) -> str:
    """1234567 -> '$1.234.567', -5000 -> '-$5.000'"""
    monto = redondear_pesos(valor)
    if monto < 0:
        return f"-${formatear_numero(-monto)}"
    return f"${formatear_numero(monto)}"


def parsear_pesos(texto: str) -> Decimal:
    """'$1.234.567' -> Decimal('1234567')"""
    if texto is None:
        return CERO
    texto = texto.strip()
    negativo = texto.startswith("-")
    digitos = re.sub(r"[^0-9]", "", texto)
    if not digitos:
        return CERO
    monto = Decimal(digitos)
    return -monto if negativo else monto


def a_float(valor) -> float:
    """Para serializar montos en JSON."""
    return float(a_decimal(valor))
