"""
RUT chileno: limpieza, validación (módulo 11) y formato.
"""

import re


def limpiar_rut(rut: str) -> str:
    """Deja solo dígitos y K, en mayúscula: '12.345.678-k' -> '12345678K'."""
    if not rut:
        return ""
    return re.sub(r"[^0-9K]", "", rut.upper())


def obtener_cuerpo_rut(rut: str) -> str:
    return limpiar_rut(rut)[:-1]


def obtener_dv(rut: str) -> str:
    return limpiar_rut(rut)[-1:]


def calcular_dv(cuerpo: str) -> str:
    suma = 0
    multiplicador = 2
    for digito in reversed(cuerpo):
        suma += int(digito) * multiplicador
        multiplicador = 2 if multiplicador == 7 else multiplicador + 1

    resto = 11 - (suma % 11)
    if resto == 11:
        return "0"
    if resto == 10:
        return "K"
    return str(resto)


def validar_rut(rut: str) -> bool:
    limpio = limpiar_rut(rut)
    if len(limpio) < 8 or len(limpio) > 9:
        return False

    cuerpo, dv = limpio[:-1], limpio[-1]
    if not cuerpo.isdigit():
        return False
    return calcular_dv(cuerpo) == dv


def formatear_rut(rut: str) -> str:
    """'123456785' -> '12.345.678-5'"""
    limpio = limpiar_rut(rut)
    if len(limpio) < 2:
        return limpio

    cuerpo, dv = limpio[:-1], limpio[-1]
    grupos = []
    while len(cuerpo) > 3:
        grupos.insert(0, cuerpo[-3:])
        cuerpo = cuerpo[:-3]
    grupos.insert(0, cuerpo)
    return f"{'.'.join(grupos)}-{dv}"
