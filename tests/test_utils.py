from datetime import date
from decimal import Decimal

import pytest

from app.utils.fechas import mes_anterior, nombre_periodo, parsear_periodo
from app.utils.moneda import a_decimal, formatear_pesos, parsear_pesos, redondear_pesos
from app.utils.rut import calcular_dv, formatear_rut, limpiar_rut, validar_rut


# ── RUT ──

def test_limpiar_rut_quita_puntos_y_guion():
    assert limpiar_rut("12.345.678-5") == "123456785"
    assert limpiar_rut("1.000.005-k") == "1000005K"
    assert limpiar_rut("") == ""


@pytest.mark.parametrize("rut", ["12.345.678-5", "123456785", "11.111.111-1", "1.000.005-K"])
def test_validar_rut_valido(rut):
    assert validar_rut(rut)


@pytest.mark.parametrize("rut", ["12.345.678-9", "1234", "abcdefgh-1", ""])
def test_validar_rut_invalido(rut):
    assert not validar_rut(rut)


def test_calcular_dv_k():
    assert calcular_dv("1000005") == "K"


def test_formatear_rut():
    assert formatear_rut("123456785") == "12.345.678-5"
    assert formatear_rut("1000005K") == "1.000.005-K"


# ── Pesos ──

def test_formatear_pesos_con_separador_de_miles():
    assert formatear_pesos(1234567) == "$1.234.567"
    assert formatear_pesos(Decimal("999.6")) == "$1.000"
    assert formatear_pesos(0) == "$0"
    assert formatear_pesos(-5000) == "-$5.000"


def test_parsear_pesos():
    assert parsear_pesos("$1.234.567") == Decimal("1234567")
    assert parsear_pesos("-$5.000") == Decimal("-5000")
    assert parsear_pesos("") == Decimal("0")


def test_redondeo_medio_hacia_arriba():
    assert redondear_pesos(Decimal("10.5")) == Decimal("11")
    assert redondear_pesos(Decimal("10.49")) == Decimal("10")


def test_a_decimal_desde_float_no_arrastra_error_binario():
    assert a_decimal(0.1) == Decimal("0.1")
    with pytest.raises(ValueError):
        a_decimal("no es monto")


# ── Periodos ──

def test_parsear_periodo_fin_exclusivo():
    assert parsear_periodo("2025-12") == (date(2025, 12, 1), date(2026, 1, 1))


@pytest.mark.parametrize("periodo", ["2025-13", "2025-3", "marzo", ""])
def test_parsear_periodo_invalido(periodo):
    with pytest.raises(ValueError):
        parsear_periodo(periodo)


def test_mes_anterior_cruza_el_ano():
    assert mes_anterior(2025, 1) == (2024, 12)


def test_nombre_periodo():
    assert nombre_periodo(date(2025, 3, 1)) == "Marzo 2025"
    assert nombre_periodo(None) == "-"
