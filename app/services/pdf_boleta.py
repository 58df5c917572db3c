"""
Servicio: Generador PDF de Boletas
app/services/pdf_boleta.py

Genera la boleta mensual con:
- Encabezado institucional
- Datos del cliente y periodo facturado
- Lecturas del medidor (anterior y actual) y consumo
- Detalle de cargos
- Totales, vencimiento y QR de pago

Requiere: reportlab, qrcode[pil]
"""

import io
from datetime import datetime

import qrcode
from reportlab.lib.colors import HexColor, black, white
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.config import NOMBRE_EMPRESA
from app.utils.fechas import ZONA_CHILE, formatear_fecha, nombre_periodo
from app.utils.moneda import CERO, a_decimal, formatear_numero, formatear_pesos
from app.utils.rut import formatear_rut

# ── Colores ──
AZUL_OSCURO = HexColor("#0b3a5b")
AZUL_AGUA = HexColor("#0066cc")
GRIS_CLARO = HexColor("#f1f5f9")
GRIS_BORDE = HexColor("#cbd5e1")


def texto_qr_pago(numero_cliente: str, monto_total) -> str:
    """Contenido del QR de pago: COAB:{numeroCliente}:{montoTotal}"""
    return f"COAB:{numero_cliente}:{int(a_decimal(monto_total))}"


def _generar_qr(contenido: str) -> io.BytesIO:
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=1,
    )
    qr.add_data(contenido)
    qr.make(fit=True)

    img = qr.make_image(fill_color="#0066CC", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    buffer.seek(0)
    return buffer


class _HeaderFooter:
    """Agrega encabezado y pie a cada página."""

    def __init__(self, folio: str, periodo: str):
        self.folio = folio
        self.periodo = periodo

    def __call__(self, canvas_obj, doc):
        canvas_obj.saveState()
        w, h = A4

        # ── Header ──
        canvas_obj.setFillColor(AZUL_OSCURO)
        canvas_obj.rect(0, h - 26 * mm, w, 26 * mm, fill=True, stroke=False)

        canvas_obj.setFillColor(white)
        canvas_obj.setFont("Helvetica-Bold", 14)
        canvas_obj.drawString(15 * mm, h - 12 * mm, NOMBRE_EMPRESA)
        canvas_obj.setFont("Helvetica", 9)
        canvas_obj.drawString(15 * mm, h - 19 * mm, f"BOLETA DE SERVICIO DE AGUA POTABLE — {self.periodo}")

        canvas_obj.setFont("Helvetica-Bold", 11)
        canvas_obj.drawRightString(w - 15 * mm, h - 12 * mm, f"Folio N° {self.folio}")
        canvas_obj.setFont("Helvetica", 8)
        canvas_obj.drawRightString(
            w - 15 * mm, h - 19 * mm,
            f"Generado: {datetime.now(ZONA_CHILE).strftime('%d/%m/%Y %H:%M')}",
        )

        canvas_obj.setStrokeColor(AZUL_AGUA)
        canvas_obj.setLineWidth(2)
        canvas_obj.line(0, h - 26 * mm, w, h - 26 * mm)

        # ── Footer ──
        canvas_obj.setFillColor(GRIS_BORDE)
        canvas_obj.setFont("Helvetica", 7)
        canvas_obj.drawString(15 * mm, 8 * mm, f"Folio {self.folio} — Documento generado automáticamente")
        canvas_obj.drawRightString(w - 15 * mm, 8 * mm, f"Pág. {doc.page}")

        canvas_obj.restoreState()


def generar_pdf_boleta(boleta, cliente, lecturas: dict) -> bytes:
    """
    Args:
        boleta: Boleta
        cliente: Cliente de la boleta
        lecturas: {"actual", "anterior", "numeroSerie"} de
                  lecturas_service.lecturas_para_boleta

    Returns:
        bytes del PDF generado
    """
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        topMargin=33 * mm,
        bottomMargin=18 * mm,
        leftMargin=15 * mm,
        rightMargin=15 * mm,
    )

    styles = getSampleStyleSheet()
    s_titulo = ParagraphStyle(
        "Titulo", parent=styles["Heading2"],
        fontSize=12, textColor=AZUL_OSCURO, spaceAfter=5,
        fontName="Helvetica-Bold",
    )
    s_normal = ParagraphStyle("Normal2", parent=styles["Normal"], fontSize=9, textColor=black, leading=13)
    s_center = ParagraphStyle("Center", parent=s_normal, alignment=TA_CENTER)
    s_total = ParagraphStyle(
        "Total", parent=s_normal, fontSize=16, leading=20,
        alignment=TA_RIGHT, fontName="Helvetica-Bold", textColor=AZUL_OSCURO,
    )

    story = []
    periodo = nombre_periodo(boleta.periodo_desde)
    direccion = cliente.direccion_principal

    # ══════════════════════════════════════
    # CLIENTE
    # ══════════════════════════════════════
    story.append(Paragraph("DATOS DEL CLIENTE", s_titulo))
    info_data = [
        ["Cliente:", cliente.nombre_completo, "N° cliente:", cliente.numero_cliente],
        ["RUT:", formatear_rut(cliente.rut) if cliente.rut else "—", "Periodo:", periodo],
        ["Dirección:", direccion.texto if direccion else "Sin dirección", "Emisión:", formatear_fecha(boleta.fecha_emision)],
    ]
    t_info = Table(info_data, colWidths=[60, 230, 65, 115])
    t_info.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTNAME", (2, 0), (2, -1), "Helvetica-Bold"),
        ("TEXTCOLOR", (0, 0), (0, -1), AZUL_OSCURO),
        ("TEXTCOLOR", (2, 0), (2, -1), AZUL_OSCURO),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
    ]))
    story.append(t_info)
    story.append(Spacer(1, 10))

    # ══════════════════════════════════════
    # LECTURAS
    # ══════════════════════════════════════
    story.append(Paragraph("CONSUMO", s_titulo))
    actual = lecturas.get("actual")
    anterior = lecturas.get("anterior")
    lect_data = [
        ["MEDIDOR", "LECTURA ANTERIOR", "LECTURA ACTUAL", "CONSUMO (m³)"],
        [
            lecturas.get("numeroSerie") or "—",
            formatear_numero(anterior) if anterior is not None else "—",
            formatear_numero(actual) if actual is not None else "—",
            formatear_numero(boleta.consumo_m3),
        ],
    ]
    t_lect = Table(lect_data, colWidths=[120, 115, 115, 120])
    t_lect.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), AZUL_OSCURO),
        ("TEXTCOLOR", (0, 0), (-1, 0), white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("ALIGNMENT", (0, 0), (-1, -1), "CENTER"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("GRID", (0, 0), (-1, -1), 0.5, GRIS_BORDE),
    ]))
    story.append(t_lect)
    story.append(Spacer(1, 10))

    # ══════════════════════════════════════
    # CARGOS
    # ══════════════════════════════════════
    story.append(Paragraph("DETALLE DE CARGOS", s_titulo))
    cargos = [
        ("Cargo fijo", boleta.costo_cargo_fijo),
        ("Agua potable", boleta.costo_agua),
        ("Alcantarillado", boleta.costo_alcantarillado),
        ("Tratamiento", boleta.costo_tratamiento),
        ("Multas", boleta.monto_multas),
        ("Intereses", boleta.monto_interes),
        ("IVA", boleta.monto_iva),
        ("(-) Subsidio", -a_decimal(boleta.monto_subsidio)),
        ("(-) Descuentos", -a_decimal(boleta.monto_descuento)),
    ]
    cargo_data = [["CONCEPTO", "MONTO"]]
    for concepto, monto in cargos:
        if a_decimal(monto) != CERO:
            cargo_data.append([concepto, formatear_pesos(monto)])

    monto_mes = boleta.monto_total_mes if boleta.monto_total_mes is not None else boleta.monto_total
    cargo_data.append(["TOTAL DEL MES", formatear_pesos(monto_mes)])
    if a_decimal(boleta.monto_saldo_anterior) != CERO:
        cargo_data.append(["Saldo anterior", formatear_pesos(boleta.monto_saldo_anterior)])

    t_cargos = Table(cargo_data, colWidths=[350, 120])
    t_cargos.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), AZUL_OSCURO),
        ("TEXTCOLOR", (0, 0), (-1, 0), white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("ALIGNMENT", (1, 0), (1, -1), "RIGHT"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("LINEBELOW", (0, 0), (-1, -1), 0.25, GRIS_BORDE),
    ]))
    story.append(t_cargos)
    story.append(Spacer(1, 12))

    # ══════════════════════════════════════
    # TOTAL + QR
    # ══════════════════════════════════════
    qr = Image(_generar_qr(texto_qr_pago(cliente.numero_cliente, boleta.monto_total)), width=32 * mm, height=32 * mm)
    total_bloque = [
        Paragraph(f"TOTAL A PAGAR: {formatear_pesos(boleta.monto_total)}", s_total),
        Spacer(1, 6),
        Paragraph(
            f"<font color='#dc2626'><b>Vence: {formatear_fecha(boleta.fecha_vencimiento)}</b></font>",
            ParagraphStyle("Vence", parent=s_normal, alignment=TA_RIGHT),
        ),
    ]
    t_total = Table([[qr, total_bloque]], colWidths=[110, 360])
    t_total.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("BACKGROUND", (0, 0), (-1, -1), GRIS_CLARO),
        ("BOX", (0, 0), (-1, -1), 1, AZUL_OSCURO),
    ]))
    story.append(t_total)
    story.append(Spacer(1, 6))
    story.append(Paragraph("Escanee el código QR para pagar en línea.", s_center))

    decorador = _HeaderFooter(boleta.folio, periodo)
    doc.build(story, onFirstPage=decorador, onLaterPages=decorador)
    return buffer.getvalue()
