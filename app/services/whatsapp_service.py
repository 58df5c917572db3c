"""
Servicio: Envío por WhatsApp (Twilio)
app/services/whatsapp_service.py

Variables de entorno:
  TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_WHATSAPP_FROM
"""

import logging
import re
from typing import Optional

import httpx

from app import config

logger = logging.getLogger(__name__)

TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


def formatear_telefono_chile(telefono: str) -> Optional[str]:
    """'9 1234 5678' / '56912345678' / '+56912345678' -> '+56912345678'"""
    if not telefono:
        return None
    digitos = re.sub(r"\D", "", telefono)
    if len(digitos) == 9 and digitos.startswith("9"):
        return f"+56{digitos}"
    if len(digitos) == 11 and digitos.startswith("569"):
        return f"+{digitos}"
    return None


def enviar_mensaje(telefono: str, mensaje: str) -> dict:
    if not (config.TWILIO_ACCOUNT_SID and config.TWILIO_AUTH_TOKEN and config.TWILIO_WHATSAPP_FROM):
        logger.warning("Twilio no configurado, mensaje no enviado")
        return {"success": False, "error": "WhatsApp no configurado"}

    destino = formatear_telefono_chile(telefono)
    if not destino:
        return {"success": False, "error": "Número de teléfono inválido"}

    try:
        resp = httpx.post(
            TWILIO_URL.format(sid=config.TWILIO_ACCOUNT_SID),
            auth=(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN),
            data={
                "From": f"whatsapp:{config.TWILIO_WHATSAPP_FROM}",
                "To": f"whatsapp:{destino}",
                "Body": mensaje,
            },
            timeout=15.0,
        )
    except httpx.HTTPError as e:
        logger.error(f"Error de red enviando WhatsApp a {destino}: {e}")
        return {"success": False, "error": "Error de conexión con el proveedor"}

    datos = resp.json() if resp.content else {}
    if resp.status_code >= 400:
        logger.error(f"Twilio respondió {resp.status_code}: {datos.get('message')}")
        return {"success": False, "error": datos.get("message") or f"HTTP {resp.status_code}"}

    return {"success": True, "messageId": datos.get("sid")}


def enviar_enlace_setup(nombre: str, telefono: str, setup_url: str) -> dict:
    mensaje = (
        f"Hola {nombre}, para activar su cuenta en el portal de clientes de "
        f"{config.NOMBRE_EMPRESA} ingrese a: {setup_url}\n"
        f"El enlace vence en {config.SETUP_TOKEN_HORAS} horas."
    )
    return enviar_mensaje(telefono, mensaje)
