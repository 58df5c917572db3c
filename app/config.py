"""
Configuración del portal COAB
app/config.py

Todas las variables se leen del entorno. Los valores por defecto sirven
para desarrollo local y para la suite de tests.
"""

import logging
import os

logger = logging.getLogger(__name__)


# ── Base de datos ──
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./coab.db")

# ── JWT ──
_SECRET_DESARROLLO = "coab-secreto-de-desarrollo-no-usar-en-produccion"
SECRET_KEY = os.getenv("JWT_SECRET", _SECRET_DESARROLLO)
ALGORITHM = "HS256"

if SECRET_KEY == _SECRET_DESARROLLO:
    logger.warning("JWT_SECRET no definido, usando secreto de desarrollo")
if len(SECRET_KEY) < 32:
    raise RuntimeError("JWT_SECRET debe tener al menos 32 caracteres")

ACCESS_TOKEN_HORAS_CLIENTE = 24
ACCESS_TOKEN_HORAS_ADMIN = 8
REFRESH_TOKEN_DIAS = 30
SETUP_TOKEN_HORAS = 48

# ── Bloqueo de cuenta ──
MAX_INTENTOS_FALLIDOS = 5
MINUTOS_BLOQUEO = 15

# ── Frontend / CORS ──
CORS_ORIGIN = [o.strip() for o in os.getenv("CORS_ORIGIN", "http://localhost:5173").split(",") if o.strip()]
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")

# ── Zona horaria ──
TZ_CHILE = os.getenv("TZ", "America/Santiago")

# ── Almacenamiento de PDFs ──
PDF_STORAGE_DIR = os.getenv("PDF_STORAGE_DIR", "./storage")
GCS_BUCKET_NAME = os.getenv("GCS_BUCKET_NAME")
GCS_CREDENTIALS_JSON = os.getenv("GCS_CREDENTIALS_JSON")

# ── WhatsApp (Twilio) ──
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_WHATSAPP_FROM = os.getenv("TWILIO_WHATSAPP_FROM")

# ── Logging ──
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Nombre que aparece en boletas y mensajes
NOMBRE_EMPRESA = os.getenv("NOMBRE_EMPRESA", "Comité de Agua Potable COAB")
