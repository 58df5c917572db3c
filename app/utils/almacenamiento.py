"""
Almacenamiento de PDFs y ZIPs
==============================
Si GCS_BUCKET_NAME y GCS_CREDENTIALS_JSON están definidos se usa Google
Cloud Storage; si no, un directorio local (PDF_STORAGE_DIR).

Estructura:
  {YYYY}/{MM}/{cliente_id}_{folio}.pdf                 → boletas
  exports/{YYYY}/{MM}/boletas_{YYYY-MM}.zip            → lotes descargables

Las rutas guardadas en BD son siempre relativas (blob_path).
"""

import datetime
import json
import logging
import os
from typing import Optional

from app import config

logger = logging.getLogger(__name__)

_client = None
_credentials = None


class ErrorAlmacenamiento(Exception):
    pass


def _usa_gcs() -> bool:
    return bool(config.GCS_BUCKET_NAME and config.GCS_CREDENTIALS_JSON)


def _get_credentials():
    """Parsea credenciales una sola vez"""
    global _credentials
    if _credentials is not None:
        return _credentials

    from google.oauth2 import service_account
    creds_info = json.loads(config.GCS_CREDENTIALS_JSON)
    _credentials = service_account.Credentials.from_service_account_info(creds_info)
    return _credentials


def _get_bucket():
    """Cliente GCS (lazy, singleton)"""
    global _client
    if _client is None:
        from google.cloud import storage
        _client = storage.Client(credentials=_get_credentials())
    return _client.bucket(config.GCS_BUCKET_NAME)


def _ruta_local(blob_path: str) -> str:
    base = os.path.abspath(config.PDF_STORAGE_DIR)
    ruta = os.path.abspath(os.path.join(base, blob_path))
    if not ruta.startswith(base + os.sep):
        raise ErrorAlmacenamiento(f"Ruta fuera del almacenamiento: {blob_path}")
    return ruta


# ─── ESCRITURA ──────────────────────────────────────────────────

def guardar(blob_path: str, contenido: bytes, content_type: str = "application/pdf") -> str:
    """
    Guarda (sobrescribe) el archivo y retorna el blob_path.
    Lanza ErrorAlmacenamiento si no se pudo guardar.
    """
    try:
        if _usa_gcs():
            blob = _get_bucket().blob(blob_path)
            blob.upload_from_string(contenido, content_type=content_type)
        else:
            ruta = _ruta_local(blob_path)
            os.makedirs(os.path.dirname(ruta), exist_ok=True)
            with open(ruta, "wb") as f:
                f.write(contenido)
    except ErrorAlmacenamiento:
        raise
    except Exception as e:
        logger.error(f"Error guardando {blob_path}: {e}")
        raise ErrorAlmacenamiento(str(e)) from e

    return blob_path


# ─── LECTURA ────────────────────────────────────────────────────

def existe(blob_path: Optional[str]) -> bool:
    if not blob_path:
        return False
    if _usa_gcs():
        return _get_bucket().blob(blob_path).exists()
    return os.path.isfile(_ruta_local(blob_path))


def leer(blob_path: str) -> Optional[bytes]:
    """Contenido del archivo, o None si no existe."""
    if not existe(blob_path):
        return None
    if _usa_gcs():
        return _get_bucket().blob(blob_path).download_as_bytes()
    with open(_ruta_local(blob_path), "rb") as f:
        return f.read()


def generar_signed_url(blob_path: str, minutos: int = 60) -> Optional[str]:
    """URL temporal de descarga. Solo disponible con GCS."""
    if not _usa_gcs():
        return None
    blob = _get_bucket().blob(blob_path)
    return blob.generate_signed_url(
        expiration=datetime.timedelta(minutes=minutos),
        method="GET",
        credentials=_get_credentials(),
    )


def eliminar(blob_path: Optional[str]) -> bool:
    if not existe(blob_path):
        return False
    if _usa_gcs():
        _get_bucket().blob(blob_path).delete()
    else:
        os.remove(_ruta_local(blob_path))
    return True
