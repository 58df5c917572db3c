"""
Seguridad: hashing de contraseñas y tokens
app/utils/security.py
"""

import hashlib
import re
import secrets
from datetime import timedelta
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from jose import ExpiredSignatureError, JWTError, jwt

from app.config import ALGORITHM, SECRET_KEY
from app.utils.fechas import ahora_utc

_hasher = PasswordHasher(time_cost=3, memory_cost=65536, parallelism=4)


def get_password_hash(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return _hasher.verify(hashed, password)
    except (VerificationError, InvalidHashError):
        return False


def validar_contrasena(password: str) -> tuple[bool, str]:
    """
    Requisitos:
    - Mínimo 8 caracteres
    - Al menos una mayúscula, una minúscula y un número

    Retorna: (es_valida, mensaje_error)
    """
    if len(password) < 8:
        return False, "La contraseña debe tener al menos 8 caracteres"
    if not re.search(r"[A-Z]", password):
        return False, "La contraseña debe contener al menos una letra mayúscula"
    if not re.search(r"[a-z]", password):
        return False, "La contraseña debe contener al menos una letra minúscula"
    if not re.search(r"[0-9]", password):
        return False, "La contraseña debe contener al menos un número"
    return True, ""


def create_access_token(data: dict, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode["exp"] = ahora_utc() + expires_delta
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


class TokenExpirado(Exception):
    pass


class TokenInvalido(Exception):
    pass


def decodificar_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError as e:
        raise TokenExpirado(str(e)) from e
    except JWTError as e:
        raise TokenInvalido(str(e)) from e


def generar_refresh_token() -> str:
    """32 bytes aleatorios en hex; solo se guarda su hash."""
    return secrets.token_hex(32)


def hash_refresh_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generar_token_setup() -> str:
    return secrets.token_urlsafe(32)
