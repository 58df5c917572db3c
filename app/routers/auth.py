"""
Router: Autenticación
=====================
- Login de clientes por RUT
- Login de personal por email
- Refresh y logout
- Configuración de contraseña por enlace (setup)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.database import get_db
from app.services import auth_service

router = APIRouter(prefix="/auth", tags=["auth"])


# ============================================================
# SCHEMAS
# ============================================================

class LoginClienteRequest(BaseModel):
    rut: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class LoginAdminRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(..., alias="refreshToken", min_length=1)


class LogoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: Optional[str] = Field(None, alias="refreshToken")


class SetupRequest(BaseModel):
    password: str = Field(..., min_length=1)


def _ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# ============================================================
# LOGIN
# ============================================================
@router.post("/login")
async def login(data: LoginClienteRequest, request: Request, db: Session = Depends(get_db)):
    """Login de cliente por RUT (acepta con o sin puntos y guion)."""
    return auth_service.login_cliente(db, data.rut, data.password, _ip(request))


@router.post("/admin/login")
async def login_admin(data: LoginAdminRequest, request: Request, db: Session = Depends(get_db)):
    return auth_service.login_admin(db, data.email, data.password, _ip(request))


@router.post("/refresh")
async def refresh(data: RefreshRequest, db: Session = Depends(get_db)):
    return auth_service.refrescar_token(db, data.refresh_token)


@router.post("/logout")
async def logout(data: LogoutRequest, db: Session = Depends(get_db)):
    auth_service.logout(db, data.refresh_token)
    return {"success": True}


# ============================================================
# SETUP DE CONTRASEÑA
# ============================================================
@router.get("/setup/{token}")
async def validar_setup(token: str, db: Session = Depends(get_db)):
    return auth_service.validar_token_setup(db, token)


@router.post("/setup/{token}")
async def configurar(token: str, data: SetupRequest, request: Request, db: Session = Depends(get_db)):
    return auth_service.configurar_contrasena(db, token, data.password, _ip(request))
