from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import config
from app.database import Base, get_db
from app.main import app
from app.models import Boleta, Cliente, Direccion, EstadoCuentaUsuario, Medidor, Perfil
from app.utils.security import create_access_token, get_password_hash

PASSWORD = "Segura123"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def fabrica(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(fabrica):
    session = fabrica()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def almacenamiento_local(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "PDF_STORAGE_DIR", str(tmp_path / "storage"))
    monkeypatch.setattr(config, "GCS_BUCKET_NAME", None)


@pytest.fixture
def client(fabrica):
    def override_get_db():
        session = fabrica()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


# ── Datos ────────────────────────────────────────────────────

def crear_cliente(db, numero="1001", rut="123456785", password=PASSWORD, **extra):
    cliente = Cliente(
        rut=rut,
        numero_cliente=numero,
        primer_nombre=extra.pop("primer_nombre", "Juan"),
        primer_apellido=extra.pop("primer_apellido", "Pérez"),
        hash_contrasena=get_password_hash(password) if password else None,
        estado_cuenta=EstadoCuentaUsuario.ACTIVA.value if password else EstadoCuentaUsuario.PENDIENTE.value,
        **extra,
    )
    db.add(cliente)
    db.commit()
    db.refresh(cliente)
    return cliente


def crear_direccion(db, cliente, calle="Los Aromos", numero="123", ruta_id=None, orden=None):
    direccion = Direccion(
        cliente_id=cliente.id,
        direccion_calle=calle,
        direccion_numero=numero,
        ruta_id=ruta_id,
        orden_ruta=orden,
    )
    db.add(direccion)
    db.commit()
    db.refresh(direccion)
    return direccion


def crear_medidor(db, direccion, serie="M-001"):
    medidor = Medidor(direccion_id=direccion.id, numero_serie=serie, lectura_inicial=0)
    db.add(medidor)
    db.commit()
    db.refresh(medidor)
    return medidor


def crear_boleta(db, cliente, monto, periodo=date(2025, 3, 1), estado="pendiente", monto_total_mes=None, **extra):
    boleta = Boleta(
        cliente_id=cliente.id,
        periodo_desde=periodo,
        periodo_hasta=periodo + timedelta(days=30),
        fecha_emision=periodo + timedelta(days=31),
        fecha_vencimiento=periodo + timedelta(days=50),
        monto_total=Decimal(str(monto)),
        monto_total_mes=Decimal(str(monto_total_mes if monto_total_mes is not None else monto)),
        costo_agua=Decimal(str(monto)),
        consumo_m3=Decimal("12"),
        estado=estado,
        **extra,
    )
    db.add(boleta)
    db.commit()
    db.refresh(boleta)
    return boleta


def crear_perfil(db, rol, email=None):
    perfil = Perfil(
        email=email or f"{rol}@coab.cl",
        nombre=rol.title(),
        hash_contrasena=get_password_hash(PASSWORD),
        rol=rol,
        activo=True,
    )
    db.add(perfil)
    db.commit()
    db.refresh(perfil)
    return perfil


def headers_admin(perfil):
    token = create_access_token(
        {"sub": str(perfil.id), "tipo": "admin", "email": perfil.email, "rol": perfil.rol},
        timedelta(hours=1),
    )
    return {"Authorization": f"Bearer {token}"}


def headers_cliente(cliente):
    token = create_access_token(
        {"sub": str(cliente.id), "tipo": "cliente", "rut": cliente.rut},
        timedelta(hours=1),
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def cliente(db):
    return crear_cliente(db)


@pytest.fixture
def admin(db):
    return crear_perfil(db, "admin")


@pytest.fixture
def supervisor(db):
    return crear_perfil(db, "supervisor")


@pytest.fixture
def cajero(db):
    return crear_perfil(db, "billing_clerk")
