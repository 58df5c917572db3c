"""
Modelos principales del portal COAB
app/models.py

Clientes, direcciones, medidores, lecturas, boletas, pagos, personal
administrativo, sesiones y trabajos de generación de PDFs.
Las entidades de gestión de deuda (repactaciones, multas, subsidios)
viven en app/models_gestion.py.
"""

import enum
import uuid

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, ForeignKey, Index, Integer,
    Numeric, String, Text
)
from sqlalchemy.orm import relationship

from app.database import Base
from app.utils.fechas import ahora_utc


# ═══════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════

class EstadoCuentaUsuario(str, enum.Enum):
    """Estado de la cuenta de acceso al portal."""
    PENDIENTE = "pendiente"     # Sin contraseña configurada
    ACTIVA = "activa"
    BLOQUEADA = "bloqueada"     # Bloqueo manual o por intentos
    SUSPENDIDA = "suspendida"

class EstadoBoleta(str, enum.Enum):
    PENDIENTE = "pendiente"
    PARCIAL = "parcial"
    PAGADA = "pagada"

class EstadoPago(str, enum.Enum):
    COMPLETADO = "completado"
    PENDIENTE = "pendiente"
    RECHAZADO = "rechazado"
    ANULADO = "anulado"

class RolAdmin(str, enum.Enum):
    BILLING_CLERK = "billing_clerk"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"

class EstadoMedidor(str, enum.Enum):
    ACTIVO = "activo"
    INACTIVO = "inactivo"
    RETIRADO = "retirado"

class EstadoTrabajo(str, enum.Enum):
    PENDIENTE = "pendiente"
    PROCESANDO = "procesando"
    COMPLETADO = "completado"
    ERROR = "error"
    CANCELADO = "cancelado"


ESTADOS_IMPAGOS = (EstadoBoleta.PENDIENTE.value, EstadoBoleta.PARCIAL.value)


# ═══════════════════════════════════════════════════════════
# CLIENTES Y DIRECCIONES
# ═══════════════════════════════════════════════════════════

class Cliente(Base):
    __tablename__ = "clientes"
    __table_args__ = (
        Index("ix_clientes_numero_cliente", "numero_cliente"),
    )

    id = Column(Integer, primary_key=True, index=True)
    rut = Column(String(12), unique=True, index=True)          # Limpio: "123456785"
    numero_cliente = Column(String(20), nullable=False)
    primer_nombre = Column(String(80), nullable=False)
    segundo_nombre = Column(String(80))
    primer_apellido = Column(String(80), nullable=False)
    segundo_apellido = Column(String(80))
    correo = Column(String(150))
    telefono = Column(String(20))
    es_cliente_actual = Column(Boolean, default=True, nullable=False)

    # Acceso al portal
    hash_contrasena = Column(String(255))
    estado_cuenta = Column(String(20), default=EstadoCuentaUsuario.PENDIENTE.value, nullable=False)
    intentos_fallidos = Column(Integer, default=0, nullable=False)
    bloqueado_hasta = Column(DateTime)
    ultimo_inicio_sesion = Column(DateTime)

    # Pago automático
    pago_automatico_activo = Column(Boolean, default=False, nullable=False)
    tarjeta_pago_automatico_id = Column(Integer)         # tarjetas_guardadas.id

    creado_en = Column(DateTime, default=ahora_utc)
    actualizado_en = Column(DateTime, default=ahora_utc, onupdate=ahora_utc)

    direcciones = relationship("Direccion", back_populates="cliente", order_by="Direccion.id")
    boletas = relationship("Boleta", back_populates="cliente")
    pagos = relationship("Pago", back_populates="cliente")
    tarjetas = relationship("TarjetaGuardada", back_populates="cliente")

    @property
    def nombre_completo(self) -> str:
        partes = [self.primer_nombre, self.segundo_nombre, self.primer_apellido, self.segundo_apellido]
        return " ".join(p for p in partes if p)

    @property
    def nombre_corto(self) -> str:
        return f"{self.primer_nombre} {self.primer_apellido}"

    @property
    def direccion_principal(self):
        return self.direcciones[0] if self.direcciones else None


class Ruta(Base):
    """Ruta de lectura de medidores."""
    __tablename__ = "rutas"

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(100), unique=True, nullable=False)
    descripcion = Column(Text)
    creado_en = Column(DateTime, default=ahora_utc)
    actualizado_en = Column(DateTime, default=ahora_utc, onupdate=ahora_utc)

    direcciones = relationship("Direccion", back_populates="ruta", order_by="Direccion.orden_ruta")


class Direccion(Base):
    __tablename__ = "direcciones"

    id = Column(Integer, primary_key=True, index=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False, index=True)
    direccion_calle = Column(String(150), nullable=False)
    direccion_numero = Column(String(20))
    poblacion = Column(String(100))
    comuna = Column(String(100))
    ruta_id = Column(Integer, ForeignKey("rutas.id"), index=True)
    orden_ruta = Column(Integer)

    cliente = relationship("Cliente", back_populates="direcciones")
    ruta = relationship("Ruta", back_populates="direcciones")
    medidores = relationship("Medidor", back_populates="direccion")

    @property
    def texto(self) -> str:
        """'Calle 123, Población, Comuna'"""
        calle = f"{self.direccion_calle} {self.direccion_numero or ''}".strip()
        return ", ".join(p for p in [calle, self.poblacion, self.comuna] if p)


# ═══════════════════════════════════════════════════════════
# MEDIDORES Y LECTURAS
# ═══════════════════════════════════════════════════════════

class Medidor(Base):
    __tablename__ = "medidores"

    id = Column(Integer, primary_key=True, index=True)
    direccion_id = Column(Integer, ForeignKey("direcciones.id"), nullable=False, index=True)
    numero_serie = Column(String(50))
    marca = Column(String(50))
    modelo = Column(String(50))
    fecha_instalacion = Column(Date)
    fecha_retiro = Column(Date)                 # Not null = retirado
    estado = Column(String(20), default=EstadoMedidor.ACTIVO.value, nullable=False)
    lectura_inicial = Column(Numeric(12, 2), default=0)
    mostrar_en_ruta = Column(Boolean, default=True, nullable=False)
    creado_en = Column(DateTime, default=ahora_utc)

    direccion = relationship("Direccion", back_populates="medidores")
    lecturas = relationship("Lectura", back_populates="medidor")


class Lectura(Base):
    __tablename__ = "lecturas"
    __table_args__ = (
        Index("ix_lecturas_periodo", "periodo_ano", "periodo_mes"),
    )

    id = Column(Integer, primary_key=True, index=True)
    medidor_id = Column(Integer, ForeignKey("medidores.id"), nullable=False, index=True)
    valor_lectura = Column(Numeric(12, 2), nullable=False)
    fecha_lectura = Column(Date)
    periodo_ano = Column(Integer, nullable=False)
    periodo_mes = Column(Integer, nullable=False)
    tipo_lectura = Column(String(20), default="normal")
    confirmada = Column(Boolean, default=False, nullable=False)
    observaciones = Column(Text)
    tiene_correccion = Column(Boolean, default=False, nullable=False)

    medidor = relationship("Medidor", back_populates="lecturas")
    correccion = relationship("LecturaCorreccion", back_populates="lectura", uselist=False)

    @property
    def valor_final(self):
        return self.correccion.valor_corregido if self.correccion else self.valor_lectura


class LecturaCorreccion(Base):
    __tablename__ = "lectura_correcciones"

    id = Column(Integer, primary_key=True)
    lectura_original_id = Column(Integer, ForeignKey("lecturas.id"), unique=True, nullable=False)
    valor_corregido = Column(Numeric(12, 2), nullable=False)
    motivo_correccion = Column(Text, nullable=False)
    corregido_por = Column(String(150))
    fecha_correccion = Column(DateTime, default=ahora_utc)

    lectura = relationship("Lectura", back_populates="correccion")


# ═══════════════════════════════════════════════════════════
# BOLETAS Y PAGOS
# ═══════════════════════════════════════════════════════════

class Boleta(Base):
    """
    Boleta mensual de consumo.

    monto_total_mes: cargos del mes. Puede ser null en boletas importadas.
    monto_total: total acumulado (incluye saldo anterior).
    El monto adeudado no se guarda aquí; lo calcula saldo_service.
    """
    __tablename__ = "boletas"
    __table_args__ = (
        Index("ix_boletas_cliente_periodo", "cliente_id", "periodo_desde"),
    )

    id = Column(Integer, primary_key=True, index=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False, index=True)
    numero_folio = Column(String(30))
    periodo_desde = Column(Date, nullable=False)
    periodo_hasta = Column(Date)
    fecha_emision = Column(Date, nullable=False)
    fecha_vencimiento = Column(Date)

    consumo_m3 = Column(Numeric(10, 2), default=0)
    costo_agua = Column(Numeric(12, 2), default=0)
    costo_alcantarillado = Column(Numeric(12, 2), default=0)
    costo_tratamiento = Column(Numeric(12, 2), default=0)
    costo_cargo_fijo = Column(Numeric(12, 2), default=0)
    monto_neto = Column(Numeric(12, 2), default=0)
    monto_iva = Column(Numeric(12, 2), default=0)
    monto_subsidio = Column(Numeric(12, 2), default=0)
    monto_descuento = Column(Numeric(12, 2), default=0)
    monto_interes = Column(Numeric(12, 2), default=0)
    monto_multas = Column(Numeric(12, 2), default=0)
    monto_saldo_anterior = Column(Numeric(12, 2), default=0)
    monto_total_mes = Column(Numeric(12, 2))
    monto_total = Column(Numeric(12, 2), nullable=False)
    dias_vencido = Column(Integer, default=0)

    estado = Column(String(20), default=EstadoBoleta.PENDIENTE.value, nullable=False, index=True)
    pdf_path = Column(String(255))
    repactacion_id = Column(Integer, ForeignKey("repactaciones.id"))
    creado_en = Column(DateTime, default=ahora_utc)

    cliente = relationship("Cliente", back_populates="boletas")

    @property
    def folio(self) -> str:
        return self.numero_folio or f"B-{self.id}"


class Pago(Base):
    """Pago del cliente. Se imputa contra el saldo total, no contra una boleta."""
    __tablename__ = "pagos"

    id = Column(Integer, primary_key=True, index=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False, index=True)
    monto = Column(Numeric(12, 2), nullable=False)
    fecha_pago = Column(DateTime, default=ahora_utc, nullable=False)
    tipo_pago = Column(String(30), default="efectivo")   # efectivo, transferencia, tarjeta, autopago
    canal = Column(String(30), default="oficina")         # oficina, web, automatico
    estado = Column(String(20), default=EstadoPago.COMPLETADO.value, nullable=False)
    numero_transaccion = Column(String(100))
    observaciones = Column(Text)
    registrado_por = Column(String(150))
    creado_en = Column(DateTime, default=ahora_utc)

    cliente = relationship("Cliente", back_populates="pagos")


class TarjetaGuardada(Base):
    __tablename__ = "tarjetas_guardadas"

    id = Column(Integer, primary_key=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False, index=True)
    ultimos_digitos = Column(String(4), nullable=False)
    tipo_tarjeta = Column(String(20))
    activa = Column(Boolean, default=True, nullable=False)
    creado_en = Column(DateTime, default=ahora_utc)

    cliente = relationship("Cliente", back_populates="tarjetas")


class IntentoPagoAutomatico(Base):
    __tablename__ = "intentos_pago_automatico"

    id = Column(Integer, primary_key=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False, index=True)
    boleta_id = Column(Integer, ForeignKey("boletas.id"))
    monto = Column(Numeric(12, 2), nullable=False)
    estado = Column(String(20), default="pendiente")   # pendiente, exitoso, fallido, deshabilitado
    intento_numero = Column(Integer, default=1)
    error_mensaje = Column(Text)
    creado_en = Column(DateTime, default=ahora_utc)


# ═══════════════════════════════════════════════════════════
# PERSONAL, SESIONES Y AUDITORÍA
# ═══════════════════════════════════════════════════════════

class Perfil(Base):
    """Usuario administrativo."""
    __tablename__ = "perfiles"

    id = Column(Integer, primary_key=True)
    email = Column(String(150), unique=True, nullable=False)
    nombre = Column(String(150))
    hash_contrasena = Column(String(255))
    rol = Column(String(20), default=RolAdmin.BILLING_CLERK.value, nullable=False)
    activo = Column(Boolean, default=True, nullable=False)
    ultimo_inicio_sesion = Column(DateTime)
    creado_en = Column(DateTime, default=ahora_utc)


class SesionRefresh(Base):
    __tablename__ = "sesiones_refresh"

    id = Column(Integer, primary_key=True)
    token_hash = Column(String(64), unique=True, nullable=False)
    usuario_tipo = Column(String(10), nullable=False)    # cliente | admin
    usuario_id = Column(Integer, nullable=False)
    expira_en = Column(DateTime, nullable=False)
    creado_en = Column(DateTime, default=ahora_utc)


class TokenConfiguracion(Base):
    """Enlace de un solo uso para que el cliente configure su contraseña."""
    __tablename__ = "tokens_configuracion"

    id = Column(Integer, primary_key=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False)
    token = Column(String(100), unique=True, nullable=False)
    tipo = Column(String(20), default="setup", nullable=False)
    usado = Column(Boolean, default=False, nullable=False)
    usado_en = Column(DateTime)
    ip_uso = Column(String(45))
    expira_en = Column(DateTime, nullable=False)
    creado_por = Column(String(150))
    creado_en = Column(DateTime, default=ahora_utc)

    cliente = relationship("Cliente")


class LogAuditoria(Base):
    __tablename__ = "log_auditoria"

    id = Column(Integer, primary_key=True)
    accion = Column(String(50), nullable=False)
    entidad = Column(String(50), nullable=False)
    entidad_id = Column(String(50))
    usuario_tipo = Column(String(10))
    usuario_email = Column(String(150))
    datos_anteriores = Column(JSON)
    datos_nuevos = Column(JSON)
    ip_address = Column(String(45))
    creado_en = Column(DateTime, default=ahora_utc)


class Notificacion(Base):
    """Aviso público del portal (cortes programados, etc.)."""
    __tablename__ = "notificaciones"

    id = Column(Integer, primary_key=True)
    titulo = Column(String(150), nullable=False)
    mensaje = Column(Text, nullable=False)
    tipo = Column(String(20), default="info")   # info, alerta, mantenimiento
    activa = Column(Boolean, default=True, nullable=False)
    desde = Column(DateTime)
    hasta = Column(DateTime)
    creado_en = Column(DateTime, default=ahora_utc)


# ═══════════════════════════════════════════════════════════
# TRABAJOS DE GENERACIÓN DE PDFs
# ═══════════════════════════════════════════════════════════

class TrabajoPdf(Base):
    """Registro de progreso de una generación masiva; el cliente lo consulta cada 2 s."""
    __tablename__ = "trabajos_pdf"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tipo = Column(String(30), default="generacion_pdf")
    periodo = Column(String(7), nullable=False)           # "2025-03"
    estado = Column(String(20), default=EstadoTrabajo.PENDIENTE.value, nullable=False)
    regenerar = Column(Boolean, default=False)
    generar_zip = Column(Boolean, default=False)

    total = Column(Integer, default=0)
    procesados = Column(Integer, default=0)
    exitosos = Column(Integer, default=0)
    fallidos = Column(Integer, default=0)
    omitidos = Column(Integer, default=0)

    zip_path = Column(String(255))
    errores = Column(JSON, default=list)
    admin_email = Column(String(150))

    creado_en = Column(DateTime, default=ahora_utc)
    iniciado_en = Column(DateTime)
    completado_en = Column(DateTime)
