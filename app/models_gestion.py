"""
Módulo: Gestión de Deuda (modelos SQLAlchemy)
app/models_gestion.py

Repactaciones (convenios de pago en cuotas) y su flujo de solicitud,
multas, subsidios con su historial de asignación, tarifas, cortes de
servicio y descuentos.

Flujo de repactación:
    solicitud  pendiente → aprobada | rechazada
    aprobada   → crea Repactacion en estado activo
    repactación activo → completado | cancelado
"""

import enum

from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric,
    String, Text
)
from sqlalchemy.orm import relationship

from app.database import Base
from app.utils.fechas import ahora_utc


# ═══════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════

class EstadoRepactacion(str, enum.Enum):
    ACTIVO = "activo"
    COMPLETADO = "completado"
    CANCELADO = "cancelado"

class EstadoSolicitud(str, enum.Enum):
    PENDIENTE = "pendiente"
    APROBADA = "aprobada"
    RECHAZADA = "rechazada"

class EstadoSubsidio(str, enum.Enum):
    ACTIVO = "activo"
    INACTIVO = "inactivo"

class TipoMovimientoSubsidio(str, enum.Enum):
    ALTA = "alta"       # Asignación al cliente
    BAJA = "baja"       # Retiro

class EstadoCorte(str, enum.Enum):
    CORTADO = "cortado"
    REPUESTO = "repuesto"

class TipoDescuento(str, enum.Enum):
    PORCENTAJE = "porcentaje"
    MONTO_FIJO = "monto_fijo"


# Transiciones válidas de una repactación ya creada
TRANSICIONES_REPACTACION = {
    EstadoRepactacion.ACTIVO.value: {EstadoRepactacion.COMPLETADO.value, EstadoRepactacion.CANCELADO.value},
    EstadoRepactacion.COMPLETADO.value: set(),
    EstadoRepactacion.CANCELADO.value: set(),
}


# ═══════════════════════════════════════════════════════════
# TABLA: REPACTACIONES
# ═══════════════════════════════════════════════════════════

class Repactacion(Base):
    """Convenio de pago de deuda en cuotas."""
    __tablename__ = "repactaciones"
    __table_args__ = (
        Index("ix_repactaciones_cliente_estado", "cliente_id", "estado"),
    )

    id = Column(Integer, primary_key=True, index=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False)
    numero_cliente = Column(String(20))
    numero_convenio = Column(String(30))

    monto_deuda_inicial = Column(Numeric(12, 2), nullable=False)
    total_cuotas = Column(Integer, nullable=False)
    monto_cuota_inicial = Column(Numeric(12, 2), nullable=False)
    monto_cuota_base = Column(Numeric(12, 2), nullable=False)

    fecha_inicio = Column(Date, nullable=False)
    fecha_termino_real = Column(Date)
    estado = Column(String(20), default=EstadoRepactacion.ACTIVO.value, nullable=False)
    observaciones = Column(Text)

    creado_por = Column(String(150))
    fecha_creacion = Column(DateTime, default=ahora_utc)
    fecha_actualizacion = Column(DateTime, default=ahora_utc, onupdate=ahora_utc)

    cliente = relationship("Cliente")
    boletas = relationship("Boleta", order_by="Boleta.periodo_desde.desc()")


class SolicitudRepactacion(Base):
    """
    Solicitud hecha por el cliente desde el portal.
    Un cliente tiene como máximo una solicitud pendiente; se valida antes de crear.
    """
    __tablename__ = "solicitudes_repactacion"
    __table_args__ = (
        Index("ix_solicitudes_cliente_estado", "cliente_id", "estado"),
    )

    id = Column(Integer, primary_key=True, index=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False)
    monto_deuda_estimado = Column(Numeric(12, 2), nullable=False)
    cuotas_solicitadas = Column(Integer, nullable=False)
    motivo = Column(Text)
    estado = Column(String(20), default=EstadoSolicitud.PENDIENTE.value, nullable=False)

    revisado_por = Column(String(150))
    fecha_revision = Column(DateTime)
    motivo_rechazo = Column(Text)
    repactacion_id = Column(Integer, ForeignKey("repactaciones.id"))

    creado_en = Column(DateTime, default=ahora_utc)

    cliente = relationship("Cliente")
    repactacion = relationship("Repactacion")


# ═══════════════════════════════════════════════════════════
# TABLA: MULTAS
# ═══════════════════════════════════════════════════════════

class Multa(Base):
    """
    Multa aplicada a un cliente. El estado no se guarda:
    cancelada si tiene cancelada_por, activa en otro caso.
    """
    __tablename__ = "multas"

    id = Column(Integer, primary_key=True, index=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False, index=True)
    monto = Column(Numeric(12, 2), nullable=False)
    motivo = Column(String(200), nullable=False)
    descripcion = Column(Text)
    fecha_aplicacion = Column(Date, nullable=False)
    periodo_desde = Column(Date)
    periodo_hasta = Column(Date)
    afecto_iva = Column(Boolean, default=True, nullable=False)

    aplicada_por = Column(String(150))
    boleta_aplicada_id = Column(Integer, ForeignKey("boletas.id"))

    cancelada_por = Column(String(150))
    fecha_cancelacion = Column(DateTime)
    motivo_cancelacion = Column(Text)

    creado_en = Column(DateTime, default=ahora_utc)
    actualizado_en = Column(DateTime, default=ahora_utc, onupdate=ahora_utc)

    cliente = relationship("Cliente")

    @property
    def estado(self) -> str:
        return "cancelada" if self.cancelada_por else "activa"


# ═══════════════════════════════════════════════════════════
# TABLA: SUBSIDIOS
# ═══════════════════════════════════════════════════════════

class Subsidio(Base):
    """Subsidio de agua potable (decreto municipal). El id viene del decreto."""
    __tablename__ = "subsidios"

    id = Column(Integer, primary_key=True, autoincrement=False)
    limite_m3 = Column(Integer, nullable=False)
    porcentaje = Column(Numeric(5, 2), nullable=False)
    fecha_inicio = Column(Date, nullable=False)
    fecha_termino = Column(Date)
    numero_decreto = Column(String(50))
    observaciones = Column(Text)
    estado = Column(String(20), default=EstadoSubsidio.ACTIVO.value, nullable=False)
    creado_en = Column(DateTime, default=ahora_utc)

    historial = relationship("SubsidioHistorial", back_populates="subsidio")


class SubsidioHistorial(Base):
    __tablename__ = "subsidio_historial"
    __table_args__ = (
        Index("ix_subsidio_historial_cliente", "cliente_id", "fecha_cambio"),
    )

    id = Column(Integer, primary_key=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False)
    subsidio_id = Column(Integer, ForeignKey("subsidios.id"), nullable=False)
    tipo_cambio = Column(String(10), nullable=False)   # alta | baja
    fecha_cambio = Column(DateTime, default=ahora_utc, nullable=False)
    detalles = Column(Text)
    registrado_por = Column(String(150))

    subsidio = relationship("Subsidio", back_populates="historial")
    cliente = relationship("Cliente")


# ═══════════════════════════════════════════════════════════
# TABLA: TARIFAS
# ═══════════════════════════════════════════════════════════

class Tarifa(Base):
    """
    Valores de cobro vigentes desde fecha_inicio. La vigente es la más
    reciente ya iniciada y sin fecha_fin cumplida.
    """
    __tablename__ = "tarifas"

    id = Column(Integer, primary_key=True, index=True)
    costo_despacho = Column(Numeric(12, 2), nullable=False)
    costo_reposicion_1 = Column(Numeric(12, 2), nullable=False)
    costo_reposicion_2 = Column(Numeric(12, 2), nullable=False)
    costo_m3_agua = Column(Numeric(12, 2), nullable=False)
    costo_m3_alcantarillado_tratamiento = Column(Numeric(12, 2))
    cargo_fijo = Column(Numeric(12, 2), nullable=False)
    tasa_iva = Column(Numeric(5, 4), nullable=False)
    fecha_inicio = Column(Date, nullable=False, index=True)
    fecha_fin = Column(Date)
    tasa_interes_mensual = Column(Numeric(5, 4), default=0, nullable=False)
    dias_gracia_interes = Column(Integer, default=30, nullable=False)
    fecha_creacion = Column(DateTime, default=ahora_utc)


# ═══════════════════════════════════════════════════════════
# TABLA: CORTES DE SERVICIO
# ═══════════════════════════════════════════════════════════

class CorteServicio(Base):
    """
    Corte de suministro y su reposición. La primera reposición de un
    cliente se cobra con costo_reposicion_1, las siguientes con la 2.
    """
    __tablename__ = "cortes_servicio"
    __table_args__ = (
        Index("ix_cortes_cliente_estado", "cliente_id", "estado"),
    )

    id = Column(Integer, primary_key=True, index=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False)
    numero_cliente = Column(String(20))
    fecha_corte = Column(Date, nullable=False)
    fecha_reposicion = Column(Date)
    motivo_corte = Column(String(200), nullable=False)
    estado = Column(String(20), default=EstadoCorte.CORTADO.value, nullable=False)
    numero_reposicion = Column(Integer)
    monto_cobrado = Column(Numeric(12, 2))
    afecto_iva = Column(Boolean, default=True, nullable=False)

    autorizado_corte_por = Column(String(150))
    autorizado_reposicion_por = Column(String(150))
    observaciones = Column(Text)
    boleta_aplicada_id = Column(Integer, ForeignKey("boletas.id"))

    creado_en = Column(DateTime, default=ahora_utc)
    actualizado_en = Column(DateTime, default=ahora_utc, onupdate=ahora_utc)

    cliente = relationship("Cliente")


# ═══════════════════════════════════════════════════════════
# TABLA: DESCUENTOS
# ═══════════════════════════════════════════════════════════

class Descuento(Base):
    """Plantilla de descuento reutilizable."""
    __tablename__ = "descuentos"

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(150), nullable=False)
    descripcion = Column(Text)
    tipo_descuento = Column(String(20), default=TipoDescuento.PORCENTAJE.value, nullable=False)
    valor = Column(Numeric(12, 2), nullable=False)
    fecha_inicio = Column(Date, nullable=False)
    fecha_fin = Column(Date)
    activo = Column(Boolean, default=True, nullable=False)
    aplica_cargo_fijo = Column(Boolean, default=True, nullable=False)
    aplica_consumo = Column(Boolean, default=True, nullable=False)
    consumo_minimo = Column(Numeric(10, 2))
    consumo_maximo = Column(Numeric(10, 2))

    creado_por = Column(String(150))
    fecha_creacion = Column(DateTime, default=ahora_utc)
    fecha_actualizacion = Column(DateTime, default=ahora_utc, onupdate=ahora_utc)

    aplicaciones = relationship("DescuentoAplicado", back_populates="descuento")


class DescuentoAplicado(Base):
    """
    Descuento asignado a un cliente para su próxima boleta.
    Sin descuento_id es un descuento puntual (tipo y motivo propios);
    pendiente mientras boleta_id sea nulo.
    """
    __tablename__ = "descuentos_aplicados"
    __table_args__ = (
        Index("ix_descuentos_aplicados_cliente", "cliente_id", "boleta_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id"), nullable=False)
    descuento_id = Column(Integer, ForeignKey("descuentos.id"))
    boleta_id = Column(Integer, ForeignKey("boletas.id"))
    monto_aplicado = Column(Numeric(12, 2), nullable=False)
    tipo_puntual = Column(String(20))
    motivo_puntual = Column(Text)
    fecha_aplicacion = Column(DateTime, default=ahora_utc, nullable=False)
    aplicado_por = Column(String(150))

    cliente = relationship("Cliente")
    descuento = relationship("Descuento", back_populates="aplicaciones")
    boleta = relationship("Boleta")

    @property
    def estado(self) -> str:
        return "aplicado" if self.boleta_id else "pendiente"
