"""Registry of database routines that feed report templates."""

import enum

from sqlalchemy import Column, Integer, String, Boolean, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship

from report_api.models.base import BaseModel


class ProcedureKind(str, enum.Enum):
    """How a registered routine is invoked."""

    FUNCTION = "function"    # SELECT * FROM name(...)
    PROCEDURE = "procedure"  # CALL name(...), no result set


class ReportProcedure(BaseModel):
    """
    A registered stored function/procedure.

    `parameters` holds the declared signature in order:
        [{"name": "p_uid", "type": "text"}, {"name": "p_month", "type": "integer"}]

    `variables` caches the last variable discovery result so the designer
    does not re-run the routine on every page load.
    """

    __tablename__ = "report_procedures"

    name = Column(String(128), unique=True, nullable=False)
    description = Column(Text, nullable=True)

    sql_definition = Column(Text, nullable=False)
    parameters = Column(JSON, nullable=False, default=list)
    kind = Column(String(20), nullable=False, default=ProcedureKind.FUNCTION.value)
    variables = Column(JSON, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, default=True)
    created_by = Column(String(36), nullable=True)

    # Relationships
    history = relationship(
        "ReportProcedureHistory",
        back_populates="procedure",
        order_by="ReportProcedureHistory.version.desc()",
    )
    templates = relationship("ReportTemplate", back_populates="procedure")

    @property
    def is_action(self) -> bool:
        return self.kind == ProcedureKind.PROCEDURE.value

    def __repr__(self) -> str:
        return f"<ReportProcedure(id={self.id}, name={self.name}, v={self.version})>"


class ReportProcedureHistory(BaseModel):
    """One row per saved version of a routine definition."""

    __tablename__ = "report_procedure_history"

    procedure_id = Column(String(36), ForeignKey("report_procedures.id"), nullable=False)
    version = Column(Integer, nullable=False)
    sql_definition = Column(Text, nullable=False)
    meta = Column(JSON, nullable=True)  # name/description at the time of change
    changed_by = Column(String(36), nullable=True)

    procedure = relationship("ReportProcedure", back_populates="history")
