"""ReportTemplate model for HTML/Handlebars report templates."""

from sqlalchemy import Column, String, Boolean, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship

from report_api.models.base import BaseModel


class ReportTemplate(BaseModel):
    """
    HTML + Handlebars templates rendered to PDF.

    Each template is bound to exactly one ReportProcedure that produces its rows.

    `placeholders` holds conditional-variable rules:
        [{"name": "isVip", "condition": "total > 1000000"}]
    `detected_variables` holds the simple {{variable}} names found in content.
    `permissions` is {"users": [user ids], "roles": [role names]}.
    """

    __tablename__ = "report_templates"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)

    procedure_id = Column(String(36), ForeignKey("report_procedures.id"), nullable=True)

    # Handlebars HTML plus optional raw assets injected at render time
    content = Column(Text, nullable=True)
    css = Column(Text, nullable=True)
    js = Column(Text, nullable=True)
    orientation = Column(String(20), nullable=False, default="portrait")  # portrait, landscape

    placeholders = Column(JSON, nullable=True)
    detected_variables = Column(JSON, nullable=True)
    designer_state = Column(JSON, nullable=True)
    permissions = Column(JSON, nullable=True)

    is_active = Column(Boolean, default=True)
    created_by = Column(String(36), nullable=True)

    # Relationships
    procedure = relationship("ReportProcedure", back_populates="templates")

    @property
    def is_landscape(self) -> bool:
        return self.orientation == "landscape"

    def __repr__(self) -> str:
        return f"<ReportTemplate(id={self.id}, name={self.name})>"
