"""User model (read-only from the reporting side)."""

from sqlalchemy import Column, String, Boolean

from report_api.models.base import BaseModel


class User(BaseModel):
    """
    Landlord / administrator accounts.

    The reporting service only reads these rows: to resolve the display
    name printed on reports and to decide whether a user bypasses
    per-template permissions.
    """

    __tablename__ = "users"

    username = Column(String(100), unique=True, nullable=False)
    role = Column(String(50), nullable=False, default="CHU_NHA")

    # Owner name from the property profile; preferred on printed reports
    display_name = Column(String(255), nullable=True)

    is_active = Column(Boolean, default=True)

    @property
    def report_name(self) -> str:
        return self.display_name or self.username

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"
