from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin


class Site(TimestampMixin, Base):
    """Pump station. Administered elsewhere, read-only for the core services."""

    __tablename__ = "sites"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(50), unique=True)  # "PS01"
    name: Mapped[str] = mapped_column(String(255))
    is_enabled: Mapped[bool] = mapped_column(default=True)

    # Cameras used for alarm e-mail snapshots
    internal_camera_ip: Mapped[str | None] = mapped_column(String(45), default=None)
    internal_camera_username: Mapped[str | None] = mapped_column(String(100), default=None)
    internal_camera_password: Mapped[str | None] = mapped_column(String(255), default=None)
    global_camera_ip: Mapped[str | None] = mapped_column(String(45), default=None)
    global_camera_username: Mapped[str | None] = mapped_column(String(100), default=None)
    global_camera_password: Mapped[str | None] = mapped_column(String(255), default=None)

    responsibles = relationship("SiteUser", back_populates="site", cascade="all, delete-orphan")

    @property
    def has_camera(self) -> bool:
        return bool(self.internal_camera_ip or self.global_camera_ip)

    def __repr__(self) -> str:
        return f"<Site {self.code} ({self.name})>"
