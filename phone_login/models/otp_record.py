from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from phone_login.db.session import Base
from phone_login.models.common import TimestampMixin, UUIDMixin


class OtpRecord(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "otp_records"
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    code_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    request_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
