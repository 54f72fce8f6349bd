from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from phone_login.db.session import Base


class OtpIssuanceMark(Base):
    """Per-phone lock row and cooldown tombstone.

    Outlives the phone's OtpRecord so the cooldown still sees the last
    issuance after a code is consumed, and gives issue/verify a row to lock
    even when no record exists.
    """

    __tablename__ = "otp_issuance_marks"
    phone_number: Mapped[str] = mapped_column(String(20), primary_key=True)
    last_issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
