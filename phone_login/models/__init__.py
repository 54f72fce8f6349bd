from phone_login.models.otp_issuance_mark import OtpIssuanceMark
from phone_login.models.otp_record import OtpRecord

__all__ = ["OtpIssuanceMark", "OtpRecord"]
