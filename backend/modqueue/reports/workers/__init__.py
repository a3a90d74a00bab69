"""Report worker exports."""

from .inquiry_expirer import InquiryExpirer

__all__ = ["InquiryExpirer"]
