# src/quota_library/utils/__init__.py

from .credential_formatter import format_credential_for_display

__all__ = ['format_credential_for_display']
