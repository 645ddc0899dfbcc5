# =============================================================================
# intramail/services/__init__.py
# Service layer for the Streamlit consumer
# =============================================================================

from .base_service import BaseService, ServiceResult
from .mailbox_service import MailboxService

__all__ = ["BaseService", "ServiceResult", "MailboxService"]
