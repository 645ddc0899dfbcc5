# =============================================================================
# intramail/config/__init__.py
# Client configuration
# =============================================================================

from .settings import SyncSettings, load_settings, DEFAULT_CREDENTIAL

__all__ = ["SyncSettings", "load_settings", "DEFAULT_CREDENTIAL"]
