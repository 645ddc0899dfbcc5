# =============================================================================
# intramail/__init__.py
# Intramail - hospital internal messaging client with offline fallback
# =============================================================================

__version__ = "1.0.0"
