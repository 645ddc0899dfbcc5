# =============================================================================
# intramail/offline/remote_client.py
# HTTP+JSON Action API Client
# =============================================================================
"""
RemoteClient - Thin requests-based client for the Intramail action API.

Every call targets the same endpoint with the action in the ``action``
query parameter. Transport problems are mapped onto the error taxonomy so
callers only ever deal with IntramailError subclasses:

    timeout / refused / 5xx / non-JSON   -> TransportUnavailableError
    undecodable or wrong-shape JSON      -> MalformedResponseError
    401                                  -> UnauthenticatedError
    400                                  -> ValidationFailedError
    404                                  -> NotFoundError
"""

from __future__ import annotations
from typing import Any, Dict, Optional
import logging

import requests

from intramail.errors import (
    MalformedResponseError,
    NotFoundError,
    TransportUnavailableError,
    UnauthenticatedError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)


class RemoteClient:
    """Blocking client for the action API. Every request carries a timeout."""

    DEFAULT_TIMEOUT = 3.0

    def __init__(self, base_url: str, session: Optional[requests.Session] = None):
        self.base_url = base_url
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    # -------------------------------------------------------------------------
    # Public calls
    # -------------------------------------------------------------------------

    def get(self, action: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        """GET ``?action=<action>`` and return the decoded JSON body."""
        return self._make_request(action, "GET", params=params, timeout=timeout)

    def post(
        self,
        action: str,
        data: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """POST a JSON body to ``?action=<action>``."""
        return self._make_request(action, "POST", data=data, timeout=timeout)

    def upload(self, filename: str, content: bytes, mime_type: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Upload one file as multipart field ``file``.

        Returns:
            The ``attachment`` object of the response
        """
        payload = self._make_request(
            "upload",
            "POST",
            files={"file": (filename, content, mime_type)},
            timeout=timeout,
        )
        if not isinstance(payload, dict) or not payload.get("success") or not isinstance(payload.get("attachment"), dict):
            raise MalformedResponseError("Upload response has no attachment", action="upload")
        return payload["attachment"]

    def close(self) -> None:
        self.session.close()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _make_request(
        self,
        action: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Make HTTP request with error handling

        Args:
            action: Value of the ``action`` query parameter
            method: HTTP method (GET or POST)
            params: Extra query parameters
            data: JSON request body
            files: Multipart files (upload only)
            timeout: Seconds before the call counts as a refused connection

        Returns:
            Decoded JSON body
        """
        query = {"action": action}
        if params:
            query.update(params)

        logger.debug(f"{method} {action} {params or ''}")
        try:
            response = self.session.request(
                method=method,
                url=self.base_url,
                params=query,
                json=data,
                files=files,
                timeout=timeout or self.DEFAULT_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            raise TransportUnavailableError(f"Request failed for {action}: {e}", action=action) from e

        self._raise_for_status(action, response)

        content_type = response.headers.get("Content-Type", "")
        if "json" not in content_type.lower():
            raise TransportUnavailableError(
                f"Non-JSON response for {action} (Content-Type: {content_type or 'none'})",
                action=action,
            )
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Undecodable JSON for {action}: {e}", action=action) from e

    @staticmethod
    def _server_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or response.reason or ""
        if isinstance(body, dict):
            return str(body.get("error") or body.get("message") or "")
        return ""

    def _raise_for_status(self, action: str, response: requests.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        message = self._server_message(response)
        if status == 401:
            raise UnauthenticatedError(message or "Invalid credentials")
        if status == 400:
            raise ValidationFailedError(message or f"Rejected by server: {action}")
        if status == 404:
            raise NotFoundError(message or f"Not found: {action}", entity=action)
        raise TransportUnavailableError(f"HTTP {status} for {action}: {message}", action=action)
