"""
Domain errors raised by the custody services.

Routes never catch these; the handlers registered in ``main.create_app``
render them into the ``{"success": false, "message": ...}`` envelope.
"""
from typing import Dict, List, Optional


class CustodyError(Exception):
    """A precondition of a custody operation does not hold."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(CustodyError):
    status_code = 404


class PermissionDeniedError(CustodyError):
    status_code = 403


class ValidationFailed(CustodyError):
    """Input is malformed or incomplete; carries field-level problems."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []
