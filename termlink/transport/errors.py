"""Errors raised by the RPC channel."""

from typing import Any, Optional

from termlink.config import CREDENTIAL_ERROR_CODES, TRUST_ERROR_CODES


class TransportError(Exception):
    """Raised when a request/response round-trip itself failed.

    Always transient from the caller's point of view.
    """

    pass


class RpcError(Exception):
    """Raised when the bridge answered a request with ``ok: false``."""

    def __init__(
        self,
        code: str,
        detail: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ):
        self.code = code
        self.detail = detail
        self.payload = payload or {}
        message = f"{code}: {detail}" if detail else code
        super().__init__(message)

    @property
    def is_trust_error(self) -> bool:
        return self.code in TRUST_ERROR_CODES

    @property
    def is_credential_error(self) -> bool:
        return self.code in CREDENTIAL_ERROR_CODES

    @property
    def host_port(self) -> Optional[str]:
        return self.payload.get("hostPort")

    @property
    def fingerprint(self) -> Optional[str]:
        return self.payload.get("fingerprint")
