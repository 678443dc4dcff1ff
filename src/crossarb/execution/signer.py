"""
Request signing for exchange APIs.

Binance signs the url-encoded query with HMAC-SHA256; Gate.io v4 signs
a canonical request string with HMAC-SHA512 and sends it in headers.
Bybit v5 signs timestamp, key, receive window and payload with
HMAC-SHA256, also in headers.
"""

import hashlib
import hmac
from typing import Any
from urllib.parse import urlencode

from crossarb.utils.time import get_timestamp_ms, get_timestamp_s


class RequestSigner:
    """
    Signs requests for Binance API authentication.

    Uses HMAC-SHA256 over the url-encoded parameters.
    """

    __slots__ = ("_secret_bytes",)

    def __init__(self, api_secret: str) -> None:
        """
        Initialize signer with API secret.

        Args:
            api_secret: Binance API secret key.
        """
        self._secret_bytes = api_secret.encode("utf-8")

    def sign(self, query_string: str) -> str:
        """
        Generate HMAC-SHA256 signature for a query string.

        Returns:
            Hexadecimal signature string.
        """
        return hmac.new(
            self._secret_bytes,
            query_string.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def create_signed_params(
        self,
        params: dict[str, Any],
        recv_window: int | None = None,
    ) -> dict[str, Any]:
        """
        Create a new params dict with timestamp and signature.

        Args:
            params: Original request parameters.
            recv_window: Optional recvWindow in milliseconds.

        Returns:
            New params dict including timestamp and signature.
        """
        signed_params = dict(params)
        if recv_window is not None:
            signed_params["recvWindow"] = recv_window
        if "timestamp" not in signed_params:
            signed_params["timestamp"] = get_timestamp_ms()

        signed_params["signature"] = self.sign(urlencode(signed_params))
        return signed_params


class GateioSigner:
    """
    Signs requests for Gate.io API v4.

    Signature string: ``METHOD\\nPATH\\nQUERY\\nSHA512(BODY)\\nTIMESTAMP``.
    """

    __slots__ = ("_api_key", "_secret_bytes")

    def __init__(self, api_key: str, api_secret: str) -> None:
        """
        Initialize signer.

        Args:
            api_key: Gate.io API key.
            api_secret: Gate.io API secret.
        """
        self._api_key = api_key
        self._secret_bytes = api_secret.encode("utf-8")

    def sign(
        self,
        method: str,
        path: str,
        query: str = "",
        body: str = "",
        timestamp: int | None = None,
    ) -> str:
        """
        Compute the request signature.

        Args:
            method: HTTP method.
            path: Full request path including the ``/api/v4`` prefix.
            query: Url-encoded query string, without ``?``.
            body: Raw request body.
            timestamp: Unix seconds.

        Returns:
            Hexadecimal HMAC-SHA512 signature.
        """
        ts = get_timestamp_s() if timestamp is None else timestamp
        hashed_body = hashlib.sha512(body.encode("utf-8")).hexdigest()
        payload = f"{method.upper()}\n{path}\n{query}\n{hashed_body}\n{ts}"
        return hmac.new(self._secret_bytes, payload.encode("utf-8"), hashlib.sha512).hexdigest()

    def headers(self, method: str, path: str, query: str = "", body: str = "") -> dict[str, str]:
        """Authentication headers for one request."""
        timestamp = get_timestamp_s()
        return {
            "KEY": self._api_key,
            "Timestamp": str(timestamp),
            "SIGN": self.sign(method, path, query, body, timestamp),
        }


class BybitSigner:
    """
    Signs requests for Bybit API v5.

    Signature string: ``TIMESTAMP + API_KEY + RECV_WINDOW + PAYLOAD``,
    where the payload is the query string for GET and the raw JSON
    body for POST.
    """

    __slots__ = ("_api_key", "_secret_bytes", "_recv_window")

    def __init__(self, api_key: str, api_secret: str, recv_window: int = 5000) -> None:
        """
        Initialize signer.

        Args:
            api_key: Bybit API key.
            api_secret: Bybit API secret.
            recv_window: Milliseconds the request stays valid.
        """
        self._api_key = api_key
        self._secret_bytes = api_secret.encode("utf-8")
        self._recv_window = str(recv_window)

    def sign(self, payload: str, timestamp: int) -> str:
        """Hexadecimal HMAC-SHA256 signature of one request."""
        message = f"{timestamp}{self._api_key}{self._recv_window}{payload}"
        return hmac.new(self._secret_bytes, message.encode("utf-8"), hashlib.sha256).hexdigest()

    def headers(self, payload: str = "") -> dict[str, str]:
        """Authentication headers for one request."""
        timestamp = get_timestamp_ms()
        return {
            "X-BAPI-API-KEY": self._api_key,
            "X-BAPI-TIMESTAMP": str(timestamp),
            "X-BAPI-RECV-WINDOW": self._recv_window,
            "X-BAPI-SIGN": self.sign(payload, timestamp),
            "X-BAPI-SIGN-TYPE": "2",
        }
