"""
Backend Session Manager

Obtains and caches a bearer token for the ROFL app backend through a
Sign-In with Ethereum (EIP-4361) handshake.

One instance is shared by the verification scheduler and the API's results
proxy, so concurrent callers must never trigger more than one handshake.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import aiohttp
from eth_account import Account
from eth_account.messages import encode_defunct

from app.core.logging import get_logger

from .base import BaseBackendClient, DEFAULT_REQUEST_TIMEOUT_SECONDS
from .exceptions import AuthenticationError
from .models import LoginResponse, NonceResponse

logger = get_logger(__name__)

SIWE_STATEMENT = "Sign in to ROFL App Backend"
SIWE_VERSION = "1"
DEFAULT_CHAIN_ID = 0x5AFF  # Sapphire testnet

# The backend issues 12 hour tokens; assume 11 to stay clear of expiry
DEFAULT_TOKEN_LIFETIME_SECONDS = 11 * 3600
DEFAULT_REFRESH_MARGIN_SECONDS = 5 * 60


def _issued_at_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class SiweMessage:
    """EIP-4361 sign-in message"""

    domain: str
    address: str
    uri: str
    nonce: str
    chain_id: int
    statement: str = SIWE_STATEMENT
    version: str = SIWE_VERSION
    issued_at: str = field(default_factory=_issued_at_now)

    def prepare(self) -> str:
        """Render the message in the exact text form that gets signed."""
        return (
            f"{self.domain} wants you to sign in with your Ethereum account:\n"
            f"{self.address}\n"
            f"\n"
            f"{self.statement}\n"
            f"\n"
            f"URI: {self.uri}\n"
            f"Version: {self.version}\n"
            f"Chain ID: {self.chain_id}\n"
            f"Nonce: {self.nonce}\n"
            f"Issued At: {self.issued_at}"
        )


def sign_personal_message(account, message: str) -> str:
    """
    Sign `message` using the EIP-191 personal message convention.

    The digest is keccak256("\\x19Ethereum Signed Message:\\n" + len + message).

    Returns:
        0x-prefixed hex of the 65-byte recoverable signature, r || s || v
        with v in {0, 1}
    """
    signed = account.sign_message(encode_defunct(text=message))
    signature = bytearray(signed.signature)
    if signature[-1] >= 27:
        signature[-1] -= 27
    return "0x" + bytes(signature).hex()


class SessionManager(BaseBackendClient):
    """
    Caches a SIWE-issued bearer token.

    Readers take the fast path without waiting while the token is fresh.
    Refresh is single-writer: the lock holder re-checks staleness, so callers
    queued behind an in-flight handshake reuse its token.
    """

    def __init__(
        self,
        backend_url: str,
        private_key: str,
        siwe_domain: str = "localhost",
        chain_id: int = DEFAULT_CHAIN_ID,
        token_lifetime: float = DEFAULT_TOKEN_LIFETIME_SECONDS,
        refresh_margin: float = DEFAULT_REFRESH_MARGIN_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize session manager.

        Args:
            backend_url: Base URL of the ROFL app backend
            private_key: Hex secp256k1 key, with or without 0x prefix
            siwe_domain: Domain placed in the sign-in message
            chain_id: Chain id placed in the sign-in message
            token_lifetime: Seconds a fresh token is assumed valid
            refresh_margin: Refresh once this many seconds or fewer remain
            clock: Monotonic time source (seconds)

        Raises:
            AuthenticationError: If the private key cannot be parsed
        """
        super().__init__(backend_url, session_manager=None, request_timeout=request_timeout)

        key_hex = private_key.strip()
        if not key_hex.startswith("0x"):
            key_hex = "0x" + key_hex
        try:
            self._account = Account.from_key(key_hex)
        except Exception as e:
            raise AuthenticationError(f"failed to parse private key: {e}") from e

        self.siwe_domain = siwe_domain
        self.chain_id = chain_id
        self.token_lifetime = token_lifetime
        self.refresh_margin = refresh_margin
        self._clock = clock

        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._refresh_lock = asyncio.Lock()

    @property
    def address(self) -> str:
        """EIP-55 checksummed address of the signing key"""
        return self._account.address

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def _token_is_fresh(self) -> bool:
        return (
            self._token is not None
            and self._clock() + self.refresh_margin < self._expires_at
        )

    async def get_token(self) -> str:
        """
        Return a valid bearer token, signing in again if needed.

        Raises:
            AuthenticationError: If the handshake fails (not retried here)
        """
        if self._token_is_fresh():
            return self._token

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited for the lock
            if self._token_is_fresh():
                return self._token

            try:
                token = await self._perform_siwe_login()
            except AuthenticationError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                raise AuthenticationError(f"failed to perform SIWE login: {e}") from e

            self._token = token
            self._expires_at = self._clock() + self.token_lifetime
            logger.info(
                "Obtained new backend token",
                address=self.address,
                valid_for_seconds=self.token_lifetime,
            )
            return self._token

    def invalidate(self):
        """Drop the cached token so the next caller signs in again."""
        self._token = None
        self._expires_at = 0.0

    def build_message(self, nonce: str) -> SiweMessage:
        return SiweMessage(
            domain=self.siwe_domain,
            address=self.address,
            uri=f"http://{self.siwe_domain}",
            nonce=nonce,
            chain_id=self.chain_id,
        )

    async def _perform_siwe_login(self) -> str:
        """Execute the complete SIWE authentication flow."""
        nonce = await self._get_nonce()
        message = self.build_message(nonce).prepare()
        signature = sign_personal_message(self._account, message)
        return await self._authenticate(message, signature)

    async def _get_nonce(self) -> str:
        """Request a one-time nonce for this session's address."""
        session = await self._get_session()
        async with session.get(
            f"{self.backend_url}/auth/nonce",
            params={"address": self.address},
        ) as response:
            if response.status != 200:
                raise AuthenticationError(
                    f"failed to get nonce: unexpected status code: {response.status}"
                )
            data = await response.json(content_type=None)

        return NonceResponse.model_validate(data).nonce

    async def _authenticate(self, message: str, signature: str) -> str:
        """Exchange the signed message for a bearer token."""
        session = await self._get_session()
        async with session.post(
            f"{self.backend_url}/auth/login",
            params={"sig": signature},
            json={"message": message},
        ) as response:
            if response.status != 200:
                raise AuthenticationError(
                    f"authentication failed with status code: {response.status}"
                )
            data = await response.json(content_type=None)

        result = LoginResponse.model_validate(data)
        if not result.token:
            raise AuthenticationError("empty token in response")

        if result.address.lower() != self.address.lower():
            raise AuthenticationError(
                f"address mismatch: expected {self.address}, got {result.address}"
            )

        return result.token
