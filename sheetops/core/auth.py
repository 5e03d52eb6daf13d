"""
OAuth token lifecycle for the delegated write credential.

    absent --authenticate()--> valid(expiry)
    valid  --now > expiry----> expired
    expired --authenticate()--> valid(new expiry)

The token lives in a CredentialProvider passed by reference and scoped to
one session. Reads never touch it.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from . import config
from .errors import AuthFailed
from .schema import AuthToken
from ..util.logging import logger

ABSENT = "absent"
VALID = "valid"
EXPIRED = "expired"


def epoch_ms() -> int:
    return int(time.time() * 1000)


class CredentialProvider:
    """Session-scoped holder for the write token."""

    def __init__(self, clock: Callable[[], int] = epoch_ms):
        self._token: Optional[AuthToken] = None
        self._clock = clock

    def get(self) -> Optional[AuthToken]:
        return self._token

    def set(self, token: AuthToken) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None

    def state(self, now_ms: Optional[int] = None) -> str:
        if self._token is None:
            return ABSENT
        now_ms = self._clock() if now_ms is None else now_ms
        return EXPIRED if self._token.is_expired(now_ms) else VALID

    def is_valid(self, now_ms: Optional[int] = None) -> bool:
        return self.state(now_ms) == VALID


AuthFlow = Callable[[], Awaitable[Tuple[str, Optional[int]]]]


class TokenManager:
    """Gate for every write path: hands out a valid token or raises AuthFailed."""

    def __init__(self, provider: CredentialProvider, authenticate: AuthFlow,
                 ttl_ms: Optional[int] = None, clock: Callable[[], int] = epoch_ms):
        self.provider = provider
        self._flow = authenticate
        self.ttl_ms = config.TOKEN_TTL_MS if ttl_ms is None else ttl_ms
        self._clock = clock
        self._lock: Optional[asyncio.Lock] = None

    def state(self) -> str:
        return self.provider.state(self._clock())

    def status(self) -> Dict[str, Any]:
        token = self.provider.get()
        return {
            "state": self.state(),
            "expires_at_ms": token.expiry_epoch_ms if token else None,
        }

    def _store(self, access_token: str, expires_in_ms: Optional[int]) -> AuthToken:
        if not access_token:
            raise AuthFailed("Authentication returned no access token")

        ttl = self.ttl_ms
        if expires_in_ms is not None and 0 < int(expires_in_ms) < ttl:
            ttl = int(expires_in_ms)

        previous = self.state()
        token = AuthToken(value=access_token, expiry_epoch_ms=self._clock() + ttl)
        self.provider.set(token)
        logger.log_auth_transition(previous, VALID, {"expires_at_ms": token.expiry_epoch_ms})
        return token

    def accept(self, access_token: str, expires_in_ms: Optional[int] = None) -> AuthToken:
        """Store a token delivered outside of a pending write."""
        return self._store(access_token, expires_in_ms)

    async def authenticate(self) -> AuthToken:
        """Run the interactive flow and store the resulting token."""
        try:
            access_token, expires_in_ms = await self._flow()
        except AuthFailed:
            logger.log_auth_transition(self.state(), "failed")
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.log_auth_transition(self.state(), "failed", {"reason": str(exc)})
            raise AuthFailed(f"Google authentication failed: {exc}") from exc

        return self._store(access_token, expires_in_ms)

    async def ensure_valid(self) -> str:
        """Current token value, authenticating first if absent or expired."""
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            state = self.state()
            if state == VALID:
                return self.provider.get().value
            if state == EXPIRED:
                logger.log_auth_transition(VALID, EXPIRED)
                self.provider.clear()
            token = await self.authenticate()
            return token.value

    def invalidate(self) -> None:
        """Drop the token, e.g. after the API rejected it."""
        if self.provider.get() is not None:
            logger.log_auth_transition(self.state(), ABSENT, {"reason": "invalidated"})
        self.provider.clear()


class CallbackAuthenticator:
    """
    Interactive flow bridged to an external consent UI.

    Awaiting the authenticator opens a pending request; the consent UI reports
    back through complete() or fail(). No answer within the timeout fails the
    flow.
    """

    def __init__(self, timeout: Optional[float] = None,
                 on_begin: Optional[Callable[[Dict[str, str]], None]] = None):
        self.timeout = config.AUTH_FLOW_TIMEOUT_SEC if timeout is None else timeout
        self._on_begin = on_begin
        self._future: Optional[asyncio.Future] = None

    @property
    def pending(self) -> bool:
        return self._future is not None and not self._future.done()

    def consent_request(self) -> Dict[str, str]:
        """What the consent UI needs to start the grant."""
        return {"client_id": config.get_google_client_id(), "scope": config.OAUTH_SCOPE}

    async def __call__(self) -> Tuple[str, Optional[int]]:
        request = self.consent_request()
        if not request["client_id"]:
            raise AuthFailed("Missing GOOGLE_CLIENT_ID; cannot start delegated authentication")

        if not self.pending:
            self._future = asyncio.get_running_loop().create_future()
            logger.info("Delegated authentication requested; waiting for consent callback")
            if self._on_begin:
                self._on_begin(request)

        future = self._future
        try:
            return await asyncio.wait_for(asyncio.shield(future), self.timeout)
        except asyncio.TimeoutError:
            if not future.done():
                future.cancel()
            raise AuthFailed(f"No consent received within {self.timeout:g}s") from None

    def complete(self, access_token: str, expires_in_ms: Optional[int] = None) -> bool:
        """Deliver the consent result; False if no flow was waiting. Call from the waiting loop."""
        if not self.pending:
            return False
        self._future.set_result((access_token, expires_in_ms))
        return True

    def fail(self, reason: str = "Google authentication failed") -> bool:
        if not self.pending:
            return False
        self._future.set_exception(AuthFailed(reason))
        return True
