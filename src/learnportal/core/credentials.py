"""Password digests with dual-algorithm compatibility.

Two schemes over the same salted input (password + static salt):
- sha256:  hex SHA-256, the primary scheme wherever hashlib provides it
- rolling: 32-bit rolling hash rendered in base 36, the fallback used by
           clients without a strong primitive

Verification tries every scheme in order. A match on anything other than
the primary scheme means the stored digest should be upgraded by the
caller; the upgrade only ever moves towards the primary scheme.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Callable

import structlog

from learnportal.core.errors import AuthFailure, AuthenticationError

logger = structlog.get_logger(__name__)

DEFAULT_SALT = "learning_portal_salt"
BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    """Render a non-negative integer in lowercase base 36."""
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def rolling_hash(text: str) -> str:
    """Deterministic 32-bit rolling hash: h = h * 31 + code_unit.

    Iterates over UTF-16 code units and wraps to a signed 32-bit integer
    after every step, so digests match those written by browser clients.
    """
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + code_unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return to_base36(abs(h))


def _sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _sha256_available() -> bool:
    return "sha256" in hashlib.algorithms_available


@dataclass(frozen=True)
class HashScheme:
    """One digest algorithm the verifier may try."""

    name: str
    digest: Callable[[str], str]
    is_available: Callable[[], bool] = lambda: True


SHA256_SCHEME = HashScheme("sha256", _sha256_hex, _sha256_available)
ROLLING_SCHEME = HashScheme("rolling", rolling_hash)

DEFAULT_SCHEMES: tuple[HashScheme, ...] = (SHA256_SCHEME, ROLLING_SCHEME)


class CredentialManager:
    """Computes and verifies salted password digests."""

    def __init__(
        self,
        salt: str = DEFAULT_SALT,
        schemes: tuple[HashScheme, ...] | list[HashScheme] | None = None,
    ):
        self.salt = salt
        self.schemes = tuple(schemes or DEFAULT_SCHEMES)
        available = [s for s in self.schemes if s.is_available()]
        if not available:
            raise ValueError("No hash scheme available")
        self.primary = available[0]
        if self.primary is not self.schemes[0]:
            logger.warning(
                "strong_hash_unavailable",
                wanted=self.schemes[0].name,
                using=self.primary.name,
            )

    def _salted(self, password: str) -> str:
        return password + self.salt

    def hash(self, password: str) -> str:
        """Digest a password with the primary scheme."""
        return self.primary.digest(self._salted(password))

    def identify(self, stored_digest: str, password: str) -> HashScheme:
        """Find the scheme whose digest of password equals stored_digest.

        Every available scheme is computed and compared.

        Raises:
            AuthenticationError: INVALID_CREDENTIALS if no scheme matches
        """
        salted = self._salted(password)
        stored = (stored_digest or "").encode("utf-8")
        matched: HashScheme | None = None
        for scheme in self.schemes:
            if not scheme.is_available():
                continue
            candidate = scheme.digest(salted).encode("utf-8")
            if hmac.compare_digest(candidate, stored) and matched is None:
                matched = scheme
        if matched is None:
            raise AuthenticationError(AuthFailure.INVALID_CREDENTIALS)
        return matched

    def verify(self, stored_digest: str, password: str) -> bool:
        """True if any scheme's digest of password matches stored_digest."""
        try:
            self.identify(stored_digest, password)
        except AuthenticationError:
            return False
        return True

    def needs_upgrade(self, scheme: HashScheme) -> bool:
        """True if a digest produced by scheme should be re-hashed."""
        return scheme is not self.primary
