"""Rotating refresh-token sessions with reuse detection."""

import logging
import secrets

from celestial.core.security import SecretHasher
from celestial.models import User
from celestial.services.store import CredentialStore
from celestial.services.tokens import TokenPair, TokenService

logger = logging.getLogger(__name__)


class SessionRejected(Exception):
    """
    Rotation refused. reason is for logs only; callers must not surface it.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class RefreshSession:
    """
    One stored record per login session; the record id travels inside the
    refresh token and the record keeps only a hash of the current token.

    Rotation replaces the hash through a compare-and-swap on the previous
    hash, so replaying an already-rotated token, or losing a race against a
    concurrent refresh, is rejected.
    """

    def __init__(self, store: CredentialStore, hasher: SecretHasher, tokens: TokenService) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens

    def open(self, user: User) -> tuple[str, TokenPair]:
        """Create a session record for user and mint its first token pair."""
        # The record needs an id before the token that embeds it can be minted;
        # until then it holds the hash of a random placeholder nobody knows.
        placeholder = self.hasher.hash(secrets.token_urlsafe(32))
        record = self.store.create_refresh_record(user.id, placeholder)
        pair = self.tokens.mint_pair(user, record.id)
        swapped = self.store.update_refresh_record_hash(
            record.id,
            expected_hash=placeholder,
            new_hash=self.hasher.hash(pair.refresh_token),
        )
        if not swapped:
            raise SessionRejected("record_changed_during_open")
        logger.info("Session opened", extra={"user_id": user.id, "session_id": record.id})
        return record.id, pair

    def rotate(self, user_id: str, refresh_token: str, session_id: str) -> TokenPair:
        """
        Exchange refresh_token for a new pair. Raises SessionRejected on any
        mismatch: missing record, wrong owner, stale token, or missing user.
        """
        record = self.store.find_refresh_record_by_id(session_id)
        if record is None:
            raise SessionRejected("unknown_session")
        if record.user_id != user_id:
            raise SessionRejected("owner_mismatch")
        stored_hash = record.token_hash
        if not self.hasher.compare(refresh_token, stored_hash):
            raise SessionRejected("token_mismatch")
        user = self.store.find_user_by_id(user_id)
        if user is None:
            raise SessionRejected("unknown_user")

        pair = self.tokens.mint_pair(user, session_id)
        swapped = self.store.update_refresh_record_hash(
            session_id,
            expected_hash=stored_hash,
            new_hash=self.hasher.hash(pair.refresh_token),
        )
        if not swapped:
            raise SessionRejected("concurrent_rotation")
        return pair

    def revoke(self, session_id: str) -> bool:
        return self.store.delete_refresh_record(session_id)

    def revoke_all(self, user_id: str) -> int:
        return self.store.delete_all_refresh_records_for_user(user_id)
