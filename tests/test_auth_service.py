"""Flow tests for AuthService over SQLite: register, verify, OTP login, refresh, logout."""

import unittest
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

from sqlalchemy.exc import OperationalError

from celestial.core.errors import (
    AlreadyExistsError,
    BadRequestError,
    ForbiddenError,
    InternalError,
    OtpCooldownError,
    UnauthorizedError,
)
from celestial.core.tokens import TokenPurpose
from celestial.services.auth import AuthService
from celestial.services.store import SqlCredentialStore, StoreError
from celestial.services.tokens import SESSION_CLAIM, TokenService
from tests.support import (
    AUTH_SECRET,
    FakeClock,
    RecordingMailer,
    hasher,
    make_session,
    make_settings,
)

PASSWORD = "Secret123!"


class AuthServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = make_settings()
        self.session = make_session()
        self.store = SqlCredentialStore(self.session)
        self.mailer = RecordingMailer()
        self.clock = FakeClock(datetime.now(UTC))
        self.tokens = TokenService(self.settings)
        self.auth = AuthService(
            self.store, hasher, self.tokens, self.mailer, self.settings, clock=self.clock
        )

    def tearDown(self) -> None:
        self.session.close()

    def register_alice(self):
        return self.auth.register("alice", "alice@x.com", PASSWORD)

    def verified_alice(self):
        self.register_alice()
        self.auth.verify_email(self.mailer.last_verification_token())
        return self.store.find_user_by_username("alice")

    def login(self, user):
        self.auth.send_otp(user)
        return self.auth.login(self.store.find_user_by_id(user.id), self.mailer.last_otp())


class TestRegister(AuthServiceTestCase):
    def test_register_creates_unverified_user_with_hashed_password(self) -> None:
        user = self.register_alice()
        self.assertFalse(user.is_verified)
        for value in (user.password_hash, user.username, user.email, user.verification_token):
            self.assertNotIn(PASSWORD, value)
        self.assertTrue(hasher.compare(PASSWORD, user.password_hash))

    def test_register_mails_verification_link(self) -> None:
        user = self.register_alice()
        to, subject, body = self.mailer.sent[-1]
        self.assertEqual(to, "alice@x.com")
        self.assertEqual(subject, "Verification")
        self.assertIn("http://localhost:8000/api/v1/auth/verify/", body)
        token = self.mailer.last_verification_token()
        self.assertEqual(self.store.find_user_by_id(user.id).verification_token, token)
        self.assertEqual(self.tokens.verify_verification(token)["sub"], user.id)

    def test_duplicate_username_or_email_already_exists(self) -> None:
        self.register_alice()
        with self.assertRaises(AlreadyExistsError):
            self.auth.register("alice", "other@x.com", PASSWORD)
        with self.assertRaises(AlreadyExistsError):
            self.auth.register("alice2", "alice@x.com", PASSWORD)

    def test_mail_failure_does_not_undo_registration(self) -> None:
        self.mailer.fail = True
        user = self.register_alice()
        stored = self.store.find_user_by_id(user.id)
        self.assertIsNotNone(stored)
        self.assertIsNotNone(stored.verification_token)


class TestAuthenticate(AuthServiceTestCase):
    def test_correct_password(self) -> None:
        user = self.register_alice()
        self.assertEqual(self.auth.authenticate("alice", PASSWORD).id, user.id)

    def test_decoy_digest_computed_once_per_cost(self) -> None:
        counting = MagicMock()
        counting.hash.return_value = "decoy"
        counting.compare.return_value = False
        with patch.dict("celestial.services.auth._decoy_digests", clear=True):
            for _ in range(2):
                auth = AuthService(self.store, counting, self.tokens, self.mailer, self.settings)
                with self.assertRaises(UnauthorizedError):
                    auth.authenticate("nobody", PASSWORD)
        counting.hash.assert_called_once()
        counting.compare.assert_called_with(PASSWORD, "decoy")

    def test_wrong_password_and_unknown_user_look_the_same(self) -> None:
        self.register_alice()
        with self.assertRaises(UnauthorizedError) as wrong:
            self.auth.authenticate("alice", "Wrong123!")
        with self.assertRaises(UnauthorizedError) as unknown:
            self.auth.authenticate("nobody", PASSWORD)
        self.assertEqual(wrong.exception.message, unknown.exception.message)


class TestVerifyEmail(AuthServiceTestCase):
    def test_verification_marks_verified_and_opens_session(self) -> None:
        user = self.register_alice()
        pair = self.auth.verify_email(self.mailer.last_verification_token())
        stored = self.store.find_user_by_id(user.id)
        self.assertTrue(stored.is_verified)
        self.assertIsNone(stored.verification_token)
        claims = self.tokens.verify_access(pair.access_token)
        self.assertTrue(claims["isVerified"])
        self.auth.refresh(pair.refresh_token)

    def test_verification_link_is_single_use(self) -> None:
        self.register_alice()
        token = self.mailer.last_verification_token()
        self.auth.verify_email(token)
        with self.assertRaises(UnauthorizedError):
            self.auth.verify_email(token)

    def test_bad_or_foreign_tokens_unauthorized(self) -> None:
        user = self.register_alice()
        with self.assertRaises(UnauthorizedError):
            self.auth.verify_email("garbage")
        access = self.tokens.mint_access(user)
        with self.assertRaises(UnauthorizedError):
            self.auth.verify_email(access)

    def test_expired_verification_token_unauthorized(self) -> None:
        user = self.register_alice()
        stale = self.tokens.codec.sign(
            user.id,
            60,
            self.settings.VERIFICATION_SECRET.get_secret_value(),
            TokenPurpose.VERIFICATION,
            now=datetime.now(UTC) - timedelta(hours=1),
        )
        self.store.update_user(user.id, verification_token=stale)
        with self.assertRaises(UnauthorizedError):
            self.auth.verify_email(stale)


class TestReverify(AuthServiceTestCase):
    def test_reverify_replaces_link(self) -> None:
        user = self.register_alice()
        old = self.mailer.last_verification_token()
        self.auth.reverify(self.store.find_user_by_id(user.id))
        new = self.mailer.last_verification_token()
        self.assertNotEqual(old, new)
        with self.assertRaises(UnauthorizedError):
            self.auth.verify_email(old)
        self.auth.verify_email(new)

    def test_reverify_verified_user_is_bad_request(self) -> None:
        user = self.verified_alice()
        with self.assertRaises(BadRequestError):
            self.auth.reverify(user)


class TestLogin(AuthServiceTestCase):
    def test_unverified_user_forbidden(self) -> None:
        user = self.register_alice()
        self.auth.send_otp(user)
        with self.assertRaises(ForbiddenError) as ctx:
            self.auth.login(self.store.find_user_by_id(user.id), self.mailer.last_otp())
        self.assertEqual(ctx.exception.message, "User is not verified!")

    def test_no_pending_otp_forbidden(self) -> None:
        user = self.verified_alice()
        with self.assertRaises(ForbiddenError):
            self.auth.login(user, "1234")

    def test_wrong_otp_forbidden(self) -> None:
        user = self.verified_alice()
        self.auth.send_otp(user)
        code = self.mailer.last_otp()
        wrong = "1000" if code != "1000" else "1001"
        with self.assertRaises(ForbiddenError):
            self.auth.login(self.store.find_user_by_id(user.id), wrong)

    def test_expired_otp_forbidden(self) -> None:
        user = self.verified_alice()
        self.auth.send_otp(user)
        code = self.mailer.last_otp()
        self.clock.advance(self.settings.OTP_EXPIRY_SECONDS + 1)
        with self.assertRaises(ForbiddenError):
            self.auth.login(self.store.find_user_by_id(user.id), code)

    def test_otp_failures_share_one_message(self) -> None:
        user = self.verified_alice()
        with self.assertRaises(ForbiddenError) as none_pending:
            self.auth.login(user, "1234")
        self.auth.send_otp(user)
        code = self.mailer.last_otp()
        with self.assertRaises(ForbiddenError) as mismatch:
            self.auth.login(self.store.find_user_by_id(user.id), "1000" if code != "1000" else "1001")
        self.assertEqual(none_pending.exception.message, mismatch.exception.message)

    def test_successful_login_clears_otp(self) -> None:
        user = self.verified_alice()
        pair = self.login(user)
        stored = self.store.find_user_by_id(user.id)
        self.assertIsNone(stored.otp_hash)
        self.assertIsNone(stored.otp_issued_at)
        self.assertEqual(self.tokens.verify_access(pair.access_token)["sub"], user.id)


class TestSendOtp(AuthServiceTestCase):
    def test_deleted_user_unauthorized(self) -> None:
        user = self.verified_alice()
        ghost = MagicMock(id=user.id)
        self.store.delete_user(user.id)
        with self.assertRaises(UnauthorizedError):
            self.auth.send_otp(ghost)

    def test_cooldown_enforced(self) -> None:
        user = self.verified_alice()
        self.auth.send_otp(user)
        self.clock.advance(1)
        with self.assertRaises(OtpCooldownError) as ctx:
            self.auth.send_otp(user)
        self.assertEqual(ctx.exception.wait_seconds, 59)


class TestRefreshAndLogout(AuthServiceTestCase):
    def test_invalid_refresh_tokens_are_access_denied(self) -> None:
        user = self.verified_alice()
        pair = self.login(user)
        for token in ("garbage", pair.access_token, self.tokens.mint_verification(user)):
            with self.assertRaises(ForbiddenError) as ctx:
                self.auth.refresh(token)
            self.assertEqual(ctx.exception.message, "Access Denied!")

    def test_refresh_for_deleted_session_is_access_denied(self) -> None:
        user = self.verified_alice()
        pair = self.login(user)
        claims = self.tokens.verify_refresh(pair.refresh_token)
        self.store.delete_refresh_record(claims[SESSION_CLAIM])
        with self.assertRaises(ForbiddenError) as ctx:
            self.auth.refresh(pair.refresh_token)
        self.assertEqual(ctx.exception.message, "Access Denied!")

    def test_logout_accepts_expired_refresh_token(self) -> None:
        user = self.verified_alice()
        pair = self.login(user)
        session_id = self.tokens.verify_refresh(pair.refresh_token)[SESSION_CLAIM]
        expired = self.tokens.codec.sign(
            user.id,
            60,
            AUTH_SECRET,
            TokenPurpose.REFRESH,
            {SESSION_CLAIM: session_id},
            now=datetime.now(UTC) - timedelta(days=30),
        )
        self.assertTrue(self.auth.logout(expired))
        self.assertIsNone(self.store.find_refresh_record_by_id(session_id))

    def test_logout_ignores_unreadable_token(self) -> None:
        self.assertFalse(self.auth.logout("garbage"))

    def test_logout_all_kills_every_session(self) -> None:
        user = self.verified_alice()
        first = self.login(user)
        self.clock.advance(self.settings.OTP_COOLDOWN_SECONDS)
        second = self.login(user)
        rotated = self.auth.refresh(second.refresh_token)
        self.assertEqual(self.auth.logout_all(user.id), 3)
        for token in (first.refresh_token, second.refresh_token, rotated.refresh_token):
            with self.assertRaises(ForbiddenError):
                self.auth.refresh(token)


class TestStorageFailures(AuthServiceTestCase):
    """Storage failures never escape raw: Internal on session open, Access Denied on refresh."""

    def test_login_session_storage_failure_is_internal(self) -> None:
        user = self.verified_alice()
        self.auth.send_otp(user)
        code = self.mailer.last_otp()
        with patch.object(self.store, "create_refresh_record", side_effect=StoreError("db down")):
            with self.assertRaises(InternalError) as ctx:
                self.auth.login(self.store.find_user_by_id(user.id), code)
        self.assertEqual(ctx.exception.message, "Something went wrong")

    def test_session_record_changed_during_open_is_internal(self) -> None:
        user = self.verified_alice()
        self.auth.send_otp(user)
        code = self.mailer.last_otp()
        with patch.object(self.store, "update_refresh_record_hash", return_value=False):
            with self.assertRaises(InternalError):
                self.auth.login(self.store.find_user_by_id(user.id), code)

    def test_verify_email_session_storage_failure_is_internal(self) -> None:
        self.register_alice()
        token = self.mailer.last_verification_token()
        with patch.object(self.store, "create_refresh_record", side_effect=StoreError("db down")):
            with self.assertRaises(InternalError):
                self.auth.verify_email(token)

    def test_refresh_read_failure_is_access_denied(self) -> None:
        user = self.verified_alice()
        pair = self.login(user)
        db_down = OperationalError("SELECT 1", {}, Exception("database is unavailable"))
        with patch.object(self.session, "get", side_effect=db_down):
            with self.assertRaises(ForbiddenError) as ctx:
                self.auth.refresh(pair.refresh_token)
        self.assertEqual(ctx.exception.message, "Access Denied!")

class TestCurrentUser(AuthServiceTestCase):
    def test_access_token_resolves_user(self) -> None:
        user = self.verified_alice()
        pair = self.login(user)
        self.assertEqual(self.auth.current_user(pair.access_token).id, user.id)

    def test_refresh_token_is_not_an_access_token(self) -> None:
        user = self.verified_alice()
        pair = self.login(user)
        with self.assertRaises(UnauthorizedError):
            self.auth.current_user(pair.refresh_token)

    def test_unverified_user_forbidden(self) -> None:
        user = self.register_alice()
        with self.assertRaises(ForbiddenError):
            self.auth.current_user(self.tokens.mint_access(user))


class TestAliceScenario(AuthServiceTestCase):
    """register -> verify -> password + OTP login -> refresh once -> reuse fails -> logout."""

    def test_full_lifecycle(self) -> None:
        self.auth.register("alice", "alice@x.com", "Secret123!")
        self.auth.verify_email(self.mailer.last_verification_token())

        user = self.auth.authenticate("alice", "Secret123!")
        self.clock.advance(self.settings.OTP_COOLDOWN_SECONDS)
        self.auth.send_otp(user)
        pair = self.auth.login(self.auth.authenticate("alice", "Secret123!"), self.mailer.last_otp())

        rotated = self.auth.refresh(pair.refresh_token)
        with self.assertRaises(ForbiddenError):
            self.auth.refresh(pair.refresh_token)

        self.assertTrue(self.auth.logout(rotated.refresh_token))
        with self.assertRaises(ForbiddenError):
            self.auth.refresh(rotated.refresh_token)
        with self.assertRaises(ForbiddenError):
            self.auth.refresh(pair.refresh_token)


if __name__ == "__main__":
    unittest.main()
