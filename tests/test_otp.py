"""
Tests for the OTP challenge manager: issuing, single-use verification, expiry,
re-issue invalidation, template validation and delivery failures.
"""

import asyncio

import pytest

from social.graze.wallet.identity.errors import (
    DeliveryError,
    InvalidTemplate,
    VerificationFailed,
)
from social.graze.wallet.identity.otp import (
    MessageParameters,
    OTPChallengeManager,
    VerificationFailure,
    code_digest,
)
from tests.test_helpers import FailingTransport


PRINCIPAL = "holder@example.com"


class TestMessageParameters:
    def test_render_replaces_placeholder(self):
        message_parameters = MessageParameters(
            message="Code: {{CODE}}",
            subject="Sign in",
            html_message="<b>{{CODE}}</b>",
        )
        rendered = message_parameters.render("123456")
        assert rendered.subject == "Sign in"
        assert rendered.body == "Code: 123456"
        assert rendered.html_body == "<b>123456</b>"

    def test_render_without_placeholder(self):
        with pytest.raises(InvalidTemplate):
            MessageParameters(message="no code here", subject="x").render("123456")


class TestIssue:
    async def test_issue_delivers_code(self, otp_manager, transport, message_parameters):
        """Test a code of the configured length reaches the transport."""
        token = await otp_manager.issue(PRINCIPAL, message_parameters)

        assert token
        code = transport.last_code(PRINCIPAL)
        assert len(code) == 6
        assert code.isdigit()

        challenge = await otp_manager.get(token)
        assert challenge is not None
        assert challenge.principal == PRINCIPAL
        assert challenge.consumed is False
        assert challenge.code_digest == code_digest(token, code)
        assert code not in challenge.code_digest

    async def test_issue_sets_ttl(self, otp_manager, fake_redis, message_parameters):
        token = await otp_manager.issue(PRINCIPAL, message_parameters)
        ttl = await fake_redis.ttl(otp_manager.challenge_key(token))
        assert 0 < ttl <= 600

    async def test_alphanumeric_codes(self, fake_redis, transport, message_parameters):
        manager = OTPChallengeManager(
            fake_redis, transport, code_length=8, alphanumeric=True
        )
        await manager.issue(PRINCIPAL, message_parameters)
        code = transport.last_code(PRINCIPAL)
        assert len(code) == 8
        assert all(c.isdigit() or c.isupper() for c in code)

    async def test_invalid_template_issues_nothing(self, otp_manager, transport, fake_redis):
        with pytest.raises(InvalidTemplate):
            await otp_manager.issue(
                PRINCIPAL, MessageParameters(message="hello", subject="x")
            )
        assert transport.messages == []
        assert await fake_redis.keys("*") == []

    async def test_delivery_error_discards_challenge(
        self, fake_redis, message_parameters
    ):
        failing_transport = FailingTransport()
        manager = OTPChallengeManager(fake_redis, failing_transport)

        with pytest.raises(DeliveryError):
            await manager.issue(PRINCIPAL, message_parameters)

        assert failing_transport.attempts == 1
        assert await fake_redis.keys("*") == []

    async def test_reissue_invalidates_previous(
        self, otp_manager, transport, message_parameters
    ):
        """Test only the newest challenge for a principal stays pending."""
        first_token = await otp_manager.issue(PRINCIPAL, message_parameters)
        first_code = transport.last_code(PRINCIPAL)
        second_token = await otp_manager.issue(PRINCIPAL, message_parameters)
        second_code = transport.last_code(PRINCIPAL)

        assert first_token != second_token
        assert await otp_manager.check(first_token, first_code) == VerificationFailure.UNKNOWN
        await otp_manager.verify(second_token, second_code)

    async def test_other_principals_unaffected(
        self, otp_manager, transport, message_parameters
    ):
        token_a = await otp_manager.issue("a@example.com", message_parameters)
        code_a = transport.last_code("a@example.com")
        await otp_manager.issue("b@example.com", message_parameters)

        await otp_manager.verify(token_a, code_a)


class TestVerify:
    async def test_verify_consumes(self, otp_manager, transport, message_parameters):
        token = await otp_manager.issue(PRINCIPAL, message_parameters)
        code = transport.last_code(PRINCIPAL)

        await otp_manager.verify(token, code)

        challenge = await otp_manager.get(token)
        assert challenge is not None
        assert challenge.consumed is True

    async def test_replay_fails(self, otp_manager, transport, message_parameters):
        token = await otp_manager.issue(PRINCIPAL, message_parameters)
        code = transport.last_code(PRINCIPAL)
        await otp_manager.verify(token, code)

        assert await otp_manager.check(token, code) == VerificationFailure.ALREADY_CONSUMED
        with pytest.raises(VerificationFailed):
            await otp_manager.verify(token, code)

    async def test_wrong_code_leaves_challenge_pending(
        self, otp_manager, transport, message_parameters
    ):
        token = await otp_manager.issue(PRINCIPAL, message_parameters)
        code = transport.last_code(PRINCIPAL)
        wrong_code = "000000" if code != "000000" else "111111"

        assert await otp_manager.check(token, wrong_code) == VerificationFailure.CODE_MISMATCH
        with pytest.raises(VerificationFailed):
            await otp_manager.verify(token, wrong_code)

        await otp_manager.verify(token, code)

    async def test_unknown_token(self, otp_manager):
        assert await otp_manager.check("nope", "123456") == VerificationFailure.UNKNOWN
        with pytest.raises(VerificationFailed):
            await otp_manager.verify("nope", "123456")

    async def test_expiry_boundary(self, otp_manager, transport, clock, message_parameters):
        """Test a code is accepted just before expiry and rejected at expiry."""
        token = await otp_manager.issue(PRINCIPAL, message_parameters)
        code = transport.last_code(PRINCIPAL)

        clock.advance(599)
        assert (await otp_manager.get(token)) is not None

        clock.advance(1)
        assert await otp_manager.check(token, code) == VerificationFailure.EXPIRED
        with pytest.raises(VerificationFailed):
            await otp_manager.verify(token, code)

    async def test_errors_do_not_reveal_reason(
        self, otp_manager, transport, clock, message_parameters
    ):
        token = await otp_manager.issue(PRINCIPAL, message_parameters)
        code = transport.last_code(PRINCIPAL)

        messages = set()
        for candidate_token, candidate_code in [("nope", code), (token, "bad")]:
            with pytest.raises(VerificationFailed) as exc_info:
                await otp_manager.verify(candidate_token, candidate_code)
            messages.add(str(exc_info.value))

        clock.advance(600)
        with pytest.raises(VerificationFailed) as exc_info:
            await otp_manager.verify(token, code)
        messages.add(str(exc_info.value))

        assert len(messages) == 1

    async def test_concurrent_verification_has_one_winner(
        self, otp_manager, transport, message_parameters
    ):
        token = await otp_manager.issue(PRINCIPAL, message_parameters)
        code = transport.last_code(PRINCIPAL)

        results = await asyncio.gather(
            *[otp_manager.verify(token, code) for _ in range(5)],
            return_exceptions=True,
        )

        assert sum(1 for result in results if result is None) == 1
        assert all(
            isinstance(result, VerificationFailed)
            for result in results
            if result is not None
        )


class TestReleaseAndDiscard:
    async def test_release_allows_retry(self, otp_manager, transport, message_parameters):
        token = await otp_manager.issue(PRINCIPAL, message_parameters)
        code = transport.last_code(PRINCIPAL)
        await otp_manager.verify(token, code)

        await otp_manager.release(token)

        await otp_manager.verify(token, code)

    async def test_discard(self, otp_manager, transport, fake_redis, message_parameters):
        token = await otp_manager.issue(PRINCIPAL, message_parameters)
        code = transport.last_code(PRINCIPAL)

        await otp_manager.discard(token)

        assert await otp_manager.get(token) is None
        assert await fake_redis.get(otp_manager.principal_key(PRINCIPAL)) is None
        with pytest.raises(VerificationFailed):
            await otp_manager.verify(token, code)
