"""Tests for federated account linking.

Email is the linking key; pre-hijack defense refuses links the provider
does not vouch for, and a lost insert or link race resolves to the winner.
"""

from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from wyzar.core.account_linking import (
    AccountLinkingBlockedError,
    LinkOutcome,
    find_or_create_account_for_federation,
)
from wyzar.core.identity_provider import FederatedIdentity
from wyzar.repositories.account_repository import AccountRepository


def _identity(
    subject_id: str = "idp-123",
    email: str = "jane@example.com",
    *,
    email_verified: bool = True,
) -> FederatedIdentity:
    return FederatedIdentity(
        subject_id=subject_id, email=email, email_verified=email_verified
    )


class TestNewAccountCreation:
    """First sight of an email creates a password-less account."""

    async def test_creates_verified_account(self, db_session: AsyncSession):
        account, outcome = await find_or_create_account_for_federation(
            db=db_session, identity=_identity()
        )

        assert outcome is LinkOutcome.CREATED
        assert account.email == "jane@example.com"
        assert account.federation_subject_id == "idp-123"
        assert account.email_verified is True
        assert account.password_hash is None
        assert account.role == "buyer"


class TestReturningAccount:
    """A known subject id resolves without linking."""

    async def test_existing_subject_returns_existing(
        self, db_session: AsyncSession, make_account
    ):
        existing = await make_account(
            "jane@example.com", federation_subject_id="idp-123"
        )

        account, outcome = await find_or_create_account_for_federation(
            db=db_session, identity=_identity()
        )

        assert outcome is LinkOutcome.EXISTING
        assert account.id == existing.id

    async def test_subject_wins_even_if_provider_email_changed(
        self, db_session: AsyncSession, make_account
    ):
        existing = await make_account(
            "jane@example.com", federation_subject_id="idp-123"
        )

        account, outcome = await find_or_create_account_for_federation(
            db=db_session, identity=_identity(email="jane.new@example.com")
        )

        assert outcome is LinkOutcome.EXISTING
        assert account.id == existing.id


class TestAccountLinking:
    """Existing password account + verified provider email -> linked."""

    async def test_links_subject_to_existing_email(
        self, db_session: AsyncSession, make_account
    ):
        existing = await make_account("jane@example.com")

        account, outcome = await find_or_create_account_for_federation(
            db=db_session, identity=_identity()
        )

        assert outcome is LinkOutcome.LINKED
        assert account.id == existing.id
        assert account.federation_subject_id == "idp-123"
        assert account.email_verified is True
        # Linked state keeps the password
        assert account.password_hash == existing.password_hash

    async def test_second_resolution_after_link_is_existing(
        self, db_session: AsyncSession, make_account
    ):
        await make_account("jane@example.com")
        await find_or_create_account_for_federation(db=db_session, identity=_identity())

        _, outcome = await find_or_create_account_for_federation(
            db=db_session, identity=_identity()
        )

        assert outcome is LinkOutcome.EXISTING


class TestPreHijackDefense:
    """Links that could hand an account to a stranger are refused."""

    async def test_unverified_provider_email_is_blocked(
        self, db_session: AsyncSession, make_account
    ):
        await make_account("jane@example.com")

        with pytest.raises(AccountLinkingBlockedError):
            await find_or_create_account_for_federation(
                db=db_session, identity=_identity(email_verified=False)
            )

    async def test_email_linked_to_other_subject_is_blocked(
        self, db_session: AsyncSession, make_account
    ):
        await make_account("jane@example.com", federation_subject_id="idp-other")

        with pytest.raises(AccountLinkingBlockedError):
            await find_or_create_account_for_federation(
                db=db_session, identity=_identity()
            )

    async def test_blocked_link_leaves_account_untouched(
        self, db_session: AsyncSession, make_account
    ):
        existing = await make_account("jane@example.com")

        with pytest.raises(AccountLinkingBlockedError):
            await find_or_create_account_for_federation(
                db=db_session, identity=_identity(email_verified=False)
            )

        reloaded = await AccountRepository.get_by_id(db_session, existing.id)
        assert reloaded is not None
        assert reloaded.federation_subject_id is None


class TestConcurrentFirstSight:
    """Two first-sight resolutions for one identity end on one account."""

    async def test_lost_insert_race_returns_winner(
        self, db_session: AsyncSession, make_account
    ):
        original_create = AccountRepository.create
        winner_ids = []

        async def racing_create(db, **kwargs):
            # The competing request commits first
            winner = await make_account(
                kwargs["email"],
                password_hash=None,
                federation_subject_id=kwargs["federation_subject_id"],
                email_verified=True,
            )
            winner_ids.append(winner.id)
            return await original_create(db, **kwargs)

        with patch.object(AccountRepository, "create", side_effect=racing_create):
            account, outcome = await find_or_create_account_for_federation(
                db=db_session, identity=_identity()
            )

        assert outcome is LinkOutcome.EXISTING
        assert account.id == winner_ids[0]


class TestConcurrentLink:
    """The conditional link update loses to a writer that linked first."""

    @staticmethod
    def _racing_link(session_factory, competing_subject: str):
        original_link = AccountRepository.link_federation_subject

        async def racing_link(db, account_id, subject_id):
            # The competing request links the same row and commits first
            async with session_factory() as other:
                await original_link(other, account_id, competing_subject)
                await other.commit()
            return await original_link(db, account_id, subject_id)

        return racing_link

    async def test_lost_link_to_same_subject_is_existing(
        self, db_session: AsyncSession, make_account, session_factory
    ):
        existing = await make_account("jane@example.com")
        racing_link = self._racing_link(session_factory, "idp-123")

        with patch.object(
            AccountRepository, "link_federation_subject", side_effect=racing_link
        ):
            account, outcome = await find_or_create_account_for_federation(
                db=db_session, identity=_identity()
            )

        assert outcome is LinkOutcome.EXISTING
        assert account.id == existing.id
        assert account.federation_subject_id == "idp-123"

    async def test_lost_link_to_other_subject_is_blocked(
        self, db_session: AsyncSession, make_account, session_factory
    ):
        existing = await make_account("jane@example.com")
        racing_link = self._racing_link(session_factory, "idp-other")

        with (
            patch.object(
                AccountRepository, "link_federation_subject", side_effect=racing_link
            ),
            pytest.raises(AccountLinkingBlockedError),
        ):
            await find_or_create_account_for_federation(
                db=db_session, identity=_identity()
            )

        async with session_factory() as session:
            reloaded = await AccountRepository.get_by_id(session, existing.id)
        assert reloaded is not None
        assert reloaded.federation_subject_id == "idp-other"
