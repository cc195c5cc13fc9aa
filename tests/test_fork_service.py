"""Tests for ForkService: access rules, copy fidelity, and failure handling."""

import logging
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from Advisor.crud import conversations as conversation_crud
from Advisor.errors import AlreadyOwned, CopyFailed, CreateFailed, NotAMember, NotShared, SourceNotFound
from Advisor.models import Conversation
from Advisor.services.conversation_service import ConversationService
from Advisor.services.fork_service import ForkService, ForkStrategy, _get_fork_strategy
from Advisor.services.message_service import MessageService
from tests.factories import add_member, create_conversation, create_organization, message_tuples

SECTIONS = [
    {"name": "Summary", "content": "Raise prices 8%"},
    {"name": "Risks", "content": "Churn in the SMB tier"},
]


@pytest.fixture
def org(db):
    organization = create_organization(db)
    add_member(db, organization, "alice", role="owner")
    add_member(db, organization, "bob", role="member")
    return organization


@pytest.fixture
def shared_source(db, org):
    return create_conversation(
        db,
        "alice",
        org,
        title="Pricing strategy",
        is_shared=True,
        messages=[
            {"role": "user", "content": "Q1"},
            {"role": "assistant", "content": "", "sections": SECTIONS},
        ],
    )


def _forks_of(db, source_id):
    db.expire_all()
    stmt = select(Conversation).where(Conversation.forked_from_conversation_id == source_id)
    return list(db.execute(stmt).scalars().all())


class TestForkAccess:
    def test_missing_source(self, db, org):
        with pytest.raises(SourceNotFound):
            ForkService(db).fork("does-not-exist", "bob")

    def test_owner_cannot_fork(self, db, shared_source):
        with pytest.raises(AlreadyOwned) as exc_info:
            ForkService(db).fork(shared_source.id, "alice")
        assert exc_info.value.message == "You already own this conversation"

    def test_private_conversation_cannot_be_forked(self, db, org):
        private = create_conversation(db, "alice", org, is_shared=False)

        with pytest.raises(NotShared):
            ForkService(db).fork(private.id, "bob")

    def test_outsider_cannot_fork(self, db, shared_source):
        other = create_organization(db, name="Globex")
        add_member(db, other, "carol")

        with pytest.raises(NotAMember):
            ForkService(db).fork(shared_source.id, "carol")
        assert _forks_of(db, shared_source.id) == []


@pytest.mark.parametrize("strategy", [ForkStrategy.TRANSACTION, ForkStrategy.COMPENSATE])
class TestForkCopy:
    def test_alice_bob_scenario(self, db, org, shared_source, strategy):
        result = ForkService(db, strategy=strategy).fork(shared_source.id, "bob")

        forked = result.conversation
        assert result.message_count == 2
        assert forked.id != shared_source.id
        assert forked.user_id == "bob"
        assert forked.organization_id == org.id
        assert forked.advisor_mode_id == shared_source.advisor_mode_id
        assert forked.is_shared is False
        assert forked.forked_from_conversation_id == shared_source.id
        assert forked.title == "Pricing strategy (Copy)"
        assert message_tuples(db, forked.id) == message_tuples(db, shared_source.id)

    def test_positions_are_copied_verbatim(self, db, org, strategy):
        source = create_conversation(
            db,
            "alice",
            org,
            is_shared=True,
            messages=[
                {"role": "user", "content": "first", "position": 0},
                {"role": "assistant", "content": "second", "position": 1},
                {"role": "user", "content": "third", "position": 5},
            ],
        )

        result = ForkService(db, strategy=strategy).fork(source.id, "bob")

        copied = message_tuples(db, result.conversation.id)
        assert [p for _, _, _, p in copied] == [0, 1, 5]
        assert [c for _, c, _, _ in copied] == ["first", "second", "third"]

    def test_empty_history(self, db, org, strategy):
        source = create_conversation(db, "alice", org, is_shared=True)

        result = ForkService(db, strategy=strategy).fork(source.id, "bob")

        assert result.message_count == 0
        assert conversation_crud.get_conversation(db, result.conversation.id) is not None
        assert message_tuples(db, result.conversation.id) == []

    def test_copies_get_new_identities(self, db, shared_source, strategy):
        result = ForkService(db, strategy=strategy).fork(shared_source.id, "bob")

        source_ids = {m.id for m in conversation_crud.list_messages(db, shared_source.id)}
        fork_ids = {m.id for m in conversation_crud.list_messages(db, result.conversation.id)}
        assert source_ids.isdisjoint(fork_ids)

    def test_copy_failure_leaves_no_fork(self, db, shared_source, strategy):
        with patch.object(conversation_crud, "insert_messages", side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))):
            with pytest.raises(CopyFailed):
                ForkService(db, strategy=strategy).fork(shared_source.id, "bob")

        assert _forks_of(db, shared_source.id) == []
        assert len(message_tuples(db, shared_source.id)) == 2

    def test_message_read_failure_leaves_no_fork(self, db, shared_source, strategy):
        with patch.object(conversation_crud, "list_messages", side_effect=SQLAlchemyError("timeout")):
            with pytest.raises(CopyFailed):
                ForkService(db, strategy=strategy).fork(shared_source.id, "bob")

        assert _forks_of(db, shared_source.id) == []

    def test_create_failure(self, db, shared_source, strategy):
        with patch.object(conversation_crud, "create_conversation", side_effect=SQLAlchemyError("constraint")):
            with pytest.raises(CreateFailed):
                ForkService(db, strategy=strategy).fork(shared_source.id, "bob")

        assert _forks_of(db, shared_source.id) == []


class TestCompensation:
    def test_successful_compensation_is_logged(self, db, shared_source, caplog):
        with caplog.at_level(logging.WARNING, logger="Advisor.services.fork_service"):
            with patch.object(conversation_crud, "insert_messages", side_effect=SQLAlchemyError("boom")):
                with pytest.raises(CopyFailed):
                    ForkService(db, strategy=ForkStrategy.COMPENSATE).fork(shared_source.id, "bob")

        assert "Deleted partially forked conversation" in caplog.text

    def test_failed_compensation_reports_original_error_and_logs_orphan(self, db, shared_source, caplog):
        with caplog.at_level(logging.ERROR, logger="Advisor.services.fork_service"):
            with patch.object(conversation_crud, "insert_messages", side_effect=SQLAlchemyError("boom")), \
                    patch.object(conversation_crud, "delete_conversation", side_effect=SQLAlchemyError("gone")):
                with pytest.raises(CopyFailed):
                    ForkService(db, strategy=ForkStrategy.COMPENSATE).fork(shared_source.id, "bob")

        orphans = _forks_of(db, shared_source.id)
        assert len(orphans) == 1
        assert message_tuples(db, orphans[0].id) == []
        assert "orphaned forked conversation" in caplog.text
        assert orphans[0].id in caplog.text


class TestTransactionCommitFailure:
    def test_failed_commit_reports_copy_failed(self, db, shared_source, caplog):
        """The connection may be gone after a failed commit, so nothing reloads after the rollback."""
        source_id = shared_source.id
        real_rollback = db.rollback
        real_execute = db.execute
        connection = {"lost": False}

        def rollback_and_lose_connection():
            real_rollback()
            connection["lost"] = True

        def execute(*args, **kwargs):
            if connection["lost"]:
                raise OperationalError("SELECT", {}, Exception("server closed the connection"))
            return real_execute(*args, **kwargs)

        with caplog.at_level(logging.ERROR, logger="Advisor.services.fork_service"):
            with patch.object(db, "commit", side_effect=OperationalError("COMMIT", {}, Exception("server closed the connection"))), \
                    patch.object(db, "rollback", side_effect=rollback_and_lose_connection), \
                    patch.object(db, "execute", side_effect=execute):
                with pytest.raises(CopyFailed):
                    ForkService(db, strategy=ForkStrategy.TRANSACTION).fork(source_id, "bob")

        assert f"Commit failed while forking {source_id}" in caplog.text
        assert _forks_of(db, source_id) == []
        assert len(message_tuples(db, source_id)) == 2


class TestForkIndependence:
    def test_editing_the_fork_leaves_the_source_alone(self, db, shared_source):
        forked = ForkService(db).fork(shared_source.id, "bob").conversation
        before = message_tuples(db, shared_source.id)

        ConversationService(db).update_conversation(
            requester_id="bob", conversation_id=forked.id, title="Bob's take", is_shared=True
        )
        MessageService(db).append(forked.id, "user", "follow-up", requester_id="bob")

        source = conversation_crud.get_conversation(db, shared_source.id)
        db.refresh(source)
        assert source.title == "Pricing strategy"
        assert source.is_shared is True
        assert source.user_id == "alice"
        assert message_tuples(db, shared_source.id) == before
        assert [p for *_, p in message_tuples(db, forked.id)] == [0, 1, 2]

    def test_editing_the_source_leaves_the_fork_alone(self, db, shared_source):
        forked = ForkService(db).fork(shared_source.id, "bob").conversation
        before = message_tuples(db, forked.id)

        MessageService(db).append(shared_source.id, "user", "Q2", requester_id="alice")
        ConversationService(db).update_conversation(
            requester_id="alice", conversation_id=shared_source.id, title="Renamed", is_shared=False
        )

        fork = conversation_crud.get_conversation(db, forked.id)
        db.refresh(fork)
        assert fork.title == "Pricing strategy (Copy)"
        assert fork.is_shared is False
        assert message_tuples(db, forked.id) == before

    def test_deleting_the_source_keeps_the_fork(self, db, shared_source):
        forked = ForkService(db).fork(shared_source.id, "bob").conversation

        ConversationService(db).delete_conversation(requester_id="alice", conversation_id=shared_source.id)

        fork = conversation_crud.get_conversation(db, forked.id)
        db.refresh(fork)
        assert fork.forked_from_conversation_id is None
        assert len(message_tuples(db, forked.id)) == 2


class TestForkStrategyConfig:
    def test_defaults_to_transaction(self, monkeypatch):
        monkeypatch.delenv("FORK_STRATEGY", raising=False)
        assert _get_fork_strategy() is ForkStrategy.TRANSACTION

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("FORK_STRATEGY", "Compensate")
        assert _get_fork_strategy() is ForkStrategy.COMPENSATE

    def test_unknown_value_falls_back(self, monkeypatch, caplog):
        monkeypatch.setenv("FORK_STRATEGY", "two-phase")
        with caplog.at_level(logging.WARNING):
            assert _get_fork_strategy() is ForkStrategy.TRANSACTION
        assert "Unknown FORK_STRATEGY" in caplog.text
