"""
tests/test_ingest.py
~~~~~~~~~~~~~~~~~~~~
Tests for steuerbuch.ingest — idempotent, balance-checked statement storage.
"""

from __future__ import annotations

from datetime import date

import pytest

from steuerbuch.exceptions import BalanceMismatchError, DuplicateImportError, IngestError
from steuerbuch.ingest import StatementIngestor, compute_content_hash
from steuerbuch.money import Money
from steuerbuch.parsers.camt import CAMT053Decoder
from steuerbuch.parsers.delimited import DelimitedDecoder


@pytest.fixture
def parsed(default_config, csv_bytes):
    return DelimitedDecoder(default_config).decode(csv_bytes)


@pytest.fixture
def ingestor(repo, default_config) -> StatementIngestor:
    return StatementIngestor(repo, default_config)


class TestContentHash:
    def test_deterministic(self):
        a = compute_content_hash(b"abc", "DE1", date(2024, 1, 31))
        b = compute_content_hash(b"abc", "DE1", date(2024, 1, 31))
        assert a == b
        assert len(a) == 64

    def test_depends_on_account_and_date(self):
        base = compute_content_hash(b"abc", "DE1", date(2024, 1, 31))
        assert compute_content_hash(b"abc", "DE2", date(2024, 1, 31)) != base
        assert compute_content_hash(b"abc", "DE1", date(2024, 2, 1)) != base
        assert compute_content_hash(b"abd", "DE1", date(2024, 1, 31)) != base


class TestIngest:
    def test_new_statement_stored(self, ingestor, repo, parsed, csv_bytes):
        statement, created = ingestor.ingest("acme", parsed, csv_bytes)
        assert created is True
        stored = repo.get_statement(statement.id)
        assert stored is not None
        assert stored.closing_balance == Money(125000)
        assert stored.transaction_count == 1
        assert [t.position for t in stored.transactions] == [1]
        assert stored.transactions[0].company_id == "acme"
        assert stored.content_hash == compute_content_hash(csv_bytes, parsed.account_id, parsed.statement_date)

    def test_value_date_stored(self, ingestor, repo, default_config, camt_bytes):
        parsed_camt = CAMT053Decoder(default_config).decode(camt_bytes)
        statement, _ = ingestor.ingest("acme", parsed_camt, camt_bytes)
        stored = repo.list_transactions(statement.id)[0]
        assert stored.value_date == date(2024, 1, 25)
        assert stored.to_dict()["value_date"] == "2024-01-25"

    def test_value_date_absent_stays_none(self, ingestor, repo, parsed, csv_bytes):
        statement, _ = ingestor.ingest("acme", parsed, csv_bytes)
        assert repo.list_transactions(statement.id)[0].value_date is None

    def test_same_file_twice_is_idempotent(self, ingestor, repo, parsed, csv_bytes):
        first, created_first = ingestor.ingest("acme", parsed, csv_bytes)
        second, created_second = ingestor.ingest("acme", parsed, csv_bytes)
        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert len(repo.list_statements("acme")) == 1
        assert len(repo.list_transactions(first.id)) == 1

    def test_same_file_for_other_company_is_separate(self, ingestor, repo, parsed, csv_bytes):
        a, _ = ingestor.ingest("acme", parsed, csv_bytes)
        b, created = ingestor.ingest("globex", parsed, csv_bytes)
        assert created is True
        assert a.id != b.id

    def test_unbalanced_statement_not_stored(self, ingestor, repo, parsed, csv_bytes):
        parsed.closing_balance = Money(125001)
        with pytest.raises(BalanceMismatchError):
            ingestor.ingest("acme", parsed, csv_bytes)
        assert repo.list_statements("acme") == []

    def test_company_required(self, ingestor, parsed, csv_bytes):
        with pytest.raises(IngestError):
            ingestor.ingest("  ", parsed, csv_bytes)

    def test_concurrent_duplicate_returns_winner(self, mocker, parsed, csv_bytes):
        winner = mocker.Mock(id="winner-id")
        repository = mocker.Mock()
        repository.find_statement.return_value = None
        repository.save_statement.side_effect = DuplicateImportError("dup", existing_id="winner-id")
        repository.get_statement.return_value = winner

        statement, created = StatementIngestor(repository).ingest("acme", parsed, csv_bytes)
        assert statement is winner
        assert created is False
        repository.get_statement.assert_called_once_with("winner-id")


class TestListeners:
    def test_called_once_for_new_statement(self, ingestor, parsed, csv_bytes, mocker):
        listener = mocker.Mock()
        ingestor.add_listener(listener)
        statement, _ = ingestor.ingest("acme", parsed, csv_bytes)
        ingestor.ingest("acme", parsed, csv_bytes)
        listener.assert_called_once_with(statement)

    def test_not_called_when_balance_fails(self, ingestor, parsed, csv_bytes, mocker):
        listener = mocker.Mock()
        ingestor.add_listener(listener)
        parsed.closing_balance = Money(0)
        with pytest.raises(BalanceMismatchError):
            ingestor.ingest("acme", parsed, csv_bytes)
        listener.assert_not_called()

    def test_failing_listener_does_not_undo_import(self, repo, default_config, parsed, csv_bytes, mocker):
        broken = mocker.Mock(side_effect=RuntimeError("boom"))
        after = mocker.Mock()
        ingestor = StatementIngestor(repo, default_config, listeners=[broken, after])
        statement, created = ingestor.ingest("acme", parsed, csv_bytes)
        assert created is True
        assert repo.get_statement(statement.id) is not None
        after.assert_called_once_with(statement)
