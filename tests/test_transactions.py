"""Tests for transaction history filters and payment statistics."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import uuid
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from errors import NotFound
from services import timezone
from services.transactions import (
    created_between, get_transaction, get_transaction_stats, growth_percentage,
    sort_order, summarize_by_status, transaction_statement, user_summary,
)


def compiled(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


def test_summary_fills_missing_statuses():
    summary = summarize_by_status([("success", 3, 2970), ("failed", 1, 1190)])
    assert summary["success"] == {"count": 3, "amount": 2970.0}
    assert summary["pending"] == {"count": 0, "amount": 0.0}
    assert summary["refunded"] == {"count": 0, "amount": 0.0}
    assert summary["total"] == {"count": 4, "amount": 4160.0}


def test_growth_against_previous_period():
    assert growth_percentage(1500, 1000) == 50.0
    assert growth_percentage(500, 1000) == -50.0


def test_growth_without_previous_revenue():
    assert growth_percentage(1500, 0) == 0.0


def test_date_filter_covers_whole_local_days():
    start, end = created_between(date(2024, 3, 1), date(2024, 3, 31))
    assert start.right.value == timezone.start_of_day(date(2024, 3, 1))
    assert end.right.value == timezone.end_of_day(date(2024, 3, 31))
    assert created_between(None, None) == []


def test_statement_filters():
    sql = compiled(transaction_statement(status="failed", payment_method="upi", user_id=uuid.uuid4()))
    assert "transactions.status =" in sql
    assert "transactions.payment_method =" in sql
    assert "transactions.user_id =" in sql
    assert "ILIKE" not in sql


def test_search_matches_gateway_ids():
    sql = compiled(transaction_statement(search="order_abc"))
    assert "transactions.transaction_id ILIKE" in sql
    assert "transactions.gateway_order_id ILIKE" in sql
    assert "transactions.gateway_payment_id ILIKE" in sql


def test_sort_order():
    assert "final_amount ASC" in str(sort_order("final_amount", "asc"))
    assert "created_at DESC" in str(sort_order())


@pytest.mark.asyncio
async def test_customer_cannot_read_other_users_transaction():
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    db = MagicMock()
    db.execute = AsyncMock(return_value=result)
    with pytest.raises(NotFound):
        await get_transaction(db, uuid.uuid4(), user_id=uuid.uuid4())
    assert "transactions.user_id =" in compiled(db.execute.await_args.args[0])


@pytest.mark.asyncio
async def test_user_summary_totals():
    totals = summarize_by_status([("success", 2, 2380), ("failed", 1, 1190), ("pending", 1, 1190)])
    with patch("services.transactions.status_totals", AsyncMock(return_value=totals)):
        summary = await user_summary(MagicMock(), uuid.uuid4())
    assert summary["total_transactions"] == 4
    assert summary["total_spent"] == 2380.0
    assert summary["failed"] == {"count": 1, "amount": 1190.0}


@pytest.mark.asyncio
async def test_stats_reject_unknown_grouping():
    with pytest.raises(ValueError):
        await get_transaction_stats(MagicMock(), timezone.start_of_day(), timezone.now(), group_by="year")
