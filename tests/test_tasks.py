from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from core import celery as celery_config
from models.order import Order, OrderStatus
from models.user import User
from tasks import maintenance


@pytest.fixture()
def task_sessions(session_factory, monkeypatch):
    monkeypatch.setattr(maintenance, "SessionLocal", session_factory)
    return session_factory


class TestSweepTask:
    def test_cancels_expired_orders(self, db, task_sessions, test_user, make_order):
        order = make_order(test_user)
        order.created_at = datetime.utcnow() - timedelta(hours=1)
        db.commit()

        result = maintenance.sweep_expired_orders()

        assert result == {"status": "ok", "cancelled": 1}
        db.expire_all()
        assert db.get(Order, order.id).status == OrderStatus.CANCELLED.value

    def test_database_error_is_reported(self, task_sessions):
        with patch("services.orders.OrderService.cancel_expired_orders", side_effect=OperationalError("SELECT", {}, Exception("db down"))):
            result = maintenance.sweep_expired_orders()
        assert result["status"] == "failed"


class TestPurgeTask:
    def test_deletes_stale_unverified_users(self, db, task_sessions, make_user):
        stale = make_user(verified=False, created_at=datetime.utcnow() - timedelta(days=2))
        fresh = make_user(verified=False)
        stale_id, fresh_id = stale.id, fresh.id

        result = maintenance.purge_unverified_users()

        assert result == {"status": "ok", "deleted": 1}
        db.expunge_all()
        assert db.get(User, stale_id) is None
        assert db.get(User, fresh_id) is not None


class TestExchangeRatesTask:
    def test_refresh(self):
        with patch.object(maintenance.price_service, "get_exchange_rates", return_value={"RUB": 1.0, "USD": 0.0125}) as refresh:
            result = maintenance.refresh_exchange_rates()
        refresh.assert_called_once_with(force_refresh=True)
        assert result == {"status": "ok", "currencies": 2}

    def test_refresh_without_rates(self):
        with patch.object(maintenance.price_service, "get_exchange_rates", return_value=None):
            assert maintenance.refresh_exchange_rates() == {"status": "failed"}


class TestSchedule:
    def test_every_job_is_scheduled(self):
        tasks = {entry["task"] for entry in celery_config.celery_app.conf.beat_schedule.values()}
        assert tasks == {
            "tasks.maintenance.sweep_expired_orders",
            "tasks.maintenance.purge_unverified_users",
            "tasks.maintenance.refresh_exchange_rates",
        }

    def test_jobs_start_with_beat(self):
        with patch.object(celery_config.celery_app, "send_task") as send_task:
            celery_config.run_scheduled_tasks_on_startup()
        assert send_task.call_count == 3
