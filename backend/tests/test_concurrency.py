# Overview: Pytest coverage for retry handling of contended transactions and the background task runner.

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from canteen.errors import BusinessRuleViolation
from canteen.extensions import db
from canteen.models import Outlet
from canteen.services.background_tasks import BackgroundTaskRunner
from canteen.services.concurrency import run_with_retry


class TestRunWithRetry:
    def test_retries_lock_errors(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise OperationalError("UPDATE inventory", {}, Exception("database is locked"))
            return "ok"

        assert run_with_retry(_op, backoff_base=0) == "ok"
        assert len(calls) == 3

    def test_gives_up_after_attempts(self, db_session):
        def _op():
            raise StaleDataError("version mismatch")

        with pytest.raises(StaleDataError):
            run_with_retry(_op, attempts=2, backoff_base=0)

    def test_business_errors_not_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise BusinessRuleViolation("nope")

        with pytest.raises(BusinessRuleViolation):
            run_with_retry(_op, backoff_base=0)
        assert len(calls) == 1


# =============================================================================
# BACKGROUND TASKS
# =============================================================================


class TestBackgroundTaskRunner:
    def test_sync_failure_leaves_caller_session_alone(self, app, db_session):
        runner = BackgroundTaskRunner(app, synchronous=True)
        outlet = Outlet(name="Pending Canteen", is_active=True)
        db_session.add(outlet)

        def _boom():
            raise RuntimeError("boom")

        assert runner.submit("boom", _boom) is None
        assert outlet in db_session.new

    def test_sync_task_commits_in_its_own_session(self, app, db_session):
        runner = BackgroundTaskRunner(app, synchronous=True)

        def _create():
            db.session.add(Outlet(name="Task Canteen", is_active=True))
            db.session.commit()

        runner.submit("create", _create)

        assert db_session.query(Outlet).filter_by(name="Task Canteen").count() == 1

    def test_pooled_task_runs_and_shuts_down(self, app):
        runner = BackgroundTaskRunner(app, max_workers=1)
        calls = []

        future = runner.submit("append", calls.append, 1)
        future.result(timeout=5)
        runner.shutdown()

        assert calls == [1]
