import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from pointsmall.core import build_engine, transaction
from pointsmall.core.exceptions import ContentionError, OutOfStockError
from pointsmall.core.retry import RetryPolicy, run_with_retry
from pointsmall.models import PointsAccount, Product
from pointsmall.services import PointsService


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.initial_delay == 0.05

    @pytest.mark.parametrize("kwargs", [
        {"max_retries": -1},
        {"initial_delay": -0.1},
        {"initial_delay": 2.0, "max_delay": 1.0},
        {"exponential_base": 0.5},
        {"jitter": 1.5},
    ])
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_backoff_grows_and_caps(self):
        policy = RetryPolicy(initial_delay=0.1, max_delay=0.5, jitter=0.0)
        assert policy.calculate_backoff(0) == pytest.approx(0.1)
        assert policy.calculate_backoff(1) == pytest.approx(0.2)
        assert policy.calculate_backoff(2) == pytest.approx(0.4)
        assert policy.calculate_backoff(5) == pytest.approx(0.5)

    def test_backoff_jitter_stays_in_range(self):
        policy = RetryPolicy(initial_delay=1.0, max_delay=1.0, jitter=0.2)
        for _ in range(50):
            assert 0.8 <= policy.calculate_backoff(0) <= 1.2


class TestRunWithRetry:
    def test_retries_contention_then_succeeds(self):
        calls, sleeps = [], []

        def operation():
            calls.append(1)
            if len(calls) < 3:
                raise ContentionError("busy")
            return "done"

        result = run_with_retry(operation, RetryPolicy(max_retries=3, jitter=0.0), sleep=sleeps.append)

        assert result == "done"
        assert len(calls) == 3
        assert sleeps == [pytest.approx(0.05), pytest.approx(0.1)]

    def test_gives_up_after_max_retries(self):
        calls = []

        def operation():
            calls.append(1)
            raise ContentionError("busy")

        with pytest.raises(ContentionError):
            run_with_retry(operation, RetryPolicy(max_retries=2), sleep=lambda _: None)
        assert len(calls) == 3

    def test_business_errors_are_not_retried(self):
        calls = []

        def operation():
            calls.append(1)
            raise OutOfStockError("sold out")

        with pytest.raises(OutOfStockError):
            run_with_retry(operation, RetryPolicy(max_retries=5), sleep=lambda _: None)
        assert len(calls) == 1


class TestTransaction:
    def test_lock_errors_become_contention(self, db, user_id):
        with pytest.raises(ContentionError):
            with transaction(db):
                PointsService.credit(db, user_id, 10, source="test")
                raise OperationalError("UPDATE points_account", {}, Exception("database is locked"))

        assert db.query(PointsAccount).count() == 0

    def test_other_operational_errors_propagate(self, db):
        with pytest.raises(OperationalError):
            with transaction(db):
                raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    def test_any_error_rolls_back(self, db, user_id):
        with pytest.raises(RuntimeError):
            with transaction(db):
                PointsService.credit(db, user_id, 10, source="test")
                raise RuntimeError("boom")

        assert db.query(PointsAccount).count() == 0

    def test_lock_wait_timeout_is_contention(self, engine, session_factory, user_id):
        holder = session_factory()
        impatient_engine = build_engine(str(engine.url), connect_args={"timeout": 0.1})
        waiter = sessionmaker(bind=impatient_engine)()
        try:
            # The first statement takes the database write lock
            holder.query(Product).first()

            with pytest.raises(ContentionError):
                with transaction(waiter):
                    PointsService.credit(waiter, user_id, 10, source="test")

            holder.rollback()

            with transaction(waiter):
                PointsService.credit(waiter, user_id, 10, source="test")
            assert waiter.query(PointsAccount).one().balance == 10
        finally:
            holder.close()
            waiter.close()
            impatient_engine.dispose()
