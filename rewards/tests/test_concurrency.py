"""
Concurrency Tests

Many threads race the same operation against one database. The store's
transactions alone must keep awards exactly-once.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

from rewards import store
from rewards.errors import ConflictError, ReferrerAlreadySetError

WORKERS = 8


def _race(fn, args_list):
    """Run ``fn`` once per args tuple, all released at the same moment.

    Returns a list of (result, exception) pairs.
    """
    barrier = threading.Barrier(len(args_list))

    def run(args):
        barrier.wait()
        try:
            return fn(*args), None
        except Exception as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=len(args_list)) as pool:
        return list(pool.map(run, args_list))


class TestConcurrentCompletion:
    """Racing completions of the same pair."""

    def test_same_pair_awarded_exactly_once(self, service, make_account, points_of):
        user_id = make_account("alice")

        outcomes = _race(service.complete_task, [(user_id, "daily_checkin")] * WORKERS)

        errors = [exc for _, exc in outcomes if exc is not None]
        assert all(isinstance(exc, ConflictError) for exc in errors)
        awarded = [r for r, _ in outcomes if r is not None and not r.already_completed]
        assert len(awarded) == 1
        assert awarded[0].awarded == 5
        assert points_of(user_id) == 5
        with service.db.session() as session:
            assert store.count_completions(session, user_id, "daily_checkin") == 1

    def test_distinct_users_all_awarded(self, service, make_account, points_of):
        users = [make_account(f"user{i}") for i in range(WORKERS)]

        outcomes = _race(service.complete_task, [(u, "subscribe_telegram") for u in users])

        assert all(exc is None for _, exc in outcomes)
        assert all(r.awarded == 20 for r, _ in outcomes)
        assert [points_of(u) for u in users] == [20] * WORKERS


class TestConcurrentReferral:
    """Racing referral assignments for the same user."""

    def test_only_one_referrer_wins(self, service, make_account, points_of):
        user_id = make_account("alice")
        referrers = [make_account(f"referrer{i}") for i in range(WORKERS)]

        outcomes = _race(service.set_referrer, [(user_id, r) for r in referrers])

        successes = [r for r, exc in outcomes if exc is None]
        errors = [exc for _, exc in outcomes if exc is not None]
        assert len(successes) == 1
        assert all(isinstance(exc, (ReferrerAlreadySetError, ConflictError)) for exc in errors)

        assert points_of(user_id) == 10
        paid = [r for r in referrers if points_of(r) == 50]
        assert len(paid) == 1
        assert sum(points_of(r) for r in referrers) == 50

        status = service.get_status(user_id)
        assert status.account.referrer_id == paid[0]
        with service.db.session() as session:
            assert store.get_referral_for(session, user_id).referrer_id == paid[0]


class TestReadsDuringWrites:
    """Read scopes must not queue behind an open mutation."""

    def test_leaderboard_while_transaction_open(self, service, make_account):
        user_id = make_account("alice", points=3)
        outcome = {}

        def read():
            try:
                outcome["board"] = service.leaderboard(5)
            except Exception as exc:
                outcome["error"] = exc

        with service.db.transaction() as session:
            store.add_points(session, user_id, 5)
            reader = threading.Thread(target=read)
            reader.start()
            reader.join(timeout=5)
            finished = not reader.is_alive()

        reader.join()
        assert finished
        assert "error" not in outcome
        # The uncommitted award is not visible to the reader
        assert [entry.points for entry in outcome["board"]] == [3]

    def test_status_while_transaction_open(self, service, make_account):
        user_id = make_account("alice")
        outcome = {}

        def read():
            outcome["status"] = service.get_status(user_id)

        with service.db.transaction() as session:
            store.add_points(session, user_id, 5)
            reader = threading.Thread(target=read)
            reader.start()
            reader.join(timeout=5)
            finished = not reader.is_alive()

        reader.join()
        assert finished
        assert outcome["status"].account.points == 0
