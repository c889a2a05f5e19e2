import os
import tempfile
import threading
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from support import balance_of, seed_balance, transactions_of

from videogen.core.database import Base
from videogen.services.credits import consume_credits, refund_credits


class TestConcurrentLedger(unittest.TestCase):
    """Runs against a file-backed SQLite database so every thread gets its own connection."""

    def setUp(self):
        fd, self.path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.engine = create_engine(
            f"sqlite:///{self.path}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def tearDown(self):
        self.engine.dispose()
        os.remove(self.path)

    def _run_threads(self, target, count):
        threads = [threading.Thread(target=target, args=(i,)) for i in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def test_concurrent_debits_never_overdraw(self):
        with self.Session() as db:
            seed_balance(db, "u1", 20)

        results = []
        lock = threading.Lock()

        def debit(i):
            with self.Session() as db:
                result = consume_credits(db, user_id="u1", amount=3, resource_type="veo_video", resource_id=f"job-{i}")
            with lock:
                results.append(result)

        self._run_threads(debit, 10)

        with self.Session() as db:
            self.assertEqual(sum(1 for r in results if r.success), 6)
            self.assertEqual(balance_of(db, "u1"), 2)
            txs = transactions_of(db, "u1")
            self.assertEqual(len(txs), 6)
            self.assertEqual(sum(t.amount for t in txs), -18)

    def test_concurrent_refunds_for_one_resource_apply_once(self):
        with self.Session() as db:
            seed_balance(db, "u1", 20)
            consume_credits(db, user_id="u1", amount=16, resource_type="veo_video", resource_id="job-1")

        outcomes = []
        lock = threading.Lock()

        def refund(_i):
            with self.Session() as db:
                ok = refund_credits(db, user_id="u1", amount=16, resource_id="job-1", reason="timed out")
            with lock:
                outcomes.append(ok)

        self._run_threads(refund, 8)

        with self.Session() as db:
            self.assertEqual(outcomes.count(True), 1)
            self.assertEqual(balance_of(db, "u1"), 20)
            self.assertEqual(sum(t.amount for t in transactions_of(db, "u1")), 0)


if __name__ == "__main__":
    unittest.main()
