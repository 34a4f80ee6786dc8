"""
Locust Load Test Suite

Expects a published event with one ticket type already in the database;
point the users at it with LOCUST_EVENT_ID / LOCUST_TICKET_TYPE_ID.

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Test overselling
  locust -f locustfile.py --tags replay       # Test idempotent retries
  locust -f locustfile.py --tags throughput   # Test cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import os
import random
import uuid
from locust import HttpUser, task, between, tag, events

EVENT_ID = int(os.environ.get("LOCUST_EVENT_ID", "1"))
TICKET_TYPE_ID = int(os.environ.get("LOCUST_TICKET_TYPE_ID", "1"))

PURCHASE_URL = "/api/v1/tickets/purchase"
AVAILABILITY_URL = f"/api/v1/events/{EVENT_ID}/ticket-types/{TICKET_TYPE_ID}/availability"


def purchase_body(quantity=1, payment_method_id="pm_test_ok"):
    return {
        "event_id": EVENT_ID,
        "ticket_type_id": TICKET_TYPE_ID,
        "quantity": quantity,
        "payment_method_id": payment_method_id,
    }


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Target: event {EVENT_ID}, ticket type {TICKET_TYPE_ID}")
    print("After the run, verify no overselling:")
    print(f"  SELECT COUNT(*) FROM tickets WHERE ticket_type_id = {TICKET_TYPE_ID}")
    print("    AND status IN ('reserved', 'purchased');  -- must be <= quantity")
    print("=" * 60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - many buyers, few tickets

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    201 (bought) and 409 (sold out) are both correct answers; anything
    else is a failure. 503 means the inventory lock timed out under load.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = {"X-User-Id": str(random.randint(1, 1_000_000))}

    @tag("concurrency")
    @task
    def buy_last_tickets(self):
        headers = {**self.headers, "Idempotency-Key": str(uuid.uuid4())}
        with self.client.post(PURCHASE_URL, json=purchase_body(), headers=headers, catch_response=True) as resp:
            if resp.status_code in (201, 409):
                resp.success()
            elif resp.status_code == 503:
                resp.failure("Inventory lock timeout")
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ReplayUser(HttpUser):
    """
    TEST 2: Idempotent retries

    Run: locust -f locustfile.py --tags replay -u 50 -r 25 --run-time 30s

    Every purchase is sent twice with the same key. The second answer must
    be the first one's ticket ids (replay) or 409 while the first is still
    in flight; never a second set of tickets.
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.headers = {"X-User-Id": str(random.randint(1, 1_000_000))}

    @tag("replay")
    @task
    def purchase_twice(self):
        headers = {**self.headers, "Idempotency-Key": str(uuid.uuid4())}
        first = self.client.post(PURCHASE_URL, json=purchase_body(), headers=headers, name="purchase [first]")

        with self.client.post(
            PURCHASE_URL, json=purchase_body(), headers=headers, name="purchase [replay]", catch_response=True
        ) as resp:
            if first.status_code == 201 and resp.status_code == 201:
                if resp.json()["ticket_ids"] == first.json()["ticket_ids"]:
                    resp.success()
                else:
                    resp.failure("Replay returned different tickets")
            elif resp.status_code in (201, 402, 409):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 3: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: Stop Redis, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def availability_cached(self):
        self.client.get(AVAILABILITY_URL, name="availability [cached]")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 4: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = {"X-User-Id": str(random.randint(1, 1_000_000))}

    def _expect(self, body, expected, headers=None, **kwargs):
        headers = headers if headers is not None else {**self.headers, "Idempotency-Key": str(uuid.uuid4())}
        with self.client.post(PURCHASE_URL, json=body, headers=headers, catch_response=True, **kwargs) as resp:
            if resp.status_code in expected:
                resp.success()
            else:
                resp.failure(f"Expected {expected}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_ticket_type(self):
        self._expect({**purchase_body(), "ticket_type_id": 999999}, (404,), name="purchase [unknown type]")

    @tag("edge")
    @task
    def zero_quantity(self):
        self._expect(purchase_body(quantity=0), (422,), name="purchase [zero]")

    @tag("edge")
    @task
    def huge_quantity(self):
        self._expect(purchase_body(quantity=999999), (409, 422), name="purchase [huge]")

    @tag("edge")
    @task
    def declined_card(self):
        self._expect(purchase_body(payment_method_id="pm_test_fail"), (402, 409), name="purchase [declined]")

    @tag("edge")
    @task
    def missing_idempotency_key(self):
        self._expect(purchase_body(), (422,), headers=self.headers, name="purchase [no key]")

    @tag("edge")
    @task
    def missing_user(self):
        self._expect(purchase_body(), (401,), headers={"Idempotency-Key": str(uuid.uuid4())}, name="purchase [no user]")


class RealisticUser(HttpUser):
    """
    TEST 5: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly browsing availability
      - Some purchases, a few with flaky retries
      - Checking own tickets
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = {"X-User-Id": str(random.randint(1, 1_000_000))}

    @task(50)
    def browse_availability(self):
        self.client.get(AVAILABILITY_URL, name="availability")

    @task(10)
    def buy(self):
        headers = {**self.headers, "Idempotency-Key": str(uuid.uuid4())}
        resp = self.client.post(PURCHASE_URL, json=purchase_body(random.randint(1, 3)), headers=headers)
        if resp.status_code == 409 and random.random() < 0.2:
            # Client-side retry with the same key
            self.client.post(PURCHASE_URL, json=purchase_body(), headers=headers, name="purchase [retry]")

    @task(5)
    def my_tickets(self):
        self.client.get("/api/v1/tickets/", headers=self.headers)
