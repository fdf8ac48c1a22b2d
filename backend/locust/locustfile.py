"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Test overbooking
  locust -f locustfile.py --tags throughput   # Test listing cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import random
from locust import HttpUser, task, between, tag, events
from datetime import datetime, timezone, timedelta

# Shared state
SLOT_IDS = []
CONCURRENCY_SLOT_ID = None
CONCURRENCY_SEATS = 10


def random_patient():
    return f"Load Patient {random.randint(10000, 99999)}"


def slot_window(days_ahead: int):
    start = datetime.now(timezone.utc) + timedelta(days=days_ahead)
    return start.isoformat(), (start + timedelta(minutes=30)).isoformat()


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print("SETUP: Concurrency slot is created by the first ConcurrencyUser")
    print("=" * 60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 patients -> 10 seats

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT SUM(seats_booked) FROM bookings
      WHERE slot_id = X AND status IN ('PENDING', 'CONFIRMED');
    Should be <= 10, and equal to 10 - available_seats
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        if CONCURRENCY_SLOT_ID:
            return
        resp = self.client.post("/api/v1/admin/doctors", json={"name": "Dr. Load Test"})
        if resp.status_code != 201:
            return
        start, end = slot_window(30)
        resp = self.client.post("/api/v1/admin/slots", json={
            "doctor_id": resp.json()["id"],
            "start_time": start,
            "end_time": end,
            "max_patients": CONCURRENCY_SEATS,
        })
        if resp.status_code == 201:
            globals()["CONCURRENCY_SLOT_ID"] = resp.json()["id"]
            print(f"\n✓ Created slot {CONCURRENCY_SLOT_ID} with {CONCURRENCY_SEATS} seats\n")

    @tag("concurrency")
    @task
    def book_limited_seats(self):
        """All users fight for the same 10 seats."""
        if not CONCURRENCY_SLOT_ID:
            return

        with self.client.post("/api/v1/bookings/",
            json={"slot_id": CONCURRENCY_SLOT_ID, "patient_name": random_patient(), "seats": 1},
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: full, or retryable lock conflict
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_slots_cached(self):
        resp = self.client.get("/api/v1/slots/?limit=20", name="/api/v1/slots/ [cached]")
        if resp.status_code == 200:
            for slot in resp.json().get("slots", []):
                if slot["id"] not in SLOT_IDS:
                    SLOT_IDS.append(slot["id"])

    @tag("throughput", "read")
    @task(3)
    def slot_availability(self):
        """Uncached, unlocked availability read."""
        if SLOT_IDS:
            self.client.get(f"/api/v1/slots/{random.choice(SLOT_IDS)}/availability",
                name="/api/v1/slots/{id}/availability")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s
    """
    wait_time = between(0.5, 1.5)

    def _expect(self, json_body, allowed, **kwargs):
        with self.client.post("/api/v1/bookings/", json=json_body, catch_response=True, **kwargs) as resp:
            if resp.status_code in allowed:
                resp.success()
            else:
                resp.failure(f"Expected {allowed}, got {resp.status_code}")

    @tag("edge")
    @task
    def invalid_slot_id(self):
        self._expect({"slot_id": 999999, "patient_name": random_patient(), "seats": 1}, [404])

    @tag("edge")
    @task
    def zero_seats(self):
        self._expect({"slot_id": 1, "patient_name": random_patient(), "seats": 0}, [400, 422])

    @tag("edge")
    @task
    def huge_seats(self):
        self._expect({"slot_id": 1, "patient_name": random_patient(), "seats": 999999}, [400, 409, 422])

    @tag("edge")
    @task
    def missing_name(self):
        self._expect({"slot_id": 1, "seats": 1}, [400, 422])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Mostly browsing, some holds (half confirmed, some cancelled), the rest
    left to expire and be reclaimed by the sweeper.
    """
    wait_time = between(1, 3)

    @task(50)
    def browse_slots(self):
        resp = self.client.get("/api/v1/slots/")
        if resp.status_code == 200:
            for slot in resp.json().get("slots", []):
                if slot["id"] not in SLOT_IDS:
                    SLOT_IDS.append(slot["id"])

    @task(20)
    def view_slot(self):
        if SLOT_IDS:
            self.client.get(f"/api/v1/slots/{random.choice(SLOT_IDS)}", name="/api/v1/slots/{id}")

    @task(10)
    def book_and_follow_up(self):
        if not SLOT_IDS:
            return
        resp = self.client.post("/api/v1/bookings/", json={
            "slot_id": random.choice(SLOT_IDS),
            "patient_name": random_patient(),
            "seats": random.randint(1, 2),
        })
        if resp.status_code != 201:
            return
        booking_id = resp.json()["id"]
        roll = random.random()
        if roll < 0.5:
            self.client.post(f"/api/v1/bookings/{booking_id}/confirm", name="/api/v1/bookings/{id}/confirm")
        elif roll < 0.6:
            self.client.delete(f"/api/v1/bookings/{booking_id}", name="/api/v1/bookings/{id}")

    @task(2)
    def create_slot(self):
        resp = self.client.post("/api/v1/admin/doctors", json={"name": f"Dr. {random.randint(1, 10000)}"})
        if resp.status_code != 201:
            return
        start, end = slot_window(random.randint(1, 90))
        resp = self.client.post("/api/v1/admin/slots", json={
            "doctor_id": resp.json()["id"],
            "start_time": start,
            "end_time": end,
            "max_patients": random.randint(1, 5),
        })
        if resp.status_code == 201:
            SLOT_IDS.append(resp.json()["id"])
