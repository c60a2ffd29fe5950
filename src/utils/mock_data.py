"""
Mock Strava transport for running the governor without API access
"""

import random
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from src.models.models import DispatchOutcome, RequestSpec


class MockStravaTransport:
    """Answers Strava requests with generated activities

    Detail requests fail at the configured rates, so the dashboard can show
    retries and partial sync failures.
    """

    ROUTE_NAMES = [
        "Col de la Schlucht", "Grand Ballon", "Ballon d'Alsace", "Petit Ballon",
        "Col du Platzerwasel", "Col de la Grosse Pierre", "Hohneck", "Col du Bonhomme",
        "Col de Bussang", "Markstein", "Col du Donon", "Tour du lac de Gérardmer"
    ]

    ACTIVITY_TYPES = ["Ride", "Ride", "Ride", "VirtualRide", "Run"]

    def __init__(self, rate_limit_rate: float = 0.05, failure_rate: float = 0.05,
                 latency: float = 0.0, seed: Optional[int] = None):
        """
        Args:
            rate_limit_rate: Share of detail requests answered with 429
            failure_rate: Share of detail requests answered with 500
            latency: Seconds to wait before answering
            seed: Random seed for reproducible data
        """
        self.rate_limit_rate = rate_limit_rate
        self.failure_rate = failure_rate
        self.latency = latency
        self.random = random.Random(seed)
        self.calls = 0

    def generate_activity(self, activity_id: int, start: datetime) -> Dict:
        """Generate one activity summary"""
        distance_km = round(self.random.uniform(15, 120), 1)
        avg_speed = self.random.uniform(18, 32)
        moving_time = int(distance_km / avg_speed * 3600)
        return {
            "id": activity_id,
            "name": self.random.choice(self.ROUTE_NAMES),
            "type": self.random.choice(self.ACTIVITY_TYPES),
            "distance": distance_km * 1000,
            "moving_time": moving_time,
            "elapsed_time": moving_time + self.random.randint(60, 1800),
            "total_elevation_gain": round(self.random.uniform(100, 2200)),
            "average_speed": round(avg_speed / 3.6, 2),
            "start_date": start.strftime("%Y-%m-%dT%H:%M:%SZ")
        }

    def generate_activities(self, count: int) -> List[Dict]:
        """Generate recent activities, newest first"""
        now = datetime.now(timezone.utc)
        return [
            self.generate_activity(10_000_000 + i, now - timedelta(days=i, hours=self.random.randint(0, 12)))
            for i in range(count)
        ]

    def send(self, spec: RequestSpec) -> DispatchOutcome:
        self.calls += 1
        if self.latency:
            time.sleep(self.latency)
        start = time.perf_counter()
        path = spec.endpoint

        if path.endswith("/athlete/activities"):
            count = int(spec.params.get("per_page", 30))
            outcome = DispatchOutcome(status_code=200, payload=self.generate_activities(count))
        elif "/activities/" in path:
            roll = self.random.random()
            if roll < self.rate_limit_rate:
                outcome = DispatchOutcome(status_code=429, error="HTTP 429 Too Many Requests")
            elif roll < self.rate_limit_rate + self.failure_rate:
                outcome = DispatchOutcome(status_code=500, error="HTTP 500 Internal Server Error")
            else:
                activity_id = int(path.rsplit("/", 1)[-1])
                detail = self.generate_activity(activity_id, datetime.now(timezone.utc))
                detail["calories"] = round(self.random.uniform(300, 2500))
                outcome = DispatchOutcome(status_code=200, payload=detail)
        else:
            outcome = DispatchOutcome(status_code=404, error="HTTP 404 Not Found")

        outcome.elapsed_ms = (time.perf_counter() - start) * 1000 + self.latency * 1000
        return outcome
