"""Simulation clock helpers - hour timestamps grouped into months"""

from typing import List


class SimulationClock:
    """Monotonic tick source measured in simulated hours"""

    def __init__(self, hours_per_month: int = 24, start: int = 0):
        if hours_per_month < 1:
            raise ValueError("hours_per_month must be at least 1")
        self.hours_per_month = hours_per_month
        self.now = start

    def month_index(self, timestamp: int) -> int:
        return timestamp // self.hours_per_month

    def months_between(self, last_month: int | None, timestamp: int) -> List[int]:
        """Month indices crossed after ``last_month`` up to and including the one holding ``timestamp``"""
        current = self.month_index(timestamp)
        if last_month is None:
            return [current]
        return list(range(last_month + 1, current + 1))

    def advance(self, hours: int) -> int:
        if hours < 0:
            raise ValueError("Clock cannot move backwards")
        self.now += hours
        return self.now

    def next_month(self) -> int:
        """Advance to the first hour of the next month"""
        self.now = (self.month_index(self.now) + 1) * self.hours_per_month
        return self.now
