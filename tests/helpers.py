from datetime import datetime
from uuid import UUID


def user(n: int) -> UUID:
    return UUID(int=n)


def day(d: int, hour: int = 12) -> datetime:
    return datetime(2025, 1, d, hour, 0, 0)
