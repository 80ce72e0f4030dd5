"""Service layer for streak business logic.

Layer hierarchy:
    Routes (HTTP) -> Services (Business Logic) -> Repositories (Database)

- streaks_service: pure day-to-day transition rules and the error types
- streak_lock_service: per-member serialization of writes
- activity_service: records activity in the pinned timezone, with retries
- leaderboard_service: ranked, lock-free reads per workspace

Services never see HTTP details; routes map StreakError subclasses to
status codes.
"""
