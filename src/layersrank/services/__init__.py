"""Service layer exports."""

from . import (
	aggregation_service,
	badge_service,
	event_service,
	leaderboard_service,
	pipeline_service,
	profile_service,
)

__all__ = [
	"aggregation_service",
	"badge_service",
	"event_service",
	"leaderboard_service",
	"pipeline_service",
	"profile_service",
]
