from guidestats.services.profile_scraper import ProfileStatsService, profile_stats_service


def get_profile_stats_service() -> ProfileStatsService:
    """Process-wide stats service; overridden in tests."""
    return profile_stats_service
