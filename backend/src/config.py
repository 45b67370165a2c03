"""
Configuration management for the Predictor League Engine.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass


@dataclass
class Config:
    """Application configuration."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Supabase Configuration
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")
    supabase_service_key: str = os.getenv("SUPABASE_SERVICE_KEY", "")

    # football-data.org API Configuration
    football_data_base_url: str = os.getenv("FOOTBALL_DATA_BASE_URL", "https://api.football-data.org/v4")
    football_data_api_key: str = os.getenv("FOOTBALL_DATA_API_KEY", "")
    competition_code: str = os.getenv("COMPETITION_CODE", "PL")
    current_season: str = os.getenv("CURRENT_SEASON", "2025-26")
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "15.0"))

    # Rate Limiting (observed limit is ~10/min; keep this conservative)
    max_requests_per_minute: int = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "10"))
    rate_limit_period: float = float(os.getenv("RATE_LIMIT_PERIOD", "60.0"))
    # How often a paused queue re-checks the window
    rate_limit_poll_interval: float = float(os.getenv("RATE_LIMIT_POLL_INTERVAL", "1.0"))
    response_cache_ttl: int = int(os.getenv("RESPONSE_CACHE_TTL", "120"))  # 2 minutes

    # Retry Configuration
    max_retries: int = int(os.getenv("MAX_RETRIES", "3"))
    max_network_retries: int = int(os.getenv("MAX_NETWORK_RETRIES", "1"))
    max_rate_limit_retries: int = int(os.getenv("MAX_RATE_LIMIT_RETRIES", "5"))
    retry_backoff_base: float = float(os.getenv("RETRY_BACKOFF_BASE", "1.0"))
    max_retry_delay: float = float(os.getenv("MAX_RETRY_DELAY", "60"))
    rate_limit_wait: float = float(os.getenv("RATE_LIMIT_WAIT", "2.0"))

    # Reconciliation
    reconcile_batch_size: int = int(os.getenv("RECONCILE_BATCH_SIZE", "10"))
    full_pass_cooldown_seconds: int = int(os.getenv("FULL_PASS_COOLDOWN", "300"))  # 5 minutes
    live_pass_cooldown_seconds: int = int(os.getenv("LIVE_PASS_COOLDOWN", "30"))
    result_cache_ttl_seconds: int = int(os.getenv("RESULT_CACHE_TTL", "60"))
    upcoming_window_minutes: int = int(os.getenv("UPCOMING_WINDOW_MINUTES", "60"))
    stale_finished_hours: int = int(os.getenv("STALE_FINISHED_HOURS", "6"))
    missed_transition_hours: int = int(os.getenv("MISSED_TRANSITION_HOURS", "6"))
    missed_transition_max_days: int = int(os.getenv("MISSED_TRANSITION_MAX_DAYS", "2"))
    live_candidate_cap: int = int(os.getenv("LIVE_CANDIDATE_CAP", "20"))
    upcoming_candidate_cap: int = int(os.getenv("UPCOMING_CANDIDATE_CAP", "15"))
    finished_candidate_cap: int = int(os.getenv("FINISHED_CANDIDATE_CAP", "20"))
    missed_candidate_cap: int = int(os.getenv("MISSED_CANDIDATE_CAP", "20"))

    # Recovery
    recovery_missing_score_days: int = int(os.getenv("RECOVERY_MISSING_SCORE_DAYS", "14"))
    recovery_lookback_days: int = int(os.getenv("RECOVERY_LOOKBACK_DAYS", "7"))
    recovery_stuck_after_minutes: int = int(os.getenv("RECOVERY_STUCK_AFTER_MINUTES", "180"))
    recovery_interval_seconds: int = int(os.getenv("RECOVERY_INTERVAL", "21600"))  # 6 hours

    # Predictions
    prediction_cutoff_minutes: int = int(os.getenv("PREDICTION_CUTOFF_MINUTES", "30"))

    # Live window
    live_window_minutes: int = int(os.getenv("LIVE_WINDOW_MINUTES", "120"))
    live_update_stale_minutes: int = int(os.getenv("LIVE_UPDATE_STALE_MINUTES", "2"))

    # Service loop intervals (in seconds)
    fast_loop_interval_live: int = int(os.getenv("FAST_LOOP_INTERVAL_LIVE", "30"))
    max_idle_sleep_seconds: int = int(os.getenv("MAX_IDLE_SLEEP_SECONDS", "300"))
    slow_loop_interval: int = int(os.getenv("SLOW_LOOP_INTERVAL", "300"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")  # json or text

    def validate(self):
        """Validate configuration."""
        errors = []

        if not self.supabase_url:
            errors.append("SUPABASE_URL is required")
        if not self.supabase_key:
            errors.append("SUPABASE_KEY is required")
        if not self.football_data_api_key:
            errors.append("FOOTBALL_DATA_API_KEY is required")
        if self.max_requests_per_minute < 1:
            errors.append("MAX_REQUESTS_PER_MINUTE must be at least 1")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True
