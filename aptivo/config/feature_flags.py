"""
aptivo/config/feature_flags.py
Boolean switches read from the environment at import time.
"""
import os


def get_bool_env(key: str, default: bool = False) -> bool:
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


class FeatureFlags:
    """Behaviour toggles an operator may flip without a deploy of new code."""

    # Public sign-up on /api/auth/register
    FEATURE_SELF_REGISTRATION: bool = get_bool_env('FEATURE_SELF_REGISTRATION', True)

    # Students must confirm their email before logging in
    FEATURE_EMAIL_VERIFICATION: bool = get_bool_env('FEATURE_EMAIL_VERIFICATION', False)

    # Practice sessions skip MCQs the student already answered correctly
    FEATURE_PRACTICE_EXCLUDE_MASTERED: bool = get_bool_env('FEATURE_PRACTICE_EXCLUDE_MASTERED', True)

    # Exams refuse attempts outside their start_time/end_time window
    FEATURE_EXAM_WINDOW_ENFORCEMENT: bool = get_bool_env('FEATURE_EXAM_WINDOW_ENFORCEMENT', True)

    @classmethod
    def get_all_flags(cls) -> dict:
        return {
            key: value
            for key, value in cls.__dict__.items()
            if key.startswith('FEATURE_')
        }


feature_flags = FeatureFlags()
