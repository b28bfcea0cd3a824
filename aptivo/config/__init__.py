from aptivo.config.settings import settings
from aptivo.config.feature_flags import feature_flags

__all__ = ["settings", "feature_flags"]
