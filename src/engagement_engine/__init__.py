"""Work engagement and payment lifecycle engine."""

from engagement_engine.engine import EngagementEngine, WebhookOutcome

__version__ = "0.1.0"

__all__ = ["EngagementEngine", "WebhookOutcome", "__version__"]
