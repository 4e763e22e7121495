"""feed_notifier - RSS/Atom feed subscriptions with rate-limited announcements."""

__version__ = "0.1.0"
