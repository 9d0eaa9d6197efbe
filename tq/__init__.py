"""A SQLite-backed task and action queue with cron schedules and tmux, headless and remote dispatch."""

__version__ = "0.1.0"