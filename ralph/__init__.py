"""Ralph - autonomous implement/review/commit loop for a queue of stories."""

__version__ = "2.1.0"
