"""Daily prayer times with a per-day cache and next-prayer lookup."""
