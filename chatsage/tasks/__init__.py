"""Cloud Tasks scheduling with bounded retries."""
