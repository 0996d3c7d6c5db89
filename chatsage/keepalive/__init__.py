"""Keep-alive actor driving the self-ping schedule."""
