"""Job and admin chat, plus the real-time channel."""
