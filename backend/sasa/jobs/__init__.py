"""Jobs, applications and provider selection."""
