"""Durable notifications and their live push."""
