"""Box office ticketing service."""
