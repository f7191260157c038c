"""Core orchestration: readiness, rate limiting, fallback plans and escalation."""
