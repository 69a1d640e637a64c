"""Token stream codec for persisted networks (text and binary)."""
