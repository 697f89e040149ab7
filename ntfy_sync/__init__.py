"""Local notification cache kept in sync with ntfy topics."""
