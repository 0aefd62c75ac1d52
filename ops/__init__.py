"""Operational components: queue engine process supervision."""
