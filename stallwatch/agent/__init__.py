"""Agent backends that produce thread event streams."""
