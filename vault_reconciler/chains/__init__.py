"""Chain access layers."""
