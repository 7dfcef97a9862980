"""Core services of bundlekit."""
