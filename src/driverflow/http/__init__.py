"""HTTP transfer helpers."""
