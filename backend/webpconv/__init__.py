"""WebP streaming conversion service."""
