"""Core primitives shared by every lvstore layer."""
