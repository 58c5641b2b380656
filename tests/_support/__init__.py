"""Shared test support code (doubles and helpers)."""
