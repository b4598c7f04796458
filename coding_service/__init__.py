"""Coding job distribution and automatic coding orchestration."""
