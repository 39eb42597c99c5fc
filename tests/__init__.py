"""Tests for the autonomous audiometry engine.

Engine runs use a manual clock and a virtual timer, so complete sessions
execute instantly and deterministically. Run with ``pytest`` from the
project root.
"""
