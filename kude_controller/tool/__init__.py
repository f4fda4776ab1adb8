"""Command line tool for kude-controller."""
