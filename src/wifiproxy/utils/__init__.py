"""Shared helpers for wifiproxy."""
