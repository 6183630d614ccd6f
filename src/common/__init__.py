"""Shared transport, credential and logging helpers."""
