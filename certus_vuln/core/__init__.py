"""Shared configuration, logging, errors and time helpers."""
