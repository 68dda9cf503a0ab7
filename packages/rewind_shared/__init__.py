"""Shared configuration, logging, error, and envelope primitives for Rewind."""
