"""Shared configuration and exceptions for gpgmail."""
