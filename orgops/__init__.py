"""Automation engine for the nonprofit operations platform."""
