"""Notification templates, fan-out staging, and the in-app notification store."""
