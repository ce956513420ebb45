"""
GitHub ↔ Chat Notification Bridge

Receives signed GitHub webhook events and re-publishes them into chat
channels and direct messages, based on channel subscriptions and per-user
mute lists.
"""

__version__ = "0.1.0"
