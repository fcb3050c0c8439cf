"""
Jira → chat channel subscription relay

Indexes channel subscriptions to Jira webhook events and posts each incoming
webhook to the channels whose subscription filters accept it.
"""

__version__ = "0.1.0"
