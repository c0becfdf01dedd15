"""
Conversation Gate - Redis-coordinated input gating for conversational agents.

This package sits in front of a response-generating agent and decides which
inbound messages get forwarded. A stop gate lets operators silence a
conversation, and a batch window coordinator collapses rapid-fire messages
from one conversation into a single merged message, using only Redis for
coordination between stateless workers.
"""

__version__ = "1.0.0"
