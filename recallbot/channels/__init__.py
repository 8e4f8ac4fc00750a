"""Channel adapters translating provider webhooks into inbound messages."""

from .base import ChannelAdapter
from .twilio import TwilioWhatsAppAdapter

__all__ = ["ChannelAdapter", "TwilioWhatsAppAdapter"]
