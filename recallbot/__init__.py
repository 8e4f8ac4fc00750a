"""recallbot: WhatsApp memory assistant intake service."""
