"""Gateway orders, payment settlement, webhooks and refunds."""
