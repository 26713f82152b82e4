from future_self.api.webhooks import vapi

__all__ = ["vapi"]
