"""
MSP Webhook Exporter - vessel data to webhook with offline backlog

Samples a fixed set of Signal K paths on a wall-clock aligned schedule and
POSTs each batch to a single webhook:
- Latest pushed value per metric, with direct bus query fallback
- Durable JSON backlog for records that failed delivery
- Opportunistic resend of the backlog after every successful delivery
"""

__version__ = "1.2.3"
