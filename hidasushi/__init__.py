"""
                HidaSushi Order Service

Backend for the HidaSushi storefront and kitchen dashboard: order intake,
the order status lifecycle with its audit history, real-time order updates
over WebSockets, and payment status integration.
"""

__version__ = "1.0.0"
