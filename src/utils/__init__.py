"""
Utility modules for the checkout fee service
"""
from .config_loader import CheckoutServiceConfig, load_checkout_config

__all__ = [
    'CheckoutServiceConfig',
    'load_checkout_config',
]
