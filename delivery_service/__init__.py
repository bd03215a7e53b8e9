"""Delivery dispatch service: order lifecycle, claim arbitration, earnings and live sync."""
from .app import create_app

__version__ = "0.1.0"
