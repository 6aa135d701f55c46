"""
Residence fleet booking: conflict-free vehicle reservations with a cached dashboard
"""
__version__ = "1.4.0"
