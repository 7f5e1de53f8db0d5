"""
PointsMall - points redemption storefront fulfillment core
"""
__version__ = "1.0.0"
