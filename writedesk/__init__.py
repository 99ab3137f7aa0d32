"""
writedesk: content review and magazine publication workflow service.
"""
__version__ = "1.0.0"
