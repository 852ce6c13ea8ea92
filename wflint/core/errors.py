"""
errors.py - Exceptions shared by the configuration layer and the rule engine
"""


class ConfigurationError(Exception):
    """Exception raised for configuration errors"""

    pass
