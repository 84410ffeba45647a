"""
Exceptions raised by the emission engine services
"""


class EmissionEngineError(Exception):
    """Base class for engine errors"""


class ConfigurationMissing(EmissionEngineError):
    """No active flowchart, scope configuration or emission factor for a request"""


class RecordNotFound(EmissionEngineError):
    """A referenced activity record, summary or target does not exist"""


class InvalidInput(EmissionEngineError):
    """Input that cannot be coerced into something the engine can work with"""
