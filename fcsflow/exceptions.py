"""
Exception hierarchy for FCSFlow
"""


class FCSFlowError(Exception):
    """Base class for all FCSFlow errors"""


class ConfigurationError(FCSFlowError):
    """Invalid or inconsistent configuration"""


class DataValidationError(FCSFlowError):
    """Input table or vector does not meet the expected format"""


class IdentifierMappingError(FCSFlowError):
    """Gene identifier conversion failed"""


class AnnotationServiceError(FCSFlowError):
    """Remote annotation service (BioMart, KEGG REST) request failed"""


class RIntegrationError(FCSFlowError):
    """R backend unavailable or an R script failed"""
