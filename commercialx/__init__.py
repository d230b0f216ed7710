"""CommercialX vehicle data enrichment and compliance service"""

__version__ = "1.0.0"
