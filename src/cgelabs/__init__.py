"""CGELabs: launch CGE analysis pipelines, stream their output, browse results."""

__version__ = "1.0.0"
