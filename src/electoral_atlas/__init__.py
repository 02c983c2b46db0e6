"""Electoral Atlas: administrative-hierarchy aggregation and map navigation engine."""

__version__ = "0.1.0"
