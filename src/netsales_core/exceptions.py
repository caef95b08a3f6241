"""Domain-specific exceptions for Net Sales Core.

This module defines custom exceptions that are part of the public API.
All exceptions inherit from NetSalesError for easy catching.
"""


class NetSalesError(Exception):
    """Base exception for all Net Sales Core errors.

    This is the base class for all domain-specific exceptions in the package.
    Users can catch this exception to handle any Net Sales Core error.
    """

    pass


class ConfigError(NetSalesError):
    """Raised when there is a configuration error.

    This exception is raised when:
    - Invalid configuration values are provided
    - Required configuration is missing
    - A raw fact table file cannot be found
    """

    pass


class DataQualityError(NetSalesError):
    """Raised when data quality checks fail.

    This exception is raised when:
    - Required columns are missing from input data
    - Data validation fails
    """

    pass


class DataIntegrityError(DataQualityError):
    """Raised when a join expected to be 1:1 matches several rows.

    Examples are two gross prices for the same product and fiscal year, or two
    pre-invoice rates for the same customer and fiscal year. One of them is
    never picked silently.
    """

    pass


class InvalidInputError(NetSalesError, ValueError):
    """Raised when input is rejected before computation begins.

    This exception is raised when:
    - A batch key parameter cannot be parsed into a set of codes
    - A sales record has a negative sold_quantity
    - An unknown grouping or measure is requested
    """

    pass


class ETLError(NetSalesError):
    """Raised when a pipeline stage fails.

    This exception is raised when:
    - Enrichment or the discount cascade fails for a whole partition
    - A batch run is cancelled between partitions
    - Mart aggregation fails
    """

    pass


class MissingReferenceWarning(UserWarning):
    """Category for records excluded because a price or pre-invoice rate is absent.

    Exclusions of this kind are non-fatal: they are logged and counted in the
    exclusion report instead of aborting the batch.
    """
