"""
SmartRate — Schedule of Rates catalog and tender quotation builder

Keeps a catalog of priced work items, extracts tender line items from
pasted text with a local language model, matches them to the catalog
and prices the quotation.
"""

__version__ = "1.0.0"
__author__ = "SmartRate"
