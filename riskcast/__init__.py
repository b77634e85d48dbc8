"""Riskcast: baseline trigger evaluation, job leasing and decay-weighted risk scoring."""

__version__ = "0.1.0"
