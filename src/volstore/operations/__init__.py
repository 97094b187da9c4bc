"""
Operations package - Object protocol layer between front ends and the core.

This package provides the Operations facade that drives the object
lifecycle per verb, centralizes error mapping, and handles output
formatting while keeping CLI commands thin and testable.
"""
from .facade import ObjectResponse, Operations, OpsConfig
from .mappers import exit_code_for, run_and_exit, status_for

__all__ = ["Operations", "OpsConfig", "ObjectResponse", "exit_code_for", "run_and_exit", "status_for"]
