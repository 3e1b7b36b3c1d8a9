"""Safety-check scheduling and rule evaluation for teen health data.

This package contains the rule catalog, evaluators and scheduling logic,
isolated from storage and delivery backends for easy testing and reasoning.
"""
