"""
Core infrastructure for the approval/workflow package.

This package contains the settings model and the logging configuration shared
by the engines, the repositories and the escalation runner.
"""
