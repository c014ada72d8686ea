"""Configuration module for regbisect.

This module contains configuration classes for regression bisection operations.
"""

from regbisect.config.config import BisectConfig, CommandStep, InstallFallback, OracleConfig


__all__ = ["BisectConfig", "CommandStep", "InstallFallback", "OracleConfig"]
