"""
Utilities Module
================

Ambient helpers shared across the package:
- logger: component-scoped logging
- config: environment-driven configuration
- errors: the error taxonomy and StepResult
- json_utils: JSON recovery from model output
- timing: stopwatches and the request deadline
"""

from memagent.utils.logger import Logger, logger
from memagent.utils.config import get_config, Config

__all__ = ["Logger", "logger", "get_config", "Config"]
