"""
Configuration module for the AI receptionist engine.

Key components:
- constants: Application-wide names (logger, event types, message types) and defaults.
- logging_config: Console and rotating file logging for the application logger.
- settings: Environment-driven settings loaded once into an immutable object.

Usage examples:
```python
from receptionist.config.constants import LOGGER_NAME
from receptionist.config.logging_config import configure_logging
from receptionist.config.settings import load_settings

logger = configure_logging()
settings = load_settings()
logger.info(f"No-answer timeout: {settings.no_answer_timeout}s")
```
"""
