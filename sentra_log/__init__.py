"""
sentra_log: structured JSON logging shared by the Sentra agent and collector.
"""

from sentra_log.logger import JSONFormatter, get_logger, setup_logging

__all__ = ['JSONFormatter', 'get_logger', 'setup_logging']
__version__ = '1.0.0'
