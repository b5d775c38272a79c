"""Queue-driven pipeline that scrapes contact emails from social pages into Google Sheets"""

__version__ = '1.0.0'
