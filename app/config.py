"""Environment configuration."""

import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

API_BASE_URL = os.getenv('ANALYTICS_API_BASE_URL', 'http://localhost:8080/api')
API_TOKEN = os.getenv('ANALYTICS_API_TOKEN', '')
API_TIMEOUT = float(os.getenv('ANALYTICS_API_TIMEOUT', '30'))

ALLOW_ORIGINS = os.getenv('ALLOW_ORIGINS', '*').split(',')
DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG' if DEBUG else 'INFO').upper()
