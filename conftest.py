"""
Configuration file for pytest.

Loads environment variables from a local .env file, so provider API key
variables and ENVIRONMENT overrides apply to test runs as they do at runtime.
"""
import dotenv

# Load environment variables from .env file
dotenv.load_dotenv()
