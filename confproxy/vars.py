import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "confproxy")
PROXY_CONFIG_FILE = os.environ.get("PROXY_CONFIG_FILE", "config.cfg")

# Per outbound call, in seconds
PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "300"))
PROXY_FOLLOW_REDIRECTS = (
    os.environ.get("PROXY_FOLLOW_REDIRECTS", "true").lower() == "true"
)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").upper()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
